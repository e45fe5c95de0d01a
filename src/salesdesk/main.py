from __future__ import annotations

import argparse
import getpass
import logging
import os
import sys

from salesdesk.application.container import build_container
from salesdesk.config import get_app_paths
from salesdesk.domain.errors import AppError
from salesdesk.domain.models import CANCELLATION_REASONS, GRADES, BuyerSnapshot, SaleRecord
from salesdesk.logging_config import setup_logging
from salesdesk.services.export_service import STATUS_LABELS

log = logging.getLogger(__name__)


def _product_arg(value: str) -> tuple[int, int]:
    pid, _, qty = value.partition(":")
    try:
        return int(pid), int(qty or 1)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected ID or ID:QTY, got {value!r}") from None


def _print_records(records: list[SaleRecord]) -> None:
    if not records:
        print("No sales.")
        return
    for rec in records:
        sale = rec.sale
        buyer = f"{sale.buyer.last_name} {sale.buyer.first_name}"
        print(
            f"{sale.receipt_number}  {sale.created_at}  {buyer:<24} {sale.buyer.matricule:<12} "
            f"{sale.total_amount:>8}  {STATUS_LABELS[sale.status_name]}"
        )
        for it in rec.items:
            print(f"    {it.quantity} x {it.product_name} {it.product_weight} @ {it.unit_price} = {it.line_total}")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="salesdesk",
        description="Sales receipt workflow: record, validate or cancel sales; dashboard and exports.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create the database, seed the catalog and the bootstrap admin
  salesdesk init

  # Dashboard for an administrator
  salesdesk stats --username admin

  # Agent records a sale for product 5 and product 2
  salesdesk sell -u agent1 --last-name Traore --first-name Awa \\
      --matricule M-1001 --grade Officier --product 5 --product 2

  # Controller finds the pending receipt by matricule and validates it
  salesdesk lookup -u ctrl1 M-1001
  salesdesk validate -u ctrl1 REC-20261019-123456

  # Export every sale to a workbook
  salesdesk export --username admin --format xlsx --output ventes.xlsx
        """,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="Create or migrate the database")
    sub.add_parser("products", help="List the product catalog")

    stats = sub.add_parser("stats", help="Show dashboard statistics (admin)")
    stats.add_argument("--username", "-u", required=True)

    export = sub.add_parser("export", help="Export all sales (admin)")
    export.add_argument("--username", "-u", required=True)
    export.add_argument("--format", "-f", choices=("csv", "xlsx"), default="csv")
    export.add_argument("--output", "-o", required=True, help="Path to the output file")

    user = sub.add_parser("create-user", help="Create an agent, controller or admin account (admin)")
    user.add_argument("--username", "-u", required=True, help="Admin performing the action")
    user.add_argument("--login", required=True)
    user.add_argument("--name", required=True)
    user.add_argument("--role", choices=("agent", "controller", "admin"), required=True)

    users = sub.add_parser("users", help="List accounts (admin)")
    users.add_argument("--username", "-u", required=True)

    sell = sub.add_parser("sell", help="Record a sale for a buyer (agent)")
    sell.add_argument("--username", "-u", required=True)
    sell.add_argument("--last-name", required=True)
    sell.add_argument("--first-name", required=True)
    sell.add_argument("--matricule", required=True)
    sell.add_argument("--grade", choices=GRADES, required=True)
    sell.add_argument(
        "--product", "-p", dest="products", action="append", type=_product_arg, required=True,
        metavar="ID[:QTY]", help="Catalog product id, optionally with a quantity (repeatable)",
    )

    cancel = sub.add_parser("cancel", help="Cancel one of your pending sales (agent)")
    cancel.add_argument("--username", "-u", required=True)
    cancel.add_argument("receipt")
    cancel.add_argument("--reason", choices=CANCELLATION_REASONS, required=True)
    cancel.add_argument("--note")

    mine = sub.add_parser("my-sales", help="List your own sales (agent)")
    mine.add_argument("--username", "-u", required=True)

    pending = sub.add_parser("pending", help="List sales awaiting validation (controller)")
    pending.add_argument("--username", "-u", required=True)

    lookup = sub.add_parser("lookup", help="Find a sale by receipt number or buyer matricule (controller)")
    lookup.add_argument("--username", "-u", required=True)
    lookup.add_argument("query")

    validate = sub.add_parser("validate", help="Validate a pending sale (controller)")
    validate.add_argument("--username", "-u", required=True)
    validate.add_argument("receipt")

    return parser


def _password(prompt: str = "Password: ", env: str = "SALESDESK_PASSWORD") -> str:
    return os.environ.get(env) or getpass.getpass(prompt)


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    paths = get_app_paths()
    setup_logging(paths.logs_dir, level=logging.INFO)
    container = build_container(paths.db_path)

    try:
        if args.command == "init":
            print(f"Database ready at {paths.db_path}")
            return 0

        if args.command == "products":
            for p in container.catalog.list_products():
                print(f"{p.id:>3}  {p.label:<20} {p.unit_price:>8}")
            return 0

        actor = container.auth.login(args.username, _password())

        if args.command == "stats":
            stats = container.workflow.dashboard(actor)
            print(f"Sales:      {stats.total_sales}")
            print(f"Revenue:    {stats.total_revenue}")
            print(f"Pending:    {stats.pending_count}")
            print(f"Validated:  {stats.validated_count}")
            print(f"Cancelled:  {stats.cancelled_count}")
            for title, rows in (("Product", stats.by_product), ("Agent", stats.by_agent), ("Grade", stats.by_grade)):
                print(f"\nBy {title.lower()}:")
                for row in rows:
                    print(f"  {row.key:<24} {row.count:>5} {row.revenue:>10}")
            return 0

        if args.command == "export":
            if args.format == "xlsx":
                out = container.workflow.export_excel(actor, args.output)
            else:
                out = container.workflow.export_csv(actor, args.output)
            print(f"Exported to {out}")
            return 0

        if args.command == "create-user":
            uid = container.auth.create_user(
                actor, args.login, _password("New user password: ", env="SALESDESK_NEW_PASSWORD"), args.name, args.role
            )
            print(f"Created user {args.login} (id={uid})")
            return 0

        if args.command == "users":
            for u in container.auth.list_users(actor):
                print(f"{u.id:>3}  {u.username:<16} {u.role:<10} {u.name}")
            return 0

        if args.command == "sell":
            buyer = BuyerSnapshot(
                last_name=args.last_name,
                first_name=args.first_name,
                matricule=args.matricule,
                grade=args.grade,
            )
            record = container.workflow.submit_sale(actor, buyer, args.products)
            print(f"Sale recorded: {record.receipt_number} total={record.sale.total_amount}")
            return 0

        if args.command == "cancel":
            record = container.workflow.cancel(actor, args.receipt, args.reason, args.note)
            print(f"Sale cancelled: {record.receipt_number}")
            return 0

        if args.command == "my-sales":
            _print_records(container.workflow.my_sales(actor))
            return 0

        if args.command == "pending":
            _print_records(container.workflow.pending_queue(actor))
            return 0

        if args.command == "lookup":
            _print_records(container.workflow.lookup(actor, args.query))
            return 0

        if args.command == "validate":
            record = container.workflow.validate(actor, args.receipt)
            print(f"Sale validated: {record.receipt_number}")
            return 0
    except AppError as exc:
        log.error("cli_command_failed command=%s error=%s", args.command, exc)
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    return 2


if __name__ == "__main__":
    sys.exit(main())
