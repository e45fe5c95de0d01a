from pathlib import Path

import pytest

from conftest import add_user, buyer, product_ids

from salesdesk.config import SalesPolicy
from salesdesk.domain.errors import (
    AlreadyProcessedError,
    DuplicateReceiptError,
    EmptySelectionError,
    InvalidReasonError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from salesdesk.domain.models import BuyerSnapshot, Cancelled, Pending, SaleLineItem, Validated
from salesdesk.repositories.sqlite_repo import SqliteRepository
from salesdesk.services.catalog_service import CatalogService
from salesdesk.services.reporting_service import ReportingService
from salesdesk.services.sale_aggregator import compute_lines
from salesdesk.services.sales_service import SalesService


class ScriptedReceipts:
    def __init__(self, *receipts):
        self._receipts = list(receipts)

    def generate(self):
        if len(self._receipts) > 1:
            return self._receipts.pop(0)
        return self._receipts[0]


def _setup(tmp_path: Path, name: str = "lifecycle.db"):
    repo = SqliteRepository(tmp_path / name)
    repo.init_db()
    agent = add_user(repo, "agent1", "agent", "Agent One")
    controller = add_user(repo, "ctrl1", "controller", "Controller One")
    return repo, agent, controller


def _sell(sales, repo, agent_id, selections, matricule="M-1001"):
    lines, total = compute_lines(CatalogService(repo).catalog(), selections)
    return sales.create_sale(agent_id, buyer(matricule), lines, total)


def test_end_to_end_validate_and_cancel_scenario(tmp_path: Path):
    repo, agent, controller = _setup(tmp_path)
    sales = SalesService(repo)
    reporting = ReportingService(repo)
    ids = product_ids(repo)
    a, b = ids["Riz 50 KG"], ids["Riz 25 KG"]

    first = _sell(sales, repo, agent.id, [(a, 1), (b, 1)])
    assert first.sale.total_amount == 24750
    assert first.sale.status == Pending()
    assert reporting.total_revenue() == 0

    validated = sales.validate_sale(first.receipt_number, controller.id)
    assert isinstance(validated.sale.status, Validated)
    assert validated.sale.status.by == controller.id
    assert validated.validator_name == "Controller One"
    assert reporting.total_revenue() == 24750

    second = _sell(sales, repo, agent.id, [(a, 1)])
    assert second.sale.total_amount == 16500
    cancelled = sales.cancel_sale(second.receipt_number, agent.id, "stock_unavailable")

    assert isinstance(cancelled.sale.status, Cancelled)
    assert cancelled.sale.status.reason == "stock_unavailable"
    assert cancelled.canceller_name == "Agent One"
    assert reporting.total_revenue() == 24750

    mine = sales.list_by_agent(agent.id)
    assert [r.receipt_number for r in mine] == [second.receipt_number, first.receipt_number]

    by_product = {row.key: row for row in reporting.by_product()}
    assert by_product["Riz 50 KG"].count == 1
    assert by_product["Riz 50 KG"].revenue == 16500
    assert [(row.key, row.count, row.revenue) for row in reporting.by_agent()] == [("Agent One", 1, 24750)]


def test_created_sale_total_matches_items(tmp_path: Path):
    repo, agent, _ = _setup(tmp_path)
    sales = SalesService(repo)
    ids = product_ids(repo)

    record = _sell(sales, repo, agent.id, [(ids["Mil 50 KG"], 3), (ids["Sorgho 100 KG"], 2)])

    assert record.sale.total_amount == sum(it.quantity * it.unit_price for it in record.items)
    assert record.sale.total_amount == 3 * 6750 + 2 * 13500
    assert {it.product_name for it in record.items} == {"Mil", "Sorgho"}
    assert record.agent_name == "Agent One"
    assert record.validator_name is None


def test_create_rejects_total_that_does_not_match_lines(tmp_path: Path):
    repo, agent, _ = _setup(tmp_path)
    sales = SalesService(repo)
    pid = product_ids(repo)["Riz 50 KG"]

    with pytest.raises(ValidationError, match="does not match"):
        sales.create_sale(agent.id, buyer(), [SaleLineItem(pid, 1, 16500)], 100)
    assert sales.list_all() == []


def test_create_rejects_empty_lines_and_bad_buyer(tmp_path: Path):
    repo, agent, _ = _setup(tmp_path)
    sales = SalesService(repo)
    pid = product_ids(repo)["Riz 50 KG"]

    with pytest.raises(EmptySelectionError):
        sales.create_sale(agent.id, buyer(), [], 0)
    with pytest.raises(ValidationError, match="grade"):
        sales.create_sale(agent.id, buyer(grade="Général"), [SaleLineItem(pid, 1, 16500)], 16500)
    with pytest.raises(ValidationError, match="matricule"):
        blank = BuyerSnapshot(last_name="Traore", first_name="Awa", matricule="  ", grade="GP")
        sales.create_sale(agent.id, blank, [SaleLineItem(pid, 1, 16500)], 16500)


def test_validate_unknown_receipt_is_not_found(tmp_path: Path):
    repo, _, controller = _setup(tmp_path)
    sales = SalesService(repo)

    with pytest.raises(NotFoundError):
        sales.validate_sale("REC-20260101-000000", controller.id)


def test_validate_twice_reports_already_processed(tmp_path: Path):
    repo, agent, controller = _setup(tmp_path)
    sales = SalesService(repo)
    rec = _sell(sales, repo, agent.id, [(product_ids(repo)["Riz 50 KG"], 1)])

    sales.validate_sale(rec.receipt_number, controller.id)
    with pytest.raises(AlreadyProcessedError):
        sales.validate_sale(rec.receipt_number, controller.id)


def test_cancelled_sale_can_never_be_validated(tmp_path: Path):
    repo, agent, controller = _setup(tmp_path)
    sales = SalesService(repo)
    rec = _sell(sales, repo, agent.id, [(product_ids(repo)["Riz 50 KG"], 1)])
    sales.cancel_sale(rec.receipt_number, agent.id, "not_eligible", "buyer left")

    with pytest.raises(AlreadyProcessedError):
        sales.validate_sale(rec.receipt_number, controller.id)
    assert sales.get_by_receipt(rec.receipt_number).status_name == "cancelled"


def test_validated_sale_can_never_be_cancelled(tmp_path: Path):
    repo, agent, controller = _setup(tmp_path)
    sales = SalesService(repo)
    rec = _sell(sales, repo, agent.id, [(product_ids(repo)["Riz 50 KG"], 1)])
    sales.validate_sale(rec.receipt_number, controller.id)

    for reason in ("stock_unavailable", "not_eligible", "other"):
        with pytest.raises(InvalidStateError):
            sales.cancel_sale(rec.receipt_number, agent.id, reason)
    assert sales.get_by_receipt(rec.receipt_number).status_name == "validated"


def test_cancel_twice_is_invalid_state(tmp_path: Path):
    repo, agent, _ = _setup(tmp_path)
    sales = SalesService(repo)
    rec = _sell(sales, repo, agent.id, [(product_ids(repo)["Riz 50 KG"], 1)])
    sales.cancel_sale(rec.receipt_number, agent.id, "other", "  typo in name  ")

    with pytest.raises(InvalidStateError, match="already cancelled"):
        sales.cancel_sale(rec.receipt_number, agent.id, "other")
    assert sales.get_by_receipt(rec.receipt_number).sale.status.note == "typo in name"


def test_cancel_unknown_or_foreign_receipt_is_not_found(tmp_path: Path):
    repo, agent, _ = _setup(tmp_path)
    other_agent = add_user(repo, "agent2", "agent", "Agent Two")
    sales = SalesService(repo)
    rec = _sell(sales, repo, agent.id, [(product_ids(repo)["Riz 50 KG"], 1)])

    with pytest.raises(NotFoundError):
        sales.cancel_sale("REC-20260101-999999", agent.id, "other")
    with pytest.raises(NotFoundError):
        sales.cancel_sale(rec.receipt_number, other_agent.id, "other")
    assert sales.get_by_receipt(rec.receipt_number).status_name == "pending"


def test_cancel_with_invalid_reason_leaves_sale_pending(tmp_path: Path):
    repo, agent, _ = _setup(tmp_path)
    sales = SalesService(repo)
    rec = _sell(sales, repo, agent.id, [(product_ids(repo)["Riz 50 KG"], 1)])

    with pytest.raises(InvalidReasonError):
        sales.cancel_sale(rec.receipt_number, agent.id, "changed_mind")
    assert sales.get_by_receipt(rec.receipt_number).sale.status == Pending()


def test_listings_are_newest_first_and_filterable(tmp_path: Path):
    repo, agent, controller = _setup(tmp_path)
    sales = SalesService(repo)
    pid = product_ids(repo)["Mil 100 KG"]

    r1 = _sell(sales, repo, agent.id, [(pid, 1)], matricule="AB-100")
    r2 = _sell(sales, repo, agent.id, [(pid, 1)], matricule="CD-200")
    r3 = _sell(sales, repo, agent.id, [(pid, 1)], matricule="ab-300")
    sales.validate_sale(r2.receipt_number, controller.id)

    assert [r.receipt_number for r in sales.list_all()] == [r3.receipt_number, r2.receipt_number, r1.receipt_number]
    assert [r.receipt_number for r in sales.list_by_status("pending")] == [r3.receipt_number, r1.receipt_number]
    assert [r.receipt_number for r in sales.search(matricule="AB")] == [r3.receipt_number, r1.receipt_number]
    assert [r.receipt_number for r in sales.search(status="validated")] == [r2.receipt_number]

    with pytest.raises(ValidationError):
        sales.list_by_status("archived")


def test_lookup_by_receipt_or_pending_matricule(tmp_path: Path):
    repo, agent, controller = _setup(tmp_path)
    sales = SalesService(repo)
    pid = product_ids(repo)["Mil 100 KG"]
    r1 = _sell(sales, repo, agent.id, [(pid, 1)], matricule="ZX-42")
    r2 = _sell(sales, repo, agent.id, [(pid, 1)], matricule="ZX-42")
    sales.validate_sale(r1.receipt_number, controller.id)

    assert [r.receipt_number for r in sales.lookup(r1.receipt_number)] == [r1.receipt_number]
    assert [r.receipt_number for r in sales.lookup("zx-42")] == [r2.receipt_number]
    assert sales.lookup("   ") == []


def test_catalog_price_change_does_not_alter_recorded_sale(tmp_path: Path):
    repo, agent, _ = _setup(tmp_path)
    sales = SalesService(repo)
    pid = product_ids(repo)["Riz 50 KG"]
    rec = _sell(sales, repo, agent.id, [(pid, 2)])

    conn = repo._conn()
    conn.execute("UPDATE products SET unit_price = 20000 WHERE id = ?", (pid,))
    conn.commit()
    conn.close()

    again = sales.get_by_receipt(rec.receipt_number)
    assert again.sale.total_amount == 33000
    assert again.items[0].unit_price == 16500


def test_receipt_collision_is_retried_with_a_new_number(tmp_path: Path):
    repo, agent, _ = _setup(tmp_path)
    receipts = ScriptedReceipts("REC-20260101-000001", "REC-20260101-000001", "REC-20260101-000002")
    sales = SalesService(repo, receipts=receipts)
    pid = product_ids(repo)["Riz 50 KG"]

    first = _sell(sales, repo, agent.id, [(pid, 1)])
    second = _sell(sales, repo, agent.id, [(pid, 1)])

    assert first.receipt_number == "REC-20260101-000001"
    assert second.receipt_number == "REC-20260101-000002"
    assert len(sales.list_all()) == 2


def test_receipt_collision_surfaces_after_attempts_are_exhausted(tmp_path: Path):
    repo, agent, _ = _setup(tmp_path)
    sales = SalesService(repo, receipts=ScriptedReceipts("REC-20260101-000007"), policy=SalesPolicy(receipt_attempts=3))
    pid = product_ids(repo)["Riz 50 KG"]

    _sell(sales, repo, agent.id, [(pid, 1)])
    with pytest.raises(DuplicateReceiptError):
        _sell(sales, repo, agent.id, [(pid, 1)])
    assert len(sales.list_all()) == 1


class FailingItemsRepo(SqliteRepository):
    def _insert_items(self, cur, sale_id, lines):
        lines = list(lines)
        super()._insert_items(cur, sale_id, lines[:1])
        raise RuntimeError("boom")


def test_sale_and_items_roll_back_together(tmp_path: Path):
    db = tmp_path / "atomic.db"
    repo = FailingItemsRepo(db)
    repo.init_db()
    agent = add_user(repo, "agent1", "agent")
    sales = SalesService(repo)
    ids = product_ids(repo)

    with pytest.raises(RuntimeError):
        _sell(sales, repo, agent.id, [(ids["Riz 50 KG"], 1), (ids["Mil 50 KG"], 1)])

    conn = repo._conn()
    cur = conn.cursor()
    cur.execute("SELECT COUNT(*) FROM sales")
    sales_rows = int(cur.fetchone()[0])
    cur.execute("SELECT COUNT(*) FROM sale_items")
    item_rows = int(cur.fetchone()[0])
    conn.close()

    assert sales_rows == 0
    assert item_rows == 0
