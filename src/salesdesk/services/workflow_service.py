from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional

from salesdesk.config import SalesPolicy
from salesdesk.domain.errors import ValidationError
from salesdesk.domain.models import BuyerSnapshot, DashboardStats, SaleRecord, User
from salesdesk.services.sale_aggregator import Selection, compute_lines


class WorkflowService:
    """Role-gated entry points used by the front desk, the controller and the admin.

    Every call checks the actor's role before touching the lifecycle, so a
    rejected call never reaches the database.
    """

    def __init__(self, auth, catalog, sales, reporting, exports, policy: SalesPolicy | None = None):
        self.auth = auth
        self.catalog = catalog
        self.sales = sales
        self.reporting = reporting
        self.exports = exports
        self.policy = policy or SalesPolicy()

    # ---------- Agent ----------
    def submit_sale(self, actor: User, buyer: BuyerSnapshot, selections: Iterable[Selection]) -> SaleRecord:
        self.auth.require_action(actor, "create_sale")
        lines, total = compute_lines(self.catalog.catalog(), selections)

        cap = self.policy.max_units_per_product
        if cap is not None:
            for line in lines:
                if line.quantity > cap:
                    raise ValidationError(f"At most {cap} unit(s) per product can be sold on one receipt.")

        return self.sales.create_sale(actor.id, buyer, lines, total)

    def cancel(self, actor: User, receipt_number: str, reason: str, note: Optional[str] = None) -> SaleRecord:
        self.auth.require_action(actor, "cancel_sale")
        return self.sales.cancel_sale(receipt_number, actor.id, reason, note)

    def my_sales(self, actor: User) -> list[SaleRecord]:
        self.auth.require_action(actor, "list_sales")
        return self.sales.list_by_agent(actor.id)

    # ---------- Controller ----------
    def pending_queue(self, actor: User) -> list[SaleRecord]:
        self.auth.require_action(actor, "validate_sale")
        return self.sales.list_by_status("pending")

    def lookup(self, actor: User, query: str) -> list[SaleRecord]:
        self.auth.require_action(actor, "validate_sale")
        return self.sales.lookup(query)

    def validate(self, actor: User, receipt_number: str) -> SaleRecord:
        self.auth.require_action(actor, "validate_sale")
        return self.sales.validate_sale(receipt_number, actor.id)

    # ---------- Admin ----------
    def all_sales(self, actor: User, status: Optional[str] = None, matricule: Optional[str] = None) -> list[SaleRecord]:
        self.auth.require_action(actor, "list_sales")
        return self.sales.search(status=status, matricule=matricule)

    def dashboard(self, actor: User) -> DashboardStats:
        self.auth.require_action(actor, "view_stats")
        return self.reporting.get_dashboard_stats()

    def export_csv(self, actor: User, path: str | Path) -> Path:
        self.auth.require_action(actor, "export_sales")
        return self.exports.export_sales_csv(path)

    def export_excel(self, actor: User, path: str | Path) -> Path:
        self.auth.require_action(actor, "export_sales")
        return self.exports.export_sales_excel(path)
