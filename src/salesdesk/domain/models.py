from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional, Union


ROLES = ("admin", "agent", "controller")
GRADES = ("GP", "Sous officier", "Officier", "Inspecteur", "Commissaire")
CANCELLATION_REASONS = ("stock_unavailable", "not_eligible", "other")

STATUS_PENDING = "pending"
STATUS_VALIDATED = "validated"
STATUS_CANCELLED = "cancelled"
STATUSES = (STATUS_PENDING, STATUS_VALIDATED, STATUS_CANCELLED)


@dataclass(frozen=True)
class User:
    id: int
    username: str
    name: str
    role: str


@dataclass(frozen=True)
class Product:
    id: int
    name: str
    weight: str
    unit_price: int

    @property
    def label(self) -> str:
        return f"{self.name} {self.weight}"


@dataclass(frozen=True)
class BuyerSnapshot:
    last_name: str
    first_name: str
    matricule: str
    grade: str


@dataclass(frozen=True)
class SaleLineItem:
    product_id: int
    quantity: int
    unit_price: int

    @property
    def line_total(self) -> int:
        return self.quantity * self.unit_price


@dataclass(frozen=True)
class SaleItemView:
    product_id: int
    product_name: str
    product_weight: str
    quantity: int
    unit_price: int
    line_total: int


# ---------- Status variants ----------
@dataclass(frozen=True)
class Pending:
    name = STATUS_PENDING


@dataclass(frozen=True)
class Validated:
    by: int
    at: str
    name = STATUS_VALIDATED


@dataclass(frozen=True)
class Cancelled:
    by: int
    at: str
    reason: str
    note: Optional[str] = None
    name = STATUS_CANCELLED


SaleStatus = Union[Pending, Validated, Cancelled]


@dataclass(frozen=True)
class Sale:
    id: int
    receipt_number: str
    agent_id: int
    buyer: BuyerSnapshot
    total_amount: int
    status: SaleStatus
    created_at: str

    @property
    def status_name(self) -> str:
        return self.status.name

    @property
    def is_pending(self) -> bool:
        return isinstance(self.status, Pending)


@dataclass(frozen=True)
class SaleRecord:
    """A sale enriched at read time with display names and its items."""

    sale: Sale
    agent_name: str
    validator_name: Optional[str] = None
    canceller_name: Optional[str] = None
    items: tuple[SaleItemView, ...] = field(default_factory=tuple)

    @property
    def receipt_number(self) -> str:
        return self.sale.receipt_number

    @property
    def status_name(self) -> str:
        return self.sale.status_name


@dataclass(frozen=True)
class DailyTotal:
    date: str
    count: int
    revenue: int


@dataclass(frozen=True)
class BreakdownRow:
    key: str
    count: int
    revenue: int


@dataclass(frozen=True)
class DashboardStats:
    total_sales: int
    total_revenue: int
    pending_count: int
    validated_count: int
    cancelled_count: int
    by_day: list[DailyTotal]
    by_product: list[BreakdownRow]
    by_agent: list[BreakdownRow]
    by_grade: list[BreakdownRow]
