from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Optional, Protocol

from salesdesk.domain.models import BuyerSnapshot, SaleLineItem


class UnitOfWork(Protocol):
    def __enter__(self) -> "UnitOfWork": ...
    def __exit__(self, exc_type, exc, tb) -> None: ...
    def create_sale(self, receipt_number: str, agent_id: int, buyer: BuyerSnapshot, total_amount: int, lines: Iterable[SaleLineItem]) -> int: ...
    def validate_sale(self, receipt_number: str, controller_id: int) -> bool: ...
    def cancel_sale(self, receipt_number: str, agent_id: int, reason: str, note: Optional[str]) -> bool: ...


def _now_iso(clock: Callable[[], datetime]) -> str:
    return clock().replace(microsecond=0).isoformat(sep=" ")


@dataclass
class RepositoryUnitOfWork:
    """Unit of Work adapter for the sale lifecycle writes.

    Each repository write is already one SQL transaction: the sale row and its
    items commit together, and transitions are single conditional UPDATEs.
    This class stamps the audit timestamps so services stay persistence-agnostic.
    """

    repo: object
    clock: Callable[[], datetime] = datetime.now

    def __enter__(self) -> "RepositoryUnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return None

    def create_sale(
        self,
        receipt_number: str,
        agent_id: int,
        buyer: BuyerSnapshot,
        total_amount: int,
        lines: Iterable[SaleLineItem],
    ) -> int:
        return int(
            self.repo.create_sale_with_items(
                receipt_number=receipt_number,
                agent_id=agent_id,
                buyer=buyer,
                total_amount=total_amount,
                lines=list(lines),
                created_at=_now_iso(self.clock),
            )
        )

    def validate_sale(self, receipt_number: str, controller_id: int) -> bool:
        return bool(self.repo.mark_validated(receipt_number, controller_id, _now_iso(self.clock)))

    def cancel_sale(self, receipt_number: str, agent_id: int, reason: str, note: Optional[str]) -> bool:
        return bool(self.repo.mark_cancelled(receipt_number, agent_id, reason, note, _now_iso(self.clock)))
