from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional

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
from salesdesk.domain.models import (
    CANCELLATION_REASONS,
    GRADES,
    STATUSES,
    BuyerSnapshot,
    SaleLineItem,
    SaleRecord,
)
from salesdesk.repositories.unit_of_work import RepositoryUnitOfWork, UnitOfWork
from salesdesk.services.receipt_service import ReceiptNumberGenerator

log = logging.getLogger("salesdesk.sales")


def clean_buyer(buyer: BuyerSnapshot) -> BuyerSnapshot:
    last_name = (buyer.last_name or "").strip()
    first_name = (buyer.first_name or "").strip()
    matricule = (buyer.matricule or "").strip()
    grade = (buyer.grade or "").strip()
    if not last_name or not first_name:
        raise ValidationError("Buyer last name and first name are required.")
    if not matricule:
        raise ValidationError("Buyer matricule is required.")
    if grade not in GRADES:
        raise ValidationError(f"Unknown grade: {grade!r}")
    return BuyerSnapshot(last_name=last_name, first_name=first_name, matricule=matricule, grade=grade)


class SalesService:
    """Owns the sale lifecycle: pending -> validated | cancelled."""

    def __init__(
        self,
        repo,
        receipts: ReceiptNumberGenerator | None = None,
        uow_factory: Callable[[], UnitOfWork] | None = None,
        policy: SalesPolicy | None = None,
    ):
        self.repo = repo
        self.receipts = receipts or ReceiptNumberGenerator()
        self.uow_factory = uow_factory or (lambda: RepositoryUnitOfWork(repo))
        self.policy = policy or SalesPolicy()

    # ---------- Transitions ----------
    def create_sale(
        self,
        agent_id: int,
        buyer: BuyerSnapshot,
        lines: Iterable[SaleLineItem],
        total: int,
    ) -> SaleRecord:
        buyer = clean_buyer(buyer)
        lines = list(lines)
        if not lines:
            raise EmptySelectionError("Select at least one product.")
        expected = sum(line.line_total for line in lines)
        if int(total) != expected:
            raise ValidationError(f"Sale total {total} does not match its lines ({expected}).")

        attempts = max(1, int(self.policy.receipt_attempts))
        for attempt in range(1, attempts + 1):
            receipt = self.receipts.generate()
            try:
                with self.uow_factory() as uow:
                    uow.create_sale(receipt, agent_id, buyer, expected, lines)
            except DuplicateReceiptError:
                log.warning("receipt_collision receipt=%s attempt=%s", receipt, attempt)
                if attempt == attempts:
                    raise
                continue

            log.info(
                "sale_created receipt=%s agent=%s items=%s total=%s",
                receipt, agent_id, len(lines), expected,
            )
            return self._require(receipt)

        raise DuplicateReceiptError("Could not allocate a receipt number.")

    def validate_sale(self, receipt_number: str, controller_id: int) -> SaleRecord:
        receipt = (receipt_number or "").strip()
        with self.uow_factory() as uow:
            changed = uow.validate_sale(receipt, controller_id)

        if not changed:
            status = self.repo.sale_status(receipt)
            if status is None:
                raise NotFoundError(f"Sale not found: {receipt}")
            raise AlreadyProcessedError(f"Sale {receipt} has already been processed ({status}).")

        log.info("sale_validated receipt=%s controller=%s", receipt, controller_id)
        return self._require(receipt)

    def cancel_sale(
        self,
        receipt_number: str,
        agent_id: int,
        reason: str,
        note: Optional[str] = None,
    ) -> SaleRecord:
        if reason not in CANCELLATION_REASONS:
            raise InvalidReasonError(f"Invalid cancellation reason: {reason!r}")
        receipt = (receipt_number or "").strip()
        note = (note or "").strip() or None

        with self.uow_factory() as uow:
            changed = uow.cancel_sale(receipt, agent_id, reason, note)

        if not changed:
            status = self.repo.sale_status(receipt, agent_id=agent_id)
            if status is None:
                raise NotFoundError(f"Sale not found for this agent: {receipt}")
            if status == "validated":
                raise InvalidStateError(f"Sale {receipt} is already validated and cannot be cancelled.")
            raise InvalidStateError(f"Sale {receipt} is already cancelled.")

        log.info("sale_cancelled receipt=%s agent=%s reason=%s", receipt, agent_id, reason)
        return self._require(receipt)

    # ---------- Queries ----------
    def get_by_receipt(self, receipt_number: str) -> Optional[SaleRecord]:
        return self.repo.get_sale_record((receipt_number or "").strip())

    def list_by_agent(self, agent_id: int) -> list[SaleRecord]:
        return self.repo.list_sale_records(agent_id=agent_id)

    def list_by_status(self, status: str) -> list[SaleRecord]:
        if status not in STATUSES:
            raise ValidationError(f"Unknown status: {status!r}")
        return self.repo.list_sale_records(status=status)

    def list_all(self) -> list[SaleRecord]:
        return self.repo.list_sale_records()

    def search(self, status: Optional[str] = None, matricule: Optional[str] = None) -> list[SaleRecord]:
        if status is not None and status not in STATUSES:
            raise ValidationError(f"Unknown status: {status!r}")
        return self.repo.list_sale_records(status=status, matricule=(matricule or "").strip() or None)

    def lookup(self, query: str) -> list[SaleRecord]:
        """Exact receipt number first, otherwise pending sales matching the matricule."""
        q = (query or "").strip()
        if not q:
            return []
        found = self.repo.get_sale_record(q)
        if found:
            return [found]
        return self.repo.list_sale_records(status="pending", matricule=q)

    def _require(self, receipt_number: str) -> SaleRecord:
        record = self.repo.get_sale_record(receipt_number)
        if record is None:
            raise NotFoundError(f"Sale not found: {receipt_number}")
        return record
