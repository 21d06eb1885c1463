"""
TransactionLogService -- append-only stock transaction log.

Responsibility:
    Writes StockTransaction entries (COMPLETED for applied movements,
    PENDING for staged future-dated ones), performs the single allowed
    status transition out of PENDING, finds reversals, and aggregates
    completed entries per (date, product, column) for the resync tool.

Architecture position:
    Kernel > Services.  Called by StockMovementService; read by the
    resync tool, the consistency checker and reporting.

Invariants enforced:
    - Entries are numbered TRX-YYYYMMDD-NNN from a locked per-day counter.
    - Only PENDING entries change status; everything else is frozen
      (see db/immutability.py).
    - Aggregation counts COMPLETED entries only; reversals are COMPLETED
      entries with the opposite quantity, so they net out naturally.

Failure modes:
    - TransactionNotFoundError from get().
    - InvalidTransactionStateError on a transition out of a non-PENDING status.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stock_kernel.domain.clock import Clock
from stock_kernel.domain.columns import LedgerColumn
from stock_kernel.domain.transaction_types import TransactionStatus, TransactionType
from stock_kernel.exceptions import InvalidTransactionStateError, TransactionNotFoundError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.transaction_log import StockTransaction
from stock_kernel.services.base import BaseService
from stock_kernel.services.sequence_service import SequenceService

logger = get_logger("services.transaction_log")


@dataclass(frozen=True)
class DocumentReference:
    """Optional pointers back to the business document behind a movement."""

    order_id: str | None = None
    order_item_id: str | None = None
    production_batch_number: str | None = None
    repacking_id: str | None = None
    reference_number: str | None = None


NO_REFERENCE = DocumentReference()

# A day past 999 entries gets 4-digit suffixes; length first keeps numeric order.
_NUMBER_ORDER = (
    StockTransaction.business_date,
    func.length(StockTransaction.transaction_number),
    StockTransaction.transaction_number,
)


class TransactionLogService(BaseService[StockTransaction]):
    """
    Appends and queries stock transactions.

    Non-goals:
        - Does NOT touch ledger rows.  Recording an entry and applying its
          delta are composed by PropagationEngine in one transaction.
    """

    def __init__(self, session: Session, clock: Clock):
        super().__init__(session, clock)
        self._sequences = SequenceService(session)

    def record(
        self,
        *,
        product_id: str,
        business_date: date,
        transaction_type: TransactionType,
        column: LedgerColumn,
        quantity: Decimal,
        performed_by: UUID,
        balance_after: Decimal | None = None,
        status: TransactionStatus = TransactionStatus.COMPLETED,
        reference: DocumentReference = NO_REFERENCE,
        reason: str | None = None,
        notes: str | None = None,
        reverses_entry_id: UUID | None = None,
    ) -> StockTransaction:
        """
        Append one entry.  ``quantity`` is the signed stock effect.
        """
        entry = StockTransaction(
            transaction_number=self._sequences.next_transaction_number(business_date),
            product_id=product_id,
            business_date=business_date,
            transaction_at=self._clock.now(),
            transaction_type=transaction_type.value,
            ledger_column=column.value,
            quantity=quantity,
            balance_after=balance_after,
            status=status.value,
            order_id=reference.order_id,
            order_item_id=reference.order_item_id,
            production_batch_number=reference.production_batch_number,
            repacking_id=reference.repacking_id,
            reference_number=reference.reference_number,
            reason=reason,
            notes=notes,
            performed_by=performed_by,
            reverses_entry_id=reverses_entry_id,
            created_by_id=performed_by,
        )
        self.session.add(entry)
        self.session.flush()
        logger.info(
            "stock_transaction_recorded",
            extra={
                "transaction_number": entry.transaction_number,
                "transaction_type": entry.transaction_type,
                "product_id": product_id,
                "business_date": business_date,
                "quantity": quantity,
                "status": entry.status,
                "reverses_entry_id": str(reverses_entry_id) if reverses_entry_id else None,
            },
        )
        return entry

    def stage(self, **fields) -> StockTransaction:
        """Append a PENDING entry; it has no ledger effect until completed."""
        return self.record(status=TransactionStatus.PENDING, **fields)

    def get(self, entry_id: UUID) -> StockTransaction:
        entry = self.session.get(StockTransaction, entry_id)
        if entry is None:
            raise TransactionNotFoundError(str(entry_id))
        return entry

    def get_by_number(self, transaction_number: str) -> StockTransaction:
        entry = self.session.execute(
            select(StockTransaction).where(
                StockTransaction.transaction_number == transaction_number
            )
        ).scalar_one_or_none()
        if entry is None:
            raise TransactionNotFoundError(transaction_number)
        return entry

    def find_reversal(self, entry_id: UUID) -> StockTransaction | None:
        return self.session.execute(
            select(StockTransaction).where(StockTransaction.reverses_entry_id == entry_id)
        ).scalar_one_or_none()

    def mark_completed(
        self,
        entry: StockTransaction,
        balance_after: Decimal,
        actor_id: UUID,
    ) -> StockTransaction:
        self.require_pending(entry, "complete")
        entry.status = TransactionStatus.COMPLETED.value
        entry.balance_after = balance_after
        entry.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "stock_transaction_completed",
            extra={"transaction_number": entry.transaction_number},
        )
        return entry

    def mark_cancelled(
        self,
        entry: StockTransaction,
        actor_id: UUID,
        reason: str | None = None,
    ) -> StockTransaction:
        self.require_pending(entry, "cancel")
        entry.status = TransactionStatus.CANCELLED.value
        if reason:
            entry.reason = reason
        entry.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "stock_transaction_cancelled",
            extra={"transaction_number": entry.transaction_number, "reason": reason},
        )
        return entry

    def require_pending(self, entry: StockTransaction, action: str) -> None:
        if entry.status != TransactionStatus.PENDING.value:
            raise InvalidTransactionStateError(entry.transaction_number, entry.status, action)

    def pending_due(self, as_of: date) -> list[StockTransaction]:
        """PENDING entries whose business date has arrived, oldest first."""
        return list(
            self.session.execute(
                select(StockTransaction)
                .where(
                    StockTransaction.status == TransactionStatus.PENDING.value,
                    StockTransaction.business_date <= as_of,
                )
                .order_by(*_NUMBER_ORDER)
            ).scalars()
        )

    def list_for_range(
        self,
        date_from: date,
        date_to: date,
        product_id: str | None = None,
        statuses: Sequence[TransactionStatus] = (TransactionStatus.COMPLETED,),
    ) -> list[StockTransaction]:
        stmt = select(StockTransaction).where(
            StockTransaction.business_date >= date_from,
            StockTransaction.business_date <= date_to,
            StockTransaction.status.in_([s.value for s in statuses]),
        )
        if product_id is not None:
            stmt = stmt.where(StockTransaction.product_id == product_id)
        return list(
            self.session.execute(
                stmt.order_by(*_NUMBER_ORDER)
            ).scalars()
        )

    def aggregate_by_day(
        self,
        date_from: date,
        date_to: date,
        product_id: str | None = None,
    ) -> dict[tuple[date, str], dict[LedgerColumn, Decimal]]:
        """
        Sum column deltas of COMPLETED entries per (business date, product).

        Summation happens in Python on Decimal values so the result is
        exact on every backend.
        """
        totals: dict[tuple[date, str], dict[LedgerColumn, Decimal]] = defaultdict(
            lambda: defaultdict(lambda: Decimal("0"))
        )
        for entry in self.list_for_range(date_from, date_to, product_id):
            totals[(entry.business_date, entry.product_id)][entry.column] += entry.column_delta
        return {key: dict(cols) for key, cols in totals.items()}
