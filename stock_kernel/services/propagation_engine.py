"""
PropagationEngine -- apply a delta to one day, carry it forward, log it.

Responsibility:
    The single write path for ledger balances.  ``apply_delta`` adds a
    delta to one balance column of one (product, business date) row,
    shifts the opening balance of every later row of the product by the
    signed propagation delta in one set-based UPDATE (for backdated writes
    and opening-balance corrections), and appends the COMPLETED transaction
    log entry that a resync replays.

Architecture position:
    Kernel > Services.  Called by StockMovementService (business events)
    and directly by integrations that already know the column.

Invariants enforced:
    - closing = opening + inflows - outflows on every row (the database
      recomputes it; the engine only moves opening and movement columns).
    - Continuity: after a committed apply_delta, each later row's opening
      equals the previous row's closing (plus any logged opening
      correction on that later day).
    - Every applied delta has exactly one COMPLETED log entry whose signed
      quantity is the delta's effect on the balance.
    - Gap days between a backdated date and today receive placeholder rows
      so that propagation has a contiguous recipient set.
    - Lock order: advisory lock on the product, then row locks on
      [date, ...) -- all inside the caller's transaction.

Failure modes:
    - InvalidBusinessDateError: date after today, or a datetime instead of a date.
    - InvalidQuantityError: non-finite delta or float.
    - UnknownLedgerColumnError: column is not a balance column.
    - TransactionColumnMismatchError: the transaction type books another column.
    - LedgerRowRetiredError: the target row was soft-deleted.
    - ProductNotFoundError: a catalog is configured and the product is unknown.
    - LedgerConcurrencyError: lock contention or a creation race.  The
      engine never retries; callers decide, because a blind retry of a
      business event could double-apply it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from stock_kernel.db.types import to_quantity
from stock_kernel.domain.business_calendar import BusinessCalendar
from stock_kernel.domain.columns import LedgerColumn, parse_column, propagation_delta
from stock_kernel.domain.transaction_types import TransactionType, default_type_for, rule_for
from stock_kernel.exceptions import InvalidBusinessDateError, TransactionColumnMismatchError
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.ledger_row import GAP_FILL_NOTE, LedgerRow
from stock_kernel.models.transaction_log import StockTransaction
from stock_kernel.services.base import BaseService
from stock_kernel.services.ledger_store import LedgerStore, concurrency_guard
from stock_kernel.services.product_catalog import ProductCatalog, require_product
from stock_kernel.services.transaction_log import (
    NO_REFERENCE,
    DocumentReference,
    TransactionLogService,
)

logger = get_logger("services.propagation")


@dataclass(frozen=True)
class PropagationOutcome:
    """What one apply_delta call changed besides the target row."""

    gap_rows_created: int
    rows_shifted: int
    carried_delta: Decimal


def validate_business_date(value: object, today: date) -> date:
    """Accept a ``date`` (not a datetime) that is not after today.

    Raises:
        InvalidBusinessDateError: Malformed or future date.
    """
    if isinstance(value, datetime) or not isinstance(value, date):
        raise InvalidBusinessDateError(value, "expected a calendar date")
    if value > today:
        raise InvalidBusinessDateError(
            value, f"after the current business date {today.isoformat()}"
        )
    return value


class PropagationEngine(BaseService[LedgerRow]):
    """
    Applies balance deltas with forward propagation.

    Contract:
        ``apply_delta`` runs get-or-create, gap fill, the column update, the
        bulk propagation and the log append inside the caller's transaction
        while holding the product's locks, so no other writer observes a
        half-propagated ledger.

    Guarantees:
        - A delta on today's row for a movement column touches only that row.
        - A delta on an earlier day (or on any opening balance) shifts every
          later row's opening by +delta (inflow/opening) or -delta (outflow).

    Non-goals:
        - Does NOT check business rules on quantities or reasons
          (StockMovementService does).
        - Does NOT retry on LedgerConcurrencyError.
    """

    def __init__(
        self,
        session: Session,
        calendar: BusinessCalendar,
        catalog: ProductCatalog | None = None,
        store: LedgerStore | None = None,
        log: TransactionLogService | None = None,
    ):
        super().__init__(session, calendar.clock)
        self._calendar = calendar
        self._catalog = catalog
        self._store = store or LedgerStore(session, calendar.clock)
        self._log = log or TransactionLogService(session, calendar.clock)
        self.last_outcome: PropagationOutcome | None = None

    @property
    def store(self) -> LedgerStore:
        return self._store

    @property
    def log(self) -> TransactionLogService:
        return self._log

    def apply_delta(
        self,
        product_id: str,
        business_date: date,
        column: LedgerColumn | str,
        delta: Decimal | int | str,
        actor_id: UUID,
        *,
        transaction_type: TransactionType | None = None,
        reference: DocumentReference = NO_REFERENCE,
        reason: str | None = None,
        notes: str | None = None,
    ) -> LedgerRow:
        """
        Add ``delta`` to ``column`` of the (product, date) row, propagate, log.

        ``transaction_type`` labels the log entry; without it the column's
        default type is used (``sold`` logs a SALE, ``goods_in`` a
        PRODUCTION_IN, and so on).

        Preconditions:
            - ``business_date`` is not after today in the business timezone.

        Postconditions:
            - The returned row reflects the delta and its recomputed closing.
            - Later rows' opening balances are shifted when the write was
              backdated or hit the opening balance.
            - One COMPLETED log entry records the delta.

        Returns:
            The updated LedgerRow for ``business_date``.
        """
        row, _ = self.post_delta(
            product_id, business_date, column, delta, actor_id,
            transaction_type=transaction_type,
            reference=reference,
            reason=reason,
            notes=notes,
        )
        return row

    def post_delta(
        self,
        product_id: str,
        business_date: date,
        column: LedgerColumn | str,
        delta: Decimal | int | str,
        actor_id: UUID,
        *,
        transaction_type: TransactionType | None = None,
        reference: DocumentReference = NO_REFERENCE,
        reason: str | None = None,
        notes: str | None = None,
        reverses_entry_id: UUID | None = None,
    ) -> tuple[LedgerRow, StockTransaction]:
        """``apply_delta`` that also returns the log entry it appended."""
        target = parse_column(column)
        kind = transaction_type or default_type_for(target)
        booked = rule_for(kind).column
        if booked is not target:
            raise TransactionColumnMismatchError(kind.value, booked.value, target.value)
        amount = to_quantity(delta)

        row = self._propagate(product_id, business_date, target, amount, actor_id)
        entry = self._log.record(
            product_id=product_id,
            business_date=business_date,
            transaction_type=kind,
            column=target,
            quantity=propagation_delta(target, amount),
            performed_by=actor_id,
            balance_after=row.closing_balance,
            reference=reference,
            reason=reason,
            notes=notes,
            reverses_entry_id=reverses_entry_id,
        )
        return row, entry

    def complete_pending(
        self,
        entry: StockTransaction,
        actor_id: UUID,
    ) -> tuple[LedgerRow, StockTransaction]:
        """Apply a staged PENDING entry and mark it COMPLETED; no new entry."""
        self._log.require_pending(entry, "complete")
        row = self._propagate(
            entry.product_id, entry.business_date, entry.column, entry.column_delta, actor_id
        )
        return row, self._log.mark_completed(entry, row.closing_balance, actor_id)

    def _propagate(
        self,
        product_id: str,
        business_date: date,
        target: LedgerColumn,
        amount: Decimal,
        actor_id: UUID,
    ) -> LedgerRow:
        today = self._calendar.today()
        validate_business_date(business_date, today)
        require_product(self._catalog, product_id)

        with LogContext.bind(
            product_id=product_id,
            business_date=business_date.isoformat(),
            actor_id=str(actor_id),
        ):
            self._store.lock_product_range(product_id, business_date)
            row = self._store.get_or_create_row(product_id, business_date, actor_id)

            gap_rows = 0
            if business_date < today:
                gap_rows = self._fill_gaps(row, today, actor_id)

            setattr(row, target.value, getattr(row, target.value) + amount)
            row.updated_by_id = actor_id
            with concurrency_guard(product_id, "apply_delta"):
                self.session.flush()

            carried = propagation_delta(target, amount)
            shifted = 0
            if (business_date < today or target is LedgerColumn.OPENING_BALANCE) and carried != 0:
                shifted = self._store.shift_opening_after(product_id, business_date, carried)

            self.session.refresh(row)
            self.last_outcome = PropagationOutcome(
                gap_rows_created=gap_rows,
                rows_shifted=shifted,
                carried_delta=carried,
            )

            logger.info(
                "delta_applied",
                extra={
                    "column": target.value,
                    "delta": amount,
                    "carried_delta": carried,
                    "gap_rows_created": gap_rows,
                    "rows_shifted": shifted,
                    "closing_balance": row.closing_balance,
                    "backdated": business_date < today,
                },
            )
        return row

    def _fill_gaps(self, row: LedgerRow, today: date, actor_id: UUID) -> int:
        """
        Insert placeholder rows for days strictly between ``row`` and today.

        Runs before the target row is mutated, so each placeholder opens at
        the closing balance of its nearest earlier row as it stood before
        this delta; the bulk propagation that follows then moves them
        together with every pre-existing later row.
        """
        start = row.business_date + timedelta(days=1)
        if start >= today:
            return 0

        last_gap_day = today - timedelta(days=1)
        existing = {
            r.business_date: r
            for r in self._store.list_range(row.product_id, start, last_gap_day)
        }
        taken = self._store.row_dates(row.product_id, start, last_gap_day)
        running = row.closing_balance
        placeholders = []
        day = start
        while day < today:
            current = existing.get(day)
            if current is not None:
                running = current.closing_balance
            elif day not in taken:
                placeholders.append(
                    {
                        "product_id": row.product_id,
                        "business_date": day,
                        "opening_balance": running,
                        "notes": GAP_FILL_NOTE,
                        "created_by_id": actor_id,
                    }
                )
            day += timedelta(days=1)

        if not placeholders:
            return 0

        self._store.bulk_insert_rows(placeholders)
        logger.info(
            "gap_rows_filled",
            extra={
                "product_id": row.product_id,
                "gap_from": placeholders[0]["business_date"],
                "gap_to": placeholders[-1]["business_date"],
                "count": len(placeholders),
            },
        )
        return len(placeholders)
