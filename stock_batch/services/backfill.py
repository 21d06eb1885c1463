"""
LedgerResyncService -- rebuild ledger rows from the transaction log.

Contract:
    ``resync(start_date, actor_id, product_id=None)`` walks every business
    date from ``start_date`` through today and, per product:

    - overwrites each movement column with the sum of the COMPLETED log
      entries for that (date, product, column);
    - sets opening = the previous row's freshly recomputed closing plus any
      opening-balance corrections logged for that day;
    - creates rows on days that have log activity but no row.

    The first row of a product that has no earlier row keeps its opening
    balance; it is the seed.  Soft-deleted rows are skipped.

    Running it twice in a row changes nothing the second time.

Architecture: stock_batch/services.  One transaction for the whole run;
    product locks are taken in product-id order.

Failure modes:
    - InvalidBusinessDateError: start_date after today.
    - LedgerConcurrencyError: lock contention; safe to re-run.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_kernel.db.engine import session_scope
from stock_kernel.db.types import ZERO, round_quantity
from stock_kernel.domain.business_calendar import BusinessCalendar
from stock_kernel.domain.columns import MOVEMENT_COLUMNS, LedgerColumn, compute_closing
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.ledger_row import LedgerRow
from stock_kernel.services.ledger_store import LedgerStore
from stock_kernel.services.propagation_engine import validate_business_date
from stock_kernel.services.transaction_log import TransactionLogService

from stock_batch.domain.types import ResyncResult

logger = get_logger("batch.resync")


class LedgerResyncService:
    """Recomputes ledger rows from the transaction log."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        calendar: BusinessCalendar,
    ):
        self._session_factory = session_factory
        self._calendar = calendar

    def resync(
        self,
        start_date: date,
        actor_id: UUID,
        product_id: str | None = None,
    ) -> ResyncResult:
        today = self._calendar.today()
        validate_business_date(start_date, today)

        with LogContext.bind(actor_id=str(actor_id), product_id=product_id):
            logger.info(
                "resync_started",
                extra={"start_date": start_date, "end_date": today},
            )
            with session_scope(self._session_factory) as session:
                store = LedgerStore(session, self._calendar.clock)
                log = TransactionLogService(session, self._calendar.clock)
                totals = log.aggregate_by_day(start_date, today, product_id)

                if product_id is not None:
                    products = [product_id]
                else:
                    products = sorted(
                        self._products_with_rows(session, start_date, today)
                        | {pid for _, pid in totals}
                    )

                updated = created = 0
                for pid in products:
                    u, c = self._resync_product(store, pid, start_date, today, totals, actor_id)
                    updated += u
                    created += c

            result = ResyncResult(
                start_date=start_date,
                end_date=today,
                processed_days=(today - start_date).days + 1,
                updated_rows=updated,
                created_rows=created,
                product_id=product_id,
            )
            logger.info(
                "resync_completed",
                extra={
                    "processed_days": result.processed_days,
                    "products": len(products),
                    "updated_rows": updated,
                    "created_rows": created,
                },
            )
        return result

    def _products_with_rows(self, session: Session, date_from: date, date_to: date) -> set[str]:
        return set(
            session.execute(
                select(LedgerRow.product_id).where(
                    LedgerRow.business_date >= date_from,
                    LedgerRow.business_date <= date_to,
                    LedgerRow.deleted_at.is_(None),
                )
            ).scalars()
        )

    def _resync_product(
        self,
        store: LedgerStore,
        product_id: str,
        start_date: date,
        today: date,
        totals: dict[tuple[date, str], dict[LedgerColumn, Decimal]],
        actor_id: UUID,
    ) -> tuple[int, int]:
        store.lock_product_range(product_id, start_date)
        rows = {row.business_date: row for row in store.list_range(product_id, start_date, today)}
        taken = store.row_dates(product_id, start_date, today)

        prior = store.latest_row_before(product_id, start_date)
        running = prior.closing_balance if prior is not None else ZERO
        seeded = prior is not None

        updated = created = 0
        day = start_date
        while day <= today:
            columns = totals.get((day, product_id), {})
            row = rows.get(day)
            if row is None:
                if day in taken or not columns:
                    day += timedelta(days=1)
                    continue
                row = store.create_row(product_id, day, actor_id, opening_balance=running)
                created += 1
                seeded = True

            if seeded:
                opening = running + columns.get(LedgerColumn.OPENING_BALANCE, ZERO)
            else:
                opening = row.opening_balance
                seeded = True
            movements = {column: columns.get(column, ZERO) for column in MOVEMENT_COLUMNS}

            if self._apply(row, opening, movements, actor_id):
                updated += 1
            running = compute_closing(opening, movements)
            day += timedelta(days=1)

        store.session.flush()
        return updated, created

    def _apply(
        self,
        row: LedgerRow,
        opening: Decimal,
        movements: dict[LedgerColumn, Decimal],
        actor_id: UUID,
    ) -> bool:
        changed = False
        if round_quantity(row.opening_balance) != round_quantity(opening):
            row.opening_balance = opening
            changed = True
        for column, value in movements.items():
            if round_quantity(getattr(row, column.value)) != round_quantity(value):
                setattr(row, column.value, value)
                changed = True
        if changed:
            row.updated_by_id = actor_id
        return changed
