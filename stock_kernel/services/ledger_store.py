"""
LedgerStore -- write-side access to ledger rows and snapshots.

Responsibility:
    Row lookup, get-or-create with opening balance seeding, explicit row
    creation, threshold/notes/active maintenance, soft delete, range locking,
    chunked bulk inserts, snapshot writes and retention deletes.  Balance
    columns are mutated only by the PropagationEngine and the resync tool,
    which call into this store.

Architecture position:
    Kernel > Services.  Used by PropagationEngine, StockMovementService,
    the rollover job and the resync tool.

Invariants enforced:
    - One row per (product, business date); explicit creation of an existing
      row raises LedgerRowAlreadyExistsError.
    - New rows are seeded from the closing balance of the latest earlier row
      of the same product (0 when there is none).
    - Thresholds are non-negative and minimum <= maximum.

Failure modes:
    - LedgerRowNotFoundError from require_row().
    - LedgerRowRetiredError when a write targets a soft-deleted row.
    - LedgerConcurrencyError when the database reports lock contention,
      a deadlock or a unique-key race (caller rolls back and may retry).
"""

from __future__ import annotations

import zlib
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, insert, select, text, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from stock_kernel.db.types import ZERO, to_quantity
from stock_kernel.domain.clock import Clock
from stock_kernel.domain.columns import MOVEMENT_COLUMNS
from stock_kernel.exceptions import (
    InvalidThresholdError,
    LedgerConcurrencyError,
    LedgerRowAlreadyExistsError,
    LedgerRowNotFoundError,
    LedgerRowRetiredError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.ledger_row import LedgerRow
from stock_kernel.models.ledger_snapshot import LedgerSnapshot
from stock_kernel.services.base import BaseService

logger = get_logger("services.ledger_store")

DEFAULT_BATCH_SIZE = 500


@contextmanager
def concurrency_guard(product_id: str | None, operation: str) -> Iterator[None]:
    """Translate lock/serialization/unique-race errors into LedgerConcurrencyError."""
    try:
        yield
    except (OperationalError, IntegrityError) as exc:
        logger.warning(
            "ledger_concurrency_conflict",
            extra={
                "product_id": product_id,
                "operation": operation,
                "db_error": type(exc.orig).__name__ if exc.orig is not None else None,
            },
        )
        raise LedgerConcurrencyError(
            product_id, operation, str(exc.orig or exc)
        ) from exc


def validate_thresholds(
    minimum: Decimal | int | str | None,
    maximum: Decimal | int | str | None,
) -> tuple[Decimal | None, Decimal | None]:
    """Coerce and validate planning thresholds.

    Raises:
        InvalidThresholdError: Negative values or minimum above maximum.
    """
    low = to_quantity(minimum) if minimum is not None else None
    high = to_quantity(maximum) if maximum is not None else None
    if low is not None and low < 0:
        raise InvalidThresholdError(low, high, "minimum must not be negative")
    if high is not None and high < 0:
        raise InvalidThresholdError(low, high, "maximum must not be negative")
    if low is not None and high is not None and low > high:
        raise InvalidThresholdError(low, high, "minimum exceeds maximum")
    return low, high


def _chunks(items: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


def product_lock_key(product_id: str) -> int:
    """Stable signed 32-bit key for pg_advisory_xact_lock."""
    return zlib.crc32(f"ledger:{product_id}".encode()) - 2**31


class LedgerStore(BaseService[LedgerRow]):
    """
    Persistence operations over ledger rows and snapshots.

    Contract:
        Every method works inside the caller's transaction and flushes.

    Non-goals:
        - Does not apply movement deltas (PropagationEngine does).
        - Does not commit.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)

    # -------------------------------------------------------------------------
    # Reads used on the write path
    # -------------------------------------------------------------------------

    def get_row(self, product_id: str, business_date: date) -> LedgerRow | None:
        """Active (not soft-deleted) row for the product and date, or None."""
        return self.session.execute(
            select(LedgerRow).where(
                LedgerRow.product_id == product_id,
                LedgerRow.business_date == business_date,
                LedgerRow.deleted_at.is_(None),
            )
        ).scalar_one_or_none()

    def require_row(self, product_id: str, business_date: date) -> LedgerRow:
        row = self.get_row(product_id, business_date)
        if row is None:
            raise LedgerRowNotFoundError(product_id, business_date)
        return row

    def _get_any_row(self, product_id: str, business_date: date) -> LedgerRow | None:
        return self.session.execute(
            select(LedgerRow).where(
                LedgerRow.product_id == product_id,
                LedgerRow.business_date == business_date,
            )
        ).scalar_one_or_none()

    def closing_before(self, product_id: str, business_date: date) -> Decimal:
        """Closing balance of the latest active row strictly before the date (0 if none)."""
        closing = self.session.execute(
            select(LedgerRow.closing_balance)
            .where(
                LedgerRow.product_id == product_id,
                LedgerRow.business_date < business_date,
                LedgerRow.deleted_at.is_(None),
            )
            .order_by(LedgerRow.business_date.desc())
            .limit(1)
        ).scalar_one_or_none()
        return closing if closing is not None else ZERO

    def latest_row_before(self, product_id: str, business_date: date) -> LedgerRow | None:
        return self.session.execute(
            select(LedgerRow)
            .where(
                LedgerRow.product_id == product_id,
                LedgerRow.business_date < business_date,
                LedgerRow.deleted_at.is_(None),
            )
            .order_by(LedgerRow.business_date.desc())
            .limit(1)
        ).scalar_one_or_none()

    def list_range(
        self,
        product_id: str,
        date_from: date,
        date_to: date,
    ) -> list[LedgerRow]:
        """Active rows of the product with date_from <= business_date <= date_to, by date."""
        return list(
            self.session.execute(
                select(LedgerRow)
                .where(
                    LedgerRow.product_id == product_id,
                    LedgerRow.business_date >= date_from,
                    LedgerRow.business_date <= date_to,
                    LedgerRow.deleted_at.is_(None),
                )
                .order_by(LedgerRow.business_date)
            ).scalars()
        )

    def row_dates(self, product_id: str, date_from: date, date_to: date) -> set[date]:
        """Dates in the range holding any row of the product, soft-deleted ones included."""
        return set(
            self.session.execute(
                select(LedgerRow.business_date).where(
                    LedgerRow.product_id == product_id,
                    LedgerRow.business_date >= date_from,
                    LedgerRow.business_date <= date_to,
                )
            ).scalars()
        )

    def find_low_stock(self, business_date: date) -> list[LedgerRow]:
        """Rows at or below their minimum threshold (inclusive), lowest closing first."""
        return list(
            self.session.execute(
                select(LedgerRow)
                .where(
                    LedgerRow.business_date == business_date,
                    LedgerRow.deleted_at.is_(None),
                    LedgerRow.is_active.is_(True),
                    LedgerRow.minimum_threshold.is_not(None),
                    LedgerRow.closing_balance <= LedgerRow.minimum_threshold,
                )
                .order_by(LedgerRow.closing_balance, LedgerRow.product_id)
            ).scalars()
        )

    def active_rows_on(self, business_date: date) -> list[LedgerRow]:
        return list(
            self.session.execute(
                select(LedgerRow)
                .where(
                    LedgerRow.business_date == business_date,
                    LedgerRow.deleted_at.is_(None),
                    LedgerRow.is_active.is_(True),
                )
                .order_by(LedgerRow.product_id)
            ).scalars()
        )

    def product_ids_on(self, business_date: date) -> set[str]:
        """Products with any row (active, inactive or deleted) on the date."""
        return set(
            self.session.execute(
                select(LedgerRow.product_id).where(LedgerRow.business_date == business_date)
            ).scalars()
        )

    def count_rows_on(self, business_date: date) -> int:
        return self.session.execute(
            select(func.count(LedgerRow.id)).where(
                LedgerRow.business_date == business_date,
                LedgerRow.deleted_at.is_(None),
            )
        ).scalar_one()

    def latest_date_before(self, business_date: date) -> date | None:
        """Most recent distinct business date before the given one, across all products."""
        return self.session.execute(
            select(func.max(LedgerRow.business_date)).where(
                LedgerRow.business_date < business_date,
                LedgerRow.deleted_at.is_(None),
            )
        ).scalar_one_or_none()

    # -------------------------------------------------------------------------
    # Locking
    # -------------------------------------------------------------------------

    def lock_product_range(self, product_id: str, from_date: date) -> list[LedgerRow]:
        """
        Lock every row of the product dated on or after ``from_date``.

        On PostgreSQL a transaction-scoped advisory lock per product is taken
        first, so writers that are about to INSERT rows (get-or-create, gap
        fill) serialize as well; row locks alone cannot cover rows that do
        not exist yet.  SQLite serializes writers at the database level.
        """
        with concurrency_guard(product_id, "lock_product_range"):
            if self.session.get_bind().dialect.name == "postgresql":
                self.session.execute(
                    text("SELECT pg_advisory_xact_lock(:key)"),
                    {"key": product_lock_key(product_id)},
                )
            rows = list(
                self.session.execute(
                    select(LedgerRow)
                    .where(
                        LedgerRow.product_id == product_id,
                        LedgerRow.business_date >= from_date,
                    )
                    .order_by(LedgerRow.business_date)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                ).scalars()
            )
        return rows

    def try_advisory_lock(self, name: str) -> bool:
        """Non-blocking transaction-scoped lock on PostgreSQL; always True elsewhere."""
        if self.session.get_bind().dialect.name != "postgresql":
            return True
        return bool(
            self.session.execute(
                text("SELECT pg_try_advisory_xact_lock(:key)"),
                {"key": product_lock_key(name)},
            ).scalar_one()
        )

    # -------------------------------------------------------------------------
    # Row creation
    # -------------------------------------------------------------------------

    def get_or_create_row(
        self,
        product_id: str,
        business_date: date,
        actor_id: UUID,
    ) -> LedgerRow:
        """
        Return the row for (product, date), creating it when absent.

        A created row takes the closing balance of the latest earlier row
        as its opening balance (0 for a product's first row) and zero
        movements.

        Raises:
            LedgerRowRetiredError: The row exists but was soft-deleted.
            LedgerConcurrencyError: Another transaction created it first.
        """
        row = self._get_any_row(product_id, business_date)
        if row is not None:
            if row.is_deleted:
                raise LedgerRowRetiredError(product_id, business_date)
            return row

        opening = self.closing_before(product_id, business_date)
        row = LedgerRow(
            product_id=product_id,
            business_date=business_date,
            opening_balance=opening,
            created_by_id=actor_id,
        )
        self._insert(row)
        logger.debug(
            "ledger_row_created",
            extra={
                "product_id": product_id,
                "business_date": business_date,
                "opening_balance": opening,
            },
        )
        return row

    def create_row(
        self,
        product_id: str,
        business_date: date,
        actor_id: UUID,
        *,
        opening_balance: Decimal | int | str = ZERO,
        minimum_threshold: Decimal | int | str | None = None,
        maximum_threshold: Decimal | int | str | None = None,
        notes: str | None = None,
    ) -> LedgerRow:
        """
        Explicitly create a row; the opening balance is taken as given.

        Raises:
            LedgerRowAlreadyExistsError: A row already exists for (product, date).
            InvalidThresholdError: Threshold validation failed.
        """
        minimum, maximum = validate_thresholds(minimum_threshold, maximum_threshold)
        if self._get_any_row(product_id, business_date) is not None:
            raise LedgerRowAlreadyExistsError(product_id, business_date)
        row = LedgerRow(
            product_id=product_id,
            business_date=business_date,
            opening_balance=to_quantity(opening_balance),
            minimum_threshold=minimum,
            maximum_threshold=maximum,
            notes=notes,
            created_by_id=actor_id,
        )
        self._insert(row)
        logger.info(
            "ledger_row_registered",
            extra={"product_id": product_id, "business_date": business_date},
        )
        return row

    def _insert(self, row: LedgerRow) -> None:
        self.session.add(row)
        with concurrency_guard(row.product_id, "insert_ledger_row"):
            self.session.flush()

    def bulk_insert_rows(
        self,
        rows: Sequence[Mapping[str, Any]],
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> int:
        """
        Insert ledger rows with parameterized executemany, chunked.

        Each mapping carries attribute names of LedgerRow (closing_balance
        excluded; the database computes it).
        """
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive: {batch_size}")
        inserted = 0
        with concurrency_guard(None, "bulk_insert_rows"):
            for chunk in _chunks(rows, batch_size):
                self.session.execute(insert(LedgerRow), [dict(r) for r in chunk])
                inserted += len(chunk)
        return inserted

    # -------------------------------------------------------------------------
    # Opening balance propagation
    # -------------------------------------------------------------------------

    def shift_opening_after(
        self,
        product_id: str,
        business_date: date,
        delta: Decimal,
    ) -> int:
        """
        Add ``delta`` to the opening balance of every active row of the
        product dated after ``business_date``, in one UPDATE.

        Returns:
            Number of rows shifted.
        """
        with concurrency_guard(product_id, "shift_opening_after"):
            result = self.session.execute(
                update(LedgerRow)
                .where(
                    LedgerRow.product_id == product_id,
                    LedgerRow.business_date > business_date,
                    LedgerRow.deleted_at.is_(None),
                )
                .values(opening_balance=LedgerRow.opening_balance + delta)
                .execution_options(synchronize_session=False)
            )
        self._expire_product_rows(product_id, after=business_date)
        return result.rowcount

    def _expire_product_rows(self, product_id: str, after: date | None = None) -> None:
        """Drop cached state of the product's rows so the next access reloads
        opening and the recomputed closing from the database."""
        for obj in list(self.session.identity_map.values()):
            if (
                isinstance(obj, LedgerRow)
                and obj.product_id == product_id
                and (after is None or obj.business_date > after)
            ):
                self.session.expire(obj)

    # -------------------------------------------------------------------------
    # Row maintenance
    # -------------------------------------------------------------------------

    def update_thresholds(
        self,
        product_id: str,
        business_date: date,
        actor_id: UUID,
        minimum_threshold: Decimal | int | str | None,
        maximum_threshold: Decimal | int | str | None,
    ) -> LedgerRow:
        minimum, maximum = validate_thresholds(minimum_threshold, maximum_threshold)
        row = self.require_row(product_id, business_date)
        row.minimum_threshold = minimum
        row.maximum_threshold = maximum
        row.updated_by_id = actor_id
        self.session.flush()
        return row

    def update_notes(
        self,
        product_id: str,
        business_date: date,
        actor_id: UUID,
        notes: str | None,
    ) -> LedgerRow:
        row = self.require_row(product_id, business_date)
        row.notes = notes
        row.updated_by_id = actor_id
        self.session.flush()
        return row

    def set_active(
        self,
        product_id: str,
        business_date: date,
        actor_id: UUID,
        is_active: bool,
    ) -> LedgerRow:
        """Inactive rows stay in the ledger but are not carried forward by rollover."""
        row = self.require_row(product_id, business_date)
        row.is_active = is_active
        row.updated_by_id = actor_id
        self.session.flush()
        return row

    def soft_delete_row(
        self,
        product_id: str,
        business_date: date,
        actor_id: UUID,
    ) -> LedgerRow:
        row = self.require_row(product_id, business_date)
        row.deleted_at = self._clock.now()
        row.is_active = False
        row.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "ledger_row_soft_deleted",
            extra={"product_id": product_id, "business_date": business_date},
        )
        return row

    # -------------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------------

    def snapshot_count(self, snapshot_date: date) -> int:
        return self.session.execute(
            select(func.count(LedgerSnapshot.id)).where(
                LedgerSnapshot.snapshot_date == snapshot_date
            )
        ).scalar_one()

    def insert_snapshots(
        self,
        rows: Sequence[LedgerRow],
        snapshot_time: datetime,
        actor_id: UUID,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> int:
        """Copy rows into ledger_snapshots (closing balance stored as a value)."""
        payload = [
            {
                "product_id": row.product_id,
                "snapshot_date": row.business_date,
                "snapshot_time": snapshot_time,
                "opening_balance": row.opening_balance,
                **{c.value: getattr(row, c.value) for c in MOVEMENT_COLUMNS},
                "closing_balance": row.closing_balance,
                "minimum_threshold": row.minimum_threshold,
                "maximum_threshold": row.maximum_threshold,
                "notes": row.notes,
                "created_by_id": actor_id,
            }
            for row in rows
        ]
        written = 0
        with concurrency_guard(None, "insert_snapshots"):
            for chunk in _chunks(payload, batch_size):
                self.session.execute(insert(LedgerSnapshot), list(chunk))
                written += len(chunk)
        return written

    def delete_snapshots_before(self, cutoff: date) -> int:
        """Retention cleanup: remove snapshots dated strictly before ``cutoff``."""
        result = self.session.execute(
            delete(LedgerSnapshot)
            .where(LedgerSnapshot.snapshot_date < cutoff)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
