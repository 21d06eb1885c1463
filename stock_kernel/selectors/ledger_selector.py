"""
Module: stock_kernel.selectors.ledger_selector
Responsibility: Lock-free read models over ledger rows and snapshots --
    balances as of a date, availability checks for invoices, daily
    summaries, product history, snapshot browsing and low-stock reports.
Architecture position: Kernel > Selectors.  May import from db/, domain/ and
    models/.  MUST NOT import from services/.

Invariants enforced:
    - Soft-deleted rows are invisible to every query here.
    - No FOR UPDATE: a read may observe the ledger just before or just after
      a concurrent propagation, never a half-propagated one (the write is a
      single transaction).

Failure modes:
    - Returns empty results / zero balances when nothing matches.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import func, select

from stock_kernel.db.types import ZERO, to_quantity
from stock_kernel.domain.business_calendar import BusinessCalendar
from stock_kernel.domain.columns import MOVEMENT_COLUMNS
from stock_kernel.domain.dtos import (
    DailySummary,
    DateSummary,
    LedgerRowInfo,
    Page,
    SnapshotInfo,
    SnapshotSummary,
    StockAlert,
    StockCheckItem,
    StockCheckResult,
    StockCheckType,
)
from stock_kernel.domain.stock_levels import StockStatus
from stock_kernel.models.ledger_row import LedgerRow
from stock_kernel.models.ledger_snapshot import LedgerSnapshot
from stock_kernel.selectors.base import BaseSelector

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from stock_kernel.services.product_catalog import ProductCatalog

ALERT_STATUSES = (StockStatus.OUT_OF_STOCK, StockStatus.LOW_STOCK)


class LedgerSelector(BaseSelector[LedgerRow]):
    """
    Read-only ledger queries.

    Contract:
        Every method issues plain SELECTs and returns DTOs or scalars.
    """

    def __init__(self, session: Session, calendar: BusinessCalendar | None = None):
        super().__init__(session, calendar)

    def _active(self):
        return select(LedgerRow).where(LedgerRow.deleted_at.is_(None))

    # -------------------------------------------------------------------------
    # Balances
    # -------------------------------------------------------------------------

    def balance_as_of(self, product_id: str, as_of: date) -> Decimal:
        """Closing balance of the latest row on or before ``as_of`` (0 if none)."""
        closing = self.session.execute(
            select(LedgerRow.closing_balance)
            .where(
                LedgerRow.product_id == product_id,
                LedgerRow.business_date <= as_of,
                LedgerRow.deleted_at.is_(None),
            )
            .order_by(LedgerRow.business_date.desc())
            .limit(1)
        ).scalar_one_or_none()
        return closing if closing is not None else ZERO

    def get_row(self, product_id: str, business_date: date) -> LedgerRowInfo | None:
        row = self.session.execute(
            self._active().where(
                LedgerRow.product_id == product_id,
                LedgerRow.business_date == business_date,
            )
        ).scalar_one_or_none()
        return row.to_dto() if row is not None else None

    def check_stock(
        self,
        invoice_date: date,
        requested: Mapping[str, Decimal | int | str],
    ) -> StockCheckResult:
        """
        Check requested quantities against stock for an invoice date.

        Same-day and future invoices are checked against today's balance
        (future stock is unknown); past invoices against the balance of
        that day.
        """
        today = self._calendar.today()
        if invoice_date == today:
            check_type, balance_date = StockCheckType.SAME_DAY, today
        elif invoice_date > today:
            check_type, balance_date = StockCheckType.FUTURE_DATE, today
        else:
            check_type, balance_date = StockCheckType.PAST_DATE, invoice_date

        on_date = {
            row.product_id: row
            for row in self.session.execute(
                self._active().where(
                    LedgerRow.business_date == balance_date,
                    LedgerRow.product_id.in_(list(requested)),
                )
            ).scalars()
        }
        items = []
        for product_id, quantity in requested.items():
            row = on_date.get(product_id)
            available = (
                row.closing_balance if row is not None
                else self.balance_as_of(product_id, balance_date)
            )
            items.append(
                StockCheckItem(
                    product_id=product_id,
                    requested=to_quantity(quantity),
                    available=available,
                    has_ledger_row=row is not None,
                )
            )
        return StockCheckResult(invoice_date, balance_date, check_type, tuple(items))

    # -------------------------------------------------------------------------
    # Summaries
    # -------------------------------------------------------------------------

    def stock_summary(self, business_date: date) -> DailySummary:
        rows = self.session.execute(
            self._active().where(
                LedgerRow.business_date == business_date,
                LedgerRow.is_active.is_(True),
            )
        ).scalars().all()
        totals = {column: ZERO for column in MOVEMENT_COLUMNS}
        total_opening = ZERO
        total_closing = ZERO
        low = 0
        for row in rows:
            total_opening += row.opening_balance
            total_closing += row.closing_balance
            for column, value in row.movements().items():
                totals[column] += value
            if row.stock_status in ALERT_STATUSES:
                low += 1
        return DailySummary(
            business_date=business_date,
            product_count=len(rows),
            total_opening=total_opening,
            movement_totals=totals,
            total_closing=total_closing,
            low_stock_count=low,
        )

    def product_history(
        self,
        product_id: str,
        date_from: date,
        date_to: date,
    ) -> list[LedgerRowInfo]:
        rows = self.session.execute(
            self._active()
            .where(
                LedgerRow.product_id == product_id,
                LedgerRow.business_date >= date_from,
                LedgerRow.business_date <= date_to,
            )
            .order_by(LedgerRow.business_date)
        ).scalars()
        return [row.to_dto() for row in rows]

    def inventory_dates(self, limit: int = 30) -> list[DateSummary]:
        """Business dates present in the ledger, newest first."""
        result = self.session.execute(
            select(
                LedgerRow.business_date,
                func.count(LedgerRow.id),
                func.sum(LedgerRow.opening_balance),
                func.sum(LedgerRow.closing_balance),
            )
            .where(LedgerRow.deleted_at.is_(None))
            .group_by(LedgerRow.business_date)
            .order_by(LedgerRow.business_date.desc())
            .limit(limit)
        )
        return [
            DateSummary(
                business_date=business_date,
                row_count=count,
                total_opening=Decimal(str(opening or 0)),
                total_closing=Decimal(str(closing or 0)),
            )
            for business_date, count, opening, closing in result
        ]

    def distinct_dates_before(self, business_date: date) -> list[date]:
        return list(
            self.session.execute(
                select(LedgerRow.business_date)
                .where(
                    LedgerRow.business_date < business_date,
                    LedgerRow.deleted_at.is_(None),
                )
                .distinct()
                .order_by(LedgerRow.business_date.desc())
            ).scalars()
        )

    def active_products_on(self, business_date: date) -> list[str]:
        return list(
            self.session.execute(
                select(LedgerRow.product_id)
                .where(
                    LedgerRow.business_date == business_date,
                    LedgerRow.deleted_at.is_(None),
                    LedgerRow.is_active.is_(True),
                )
                .order_by(LedgerRow.product_id)
            ).scalars()
        )

    # -------------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------------

    def list_snapshots(
        self,
        product_id: str | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
        page: int = 1,
        page_size: int = 50,
    ) -> Page[SnapshotInfo]:
        conditions = []
        if product_id is not None:
            conditions.append(LedgerSnapshot.product_id == product_id)
        if date_from is not None:
            conditions.append(LedgerSnapshot.snapshot_date >= date_from)
        if date_to is not None:
            conditions.append(LedgerSnapshot.snapshot_date <= date_to)

        total = self.session.execute(
            select(func.count(LedgerSnapshot.id)).where(*conditions)
        ).scalar_one()
        page = max(page, 1)
        snapshots = self.session.execute(
            select(LedgerSnapshot)
            .where(*conditions)
            .order_by(LedgerSnapshot.snapshot_date.desc(), LedgerSnapshot.product_id)
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).scalars()
        return Page(
            items=tuple(s.to_dto() for s in snapshots),
            total=total,
            page=page,
            page_size=page_size,
        )

    def latest_snapshot_info(self) -> SnapshotSummary | None:
        latest = self.session.execute(
            select(func.max(LedgerSnapshot.snapshot_date))
        ).scalar_one_or_none()
        if latest is None:
            return None
        count, snapshot_time = self.session.execute(
            select(func.count(LedgerSnapshot.id), func.max(LedgerSnapshot.snapshot_time))
            .where(LedgerSnapshot.snapshot_date == latest)
        ).one()
        return SnapshotSummary(latest, snapshot_time, count)

    def snapshot_dates(self) -> list[date]:
        return list(
            self.session.execute(
                select(LedgerSnapshot.snapshot_date)
                .distinct()
                .order_by(LedgerSnapshot.snapshot_date)
            ).scalars()
        )

    # -------------------------------------------------------------------------
    # Alerts
    # -------------------------------------------------------------------------

    def low_stock_report(
        self,
        business_date: date,
        catalog: ProductCatalog | None = None,
    ) -> list[StockAlert]:
        """Active rows that are out of stock or at/below their minimum, lowest first."""
        rows = self.session.execute(
            self._active()
            .where(
                LedgerRow.business_date == business_date,
                LedgerRow.is_active.is_(True),
            )
            .order_by(LedgerRow.closing_balance, LedgerRow.product_id)
        ).scalars()
        alerts = []
        for row in rows:
            status = row.stock_status
            if status not in ALERT_STATUSES:
                continue
            alerts.append(
                StockAlert(
                    product_id=row.product_id,
                    business_date=row.business_date,
                    status=status,
                    closing_balance=row.closing_balance,
                    minimum_threshold=row.minimum_threshold,
                    product=catalog.describe(row.product_id) if catalog is not None else None,
                )
            )
        return alerts
