"""
Module: stock_kernel.models.ledger_row
Responsibility: ORM persistence for the daily ledger -- one balance row per
    (product, business date).
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - One row per (product_id, business_date): uq_ledger_product_date.
    - closing_balance is a STORED generated column computed by the database
      from the opening balance and the movement columns.  It is never
      written from Python; every INSERT/UPDATE leaves it to the database.

Failure modes:
    - IntegrityError on a duplicate (product_id, business_date); the ledger
      store translates it into LedgerRowAlreadyExistsError or, during
      concurrent creation, LedgerConcurrencyError.
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, Computed, Date, DateTime, Index, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import TrackedBase
from stock_kernel.domain.columns import (
    MOVEMENT_COLUMNS,
    LedgerColumn,
    closing_sql_expression,
)
from stock_kernel.domain.dtos import LedgerRowInfo
from stock_kernel.domain.stock_levels import (
    StockStatus,
    classify_stock,
    days_until_reorder,
    stock_utilization,
)

GAP_FILL_NOTE = "Auto-filled gap date"


def _movement_column() -> Mapped[Decimal]:
    return mapped_column(
        Numeric(38, 9),
        nullable=False,
        default=Decimal("0"),
        server_default="0",
    )


class LedgerRow(TrackedBase):
    """
    Stock balance of one product for one business date.

    Contract:
        Balance columns change only through the propagation engine (movement
        deltas and bulk opening-balance propagation) and the resync tool.

    Guarantees:
        - closing_balance == opening_balance + goods_in + adjustment
          - sold - production_out - repack_out - sample_out - waste_out.

    Non-goals:
        - Does not know product names; product_id is opaque.
    """

    __tablename__ = "ledger_rows"

    __table_args__ = (
        UniqueConstraint("product_id", "business_date", name="uq_ledger_product_date"),
        Index("idx_ledger_business_date", "business_date"),
        Index("idx_ledger_product_date", "product_id", "business_date"),
    )

    product_id: Mapped[str] = mapped_column(String(64), nullable=False)

    business_date: Mapped[date] = mapped_column(Date, nullable=False)

    opening_balance: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
        default=Decimal("0"),
        server_default="0",
    )

    # Inflows
    goods_in: Mapped[Decimal] = _movement_column()
    adjustment: Mapped[Decimal] = _movement_column()

    # Outflows
    sold: Mapped[Decimal] = _movement_column()
    production_out: Mapped[Decimal] = _movement_column()
    repack_out: Mapped[Decimal] = _movement_column()
    sample_out: Mapped[Decimal] = _movement_column()
    waste_out: Mapped[Decimal] = _movement_column()

    closing_balance: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        Computed(closing_sql_expression(), persisted=True),
    )

    minimum_threshold: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)
    maximum_threshold: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_gap_fill(self) -> bool:
        return self.notes == GAP_FILL_NOTE

    def movements(self) -> dict[LedgerColumn, Decimal]:
        return {column: getattr(self, column.value) for column in MOVEMENT_COLUMNS}

    @property
    def stock_status(self) -> StockStatus:
        return classify_stock(
            self.closing_balance, self.minimum_threshold, self.maximum_threshold
        )

    @property
    def stock_utilization(self) -> Decimal | None:
        return stock_utilization(self.closing_balance, self.maximum_threshold)

    def days_until_reorder(self, average_daily_usage: Decimal) -> int | None:
        return days_until_reorder(
            self.closing_balance, self.minimum_threshold, average_daily_usage
        )

    def to_dto(self) -> LedgerRowInfo:
        return LedgerRowInfo(
            id=self.id,
            product_id=self.product_id,
            business_date=self.business_date,
            opening_balance=self.opening_balance,
            movements=self.movements(),
            closing_balance=self.closing_balance,
            minimum_threshold=self.minimum_threshold,
            maximum_threshold=self.maximum_threshold,
            is_active=self.is_active,
            notes=self.notes,
            stock_status=self.stock_status,
        )

    def __repr__(self) -> str:
        return (
            f"<LedgerRow {self.product_id} {self.business_date}: "
            f"{self.opening_balance} -> {self.closing_balance}>"
        )
