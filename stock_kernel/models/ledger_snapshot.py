"""
Module: stock_kernel.models.ledger_snapshot
Responsibility: Immutable end-of-day copies of ledger rows, written by the
    rollover job and kept for a fixed retention window for reporting.
Architecture position: Kernel > Models.

Invariants enforced:
    - One snapshot per (product_id, snapshot_date): uq_snapshot_product_date.
    - Snapshots are never updated; individual deletes are rejected by the
      ORM listeners in db/immutability.py.  Retention cleanup removes them
      with a bulk DELETE by date.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, DateTime, Index, Numeric, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base, UUIDString
from stock_kernel.domain.columns import (
    MOVEMENT_COLUMNS,
    OUTFLOW_COLUMNS,
    LedgerColumn,
)
from stock_kernel.domain.dtos import SnapshotInfo

_ZERO = Decimal("0")


class LedgerSnapshot(Base):
    """
    Frozen copy of a ledger row at rollover time.

    Guarantees:
        - closing_balance is copied from the source row as a plain column,
          so later propagation into the live row does not alter history.
    """

    __tablename__ = "ledger_snapshots"

    __table_args__ = (
        UniqueConstraint("product_id", "snapshot_date", name="uq_snapshot_product_date"),
        Index("idx_snapshot_date", "snapshot_date"),
    )

    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    snapshot_date: Mapped[date] = mapped_column(Date, nullable=False)
    snapshot_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    opening_balance: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    goods_in: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    adjustment: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    sold: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    production_out: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    repack_out: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    sample_out: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    waste_out: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    closing_balance: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    minimum_threshold: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)
    maximum_threshold: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    created_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    def movements(self) -> dict[LedgerColumn, Decimal]:
        return {column: getattr(self, column.value) for column in MOVEMENT_COLUMNS}

    @property
    def stock_change(self) -> Decimal:
        return self.closing_balance - self.opening_balance

    @property
    def stock_change_percentage(self) -> Decimal:
        if self.opening_balance == 0:
            if self.closing_balance > 0:
                return Decimal("100")
            if self.closing_balance < 0:
                return Decimal("-100")
            return _ZERO
        return self.stock_change / self.opening_balance * 100

    @property
    def total_activity(self) -> Decimal:
        return sum((abs(v) for v in self.movements().values()), _ZERO)

    @property
    def turnover_ratio(self) -> Decimal | None:
        """Outflows over the average of opening and closing balance."""
        average = (self.opening_balance + self.closing_balance) / 2
        if average <= 0:
            return None
        outflow = sum((getattr(self, c.value) for c in OUTFLOW_COLUMNS), _ZERO)
        return outflow / average

    def to_dto(self) -> SnapshotInfo:
        return SnapshotInfo(
            product_id=self.product_id,
            snapshot_date=self.snapshot_date,
            snapshot_time=self.snapshot_time,
            opening_balance=self.opening_balance,
            movements=self.movements(),
            closing_balance=self.closing_balance,
            minimum_threshold=self.minimum_threshold,
            maximum_threshold=self.maximum_threshold,
            stock_change=self.stock_change,
            stock_change_percentage=self.stock_change_percentage,
            total_activity=self.total_activity,
            turnover_ratio=self.turnover_ratio,
        )
