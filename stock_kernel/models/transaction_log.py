"""
Module: stock_kernel.models.transaction_log
Responsibility: Append-only audit record of every stock-affecting event.
    Reporting reads it; the resync tool replays it to rebuild ledger rows.
Architecture position: Kernel > Models.

Invariants enforced:
    - transaction_number is unique (TRX-YYYYMMDD-NNN).
    - Entries leave PENDING at most once and are frozen afterwards
      (db/immutability.py).  No entry is ever deleted.
    - A reversal is a separate entry referencing the original through
      reverses_entry_id; at most one reversal per original
      (uq_stock_transaction_reverses).
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, DateTime, ForeignKey, Index, Numeric, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import TrackedBase, UUIDString
from stock_kernel.domain.columns import LedgerColumn
from stock_kernel.domain.transaction_types import TransactionStatus, TransactionType


class StockTransaction(TrackedBase):
    """
    One stock movement as it was recorded.

    Guarantees:
        - quantity is the signed effect on the running balance
          (positive = stock in, negative = stock out).
        - balance_after is the closing balance of the affected ledger row
          right after the movement was applied (None while PENDING).
    """

    __tablename__ = "stock_transactions"

    __table_args__ = (
        UniqueConstraint("transaction_number", name="uq_stock_transaction_number"),
        UniqueConstraint("reverses_entry_id", name="uq_stock_transaction_reverses"),
        Index("idx_stock_transaction_product_date", "product_id", "business_date"),
        Index("idx_stock_transaction_status", "status"),
        Index("idx_stock_transaction_order", "order_id"),
    )

    transaction_number: Mapped[str] = mapped_column(String(32), nullable=False)

    product_id: Mapped[str] = mapped_column(String(64), nullable=False)
    business_date: Mapped[date] = mapped_column(Date, nullable=False)
    transaction_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    transaction_type: Mapped[str] = mapped_column(String(32), nullable=False)
    ledger_column: Mapped[str] = mapped_column(String(32), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    balance_after: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)

    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=TransactionStatus.COMPLETED.value,
    )

    # Originating documents (all optional)
    order_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    order_item_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    production_batch_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    repacking_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reference_number: Mapped[str | None] = mapped_column(String(64), nullable=True)

    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    performed_by: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    reverses_entry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("stock_transactions.id"),
        nullable=True,
    )

    @property
    def type(self) -> TransactionType:
        return TransactionType(self.transaction_type)

    @property
    def column(self) -> LedgerColumn:
        return LedgerColumn(self.ledger_column)

    @property
    def status_enum(self) -> TransactionStatus:
        return TransactionStatus(self.status)

    @property
    def is_stock_in(self) -> bool:
        return self.quantity > 0

    @property
    def is_stock_out(self) -> bool:
        return self.quantity < 0

    @property
    def absolute_quantity(self) -> Decimal:
        return abs(self.quantity)

    @property
    def is_reversal(self) -> bool:
        return self.reverses_entry_id is not None

    @property
    def column_delta(self) -> Decimal:
        """Delta that was (or will be) added to ``ledger_column``."""
        return self.quantity * self.column.stock_sign

    def __repr__(self) -> str:
        return (
            f"<StockTransaction {self.transaction_number} {self.transaction_type} "
            f"{self.product_id} {self.quantity} [{self.status}]>"
        )
