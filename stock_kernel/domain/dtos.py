"""
Read-side data transfer objects.

Frozen dataclasses returned by selectors and services so that callers outside
the kernel never hold live ORM instances.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Generic, TypeVar
from uuid import UUID

from stock_kernel.domain.columns import LedgerColumn
from stock_kernel.domain.stock_levels import StockStatus

T = TypeVar("T")


@dataclass(frozen=True)
class ProductInfo:
    """Reference data from the external product catalog."""

    product_id: str
    code: str
    name: str
    category: str | None = None


@dataclass(frozen=True)
class LedgerRowInfo:
    id: UUID
    product_id: str
    business_date: date
    opening_balance: Decimal
    movements: dict[LedgerColumn, Decimal]
    closing_balance: Decimal
    minimum_threshold: Decimal | None
    maximum_threshold: Decimal | None
    is_active: bool
    notes: str | None
    stock_status: StockStatus


@dataclass(frozen=True)
class SnapshotInfo:
    product_id: str
    snapshot_date: date
    snapshot_time: datetime
    opening_balance: Decimal
    movements: dict[LedgerColumn, Decimal]
    closing_balance: Decimal
    minimum_threshold: Decimal | None
    maximum_threshold: Decimal | None
    stock_change: Decimal
    stock_change_percentage: Decimal
    total_activity: Decimal
    turnover_ratio: Decimal | None


@dataclass(frozen=True)
class Page(Generic[T]):
    items: tuple[T, ...]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return (self.total + self.page_size - 1) // self.page_size


@dataclass(frozen=True)
class DailySummary:
    """Totals across every active product for one business date."""

    business_date: date
    product_count: int
    total_opening: Decimal
    movement_totals: dict[LedgerColumn, Decimal]
    total_closing: Decimal
    low_stock_count: int


@dataclass(frozen=True)
class DateSummary:
    """Row count and balance totals for one business date present in the ledger."""

    business_date: date
    row_count: int
    total_opening: Decimal
    total_closing: Decimal


@dataclass(frozen=True)
class SnapshotSummary:
    snapshot_date: date
    snapshot_time: datetime | None
    product_count: int


class StockCheckType(str, Enum):
    SAME_DAY = "same_day"
    FUTURE_DATE = "future_date"
    PAST_DATE = "past_date"


@dataclass(frozen=True)
class StockCheckItem:
    product_id: str
    requested: Decimal
    available: Decimal
    has_ledger_row: bool

    @property
    def shortage(self) -> Decimal:
        return max(self.requested - self.available, Decimal("0"))

    @property
    def sufficient(self) -> bool:
        return self.available >= self.requested


@dataclass(frozen=True)
class StockCheckResult:
    check_date: date
    balance_date: date
    check_type: StockCheckType
    items: tuple[StockCheckItem, ...] = field(default_factory=tuple)

    @property
    def all_sufficient(self) -> bool:
        return all(item.sufficient for item in self.items)

    @property
    def shortages(self) -> tuple[StockCheckItem, ...]:
        return tuple(item for item in self.items if not item.sufficient)


@dataclass(frozen=True)
class StockAlert:
    product_id: str
    business_date: date
    status: StockStatus
    closing_balance: Decimal
    minimum_threshold: Decimal | None
    product: ProductInfo | None = None

    @property
    def label(self) -> str:
        if self.product is not None:
            return f"{self.product.code} {self.product.name}"
        return self.product_id


@dataclass(frozen=True)
class ConsistencyIssue:
    product_id: str
    business_date: date
    kind: str  # "closing_formula" or "continuity"
    expected: Decimal
    actual: Decimal

    def describe(self) -> str:
        return (
            f"{self.kind} on {self.business_date.isoformat()}: "
            f"expected {self.expected}, found {self.actual}"
        )
