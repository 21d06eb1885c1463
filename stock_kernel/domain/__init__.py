"""
Pure domain layer.

Ledger columns and their directions, transaction types, stock level
classification, the clock and business calendar, and the frozen DTOs
handed to callers.  No ORM, no database, no I/O.
"""

from stock_kernel.domain.business_calendar import BusinessCalendar
from stock_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from stock_kernel.domain.columns import (
    INFLOW_COLUMNS,
    MOVEMENT_COLUMNS,
    OUTFLOW_COLUMNS,
    ColumnDirection,
    LedgerColumn,
    compute_closing,
    parse_column,
    propagation_delta,
)
from stock_kernel.domain.dtos import (
    ConsistencyIssue,
    DailySummary,
    DateSummary,
    LedgerRowInfo,
    Page,
    ProductInfo,
    SnapshotInfo,
    SnapshotSummary,
    StockAlert,
    StockCheckItem,
    StockCheckResult,
    StockCheckType,
)
from stock_kernel.domain.stock_levels import StockStatus, classify_stock
from stock_kernel.domain.transaction_types import (
    COLUMN_DEFAULT_TYPES,
    TRANSACTION_RULES,
    TransactionRule,
    TransactionStatus,
    TransactionType,
    default_type_for,
    rule_for,
)

__all__ = [
    "COLUMN_DEFAULT_TYPES",
    "INFLOW_COLUMNS",
    "MOVEMENT_COLUMNS",
    "OUTFLOW_COLUMNS",
    "TRANSACTION_RULES",
    "BusinessCalendar",
    "Clock",
    "ColumnDirection",
    "ConsistencyIssue",
    "DailySummary",
    "DateSummary",
    "DeterministicClock",
    "LedgerColumn",
    "LedgerRowInfo",
    "Page",
    "ProductInfo",
    "SnapshotInfo",
    "SnapshotSummary",
    "StockAlert",
    "StockCheckItem",
    "StockCheckResult",
    "StockCheckType",
    "StockStatus",
    "SystemClock",
    "TransactionRule",
    "TransactionStatus",
    "TransactionType",
    "classify_stock",
    "compute_closing",
    "default_type_for",
    "parse_column",
    "propagation_delta",
    "rule_for",
]
