"""
Stock transaction types and how each one lands on a ledger column.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    - Every transaction type maps to exactly one ledger column.
    - A log entry's ``quantity`` is its signed stock effect (+ in, - out);
      the column delta is recovered as ``quantity * column.stock_sign``.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from stock_kernel.domain.columns import LedgerColumn


class TransactionType(str, Enum):
    OPENING_BALANCE = "opening_balance"
    PRODUCTION_IN = "production_in"
    PURCHASE_IN = "purchase_in"
    REPACK_IN = "repack_in"
    ADJUSTMENT = "adjustment"
    SALE = "sale"
    SALE_RETURN = "sale_return"
    PRODUCTION_USAGE = "production_usage"
    REPACK_OUT = "repack_out"
    SAMPLE_OUT = "sample_out"
    SAMPLE_RETURN = "sample_return"
    WASTE = "waste"


class TransactionStatus(str, Enum):
    """Lifecycle of a log entry.

    Contract: PENDING -> COMPLETED or PENDING -> CANCELLED.  Nothing else.
    """

    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class TransactionRule:
    """How a transaction type changes the ledger.

    ``column_sign`` is applied to the caller's positive quantity to get the
    column delta.  ``signed`` types (opening corrections, adjustments) take
    the caller's sign as-is and therefore use ``column_sign`` of +1.
    """

    column: LedgerColumn
    column_sign: int = 1
    signed: bool = False
    requires_reason: bool = False

    def column_delta(self, quantity: Decimal) -> Decimal:
        return quantity * self.column_sign

    def stock_effect(self, quantity: Decimal) -> Decimal:
        return self.column_delta(quantity) * self.column.stock_sign


TRANSACTION_RULES: dict[TransactionType, TransactionRule] = {
    TransactionType.OPENING_BALANCE: TransactionRule(
        LedgerColumn.OPENING_BALANCE, signed=True,
    ),
    TransactionType.PRODUCTION_IN: TransactionRule(LedgerColumn.GOODS_IN),
    TransactionType.PURCHASE_IN: TransactionRule(LedgerColumn.GOODS_IN),
    TransactionType.REPACK_IN: TransactionRule(LedgerColumn.GOODS_IN),
    TransactionType.ADJUSTMENT: TransactionRule(
        LedgerColumn.ADJUSTMENT, signed=True, requires_reason=True,
    ),
    TransactionType.SALE: TransactionRule(LedgerColumn.SOLD),
    TransactionType.SALE_RETURN: TransactionRule(LedgerColumn.SOLD, column_sign=-1),
    TransactionType.PRODUCTION_USAGE: TransactionRule(LedgerColumn.PRODUCTION_OUT),
    TransactionType.REPACK_OUT: TransactionRule(LedgerColumn.REPACK_OUT),
    TransactionType.SAMPLE_OUT: TransactionRule(LedgerColumn.SAMPLE_OUT),
    TransactionType.SAMPLE_RETURN: TransactionRule(
        LedgerColumn.SAMPLE_OUT, column_sign=-1,
    ),
    TransactionType.WASTE: TransactionRule(LedgerColumn.WASTE_OUT),
}


def rule_for(transaction_type: TransactionType) -> TransactionRule:
    return TRANSACTION_RULES[transaction_type]


def column_delta_from_entry(column: LedgerColumn, quantity: Decimal) -> Decimal:
    """Column delta that produced a logged signed stock effect."""
    return quantity * column.stock_sign


# Type logged for a raw engine delta when the caller names only the column.
COLUMN_DEFAULT_TYPES: dict[LedgerColumn, TransactionType] = {
    LedgerColumn.OPENING_BALANCE: TransactionType.OPENING_BALANCE,
    LedgerColumn.GOODS_IN: TransactionType.PRODUCTION_IN,
    LedgerColumn.ADJUSTMENT: TransactionType.ADJUSTMENT,
    LedgerColumn.SOLD: TransactionType.SALE,
    LedgerColumn.PRODUCTION_OUT: TransactionType.PRODUCTION_USAGE,
    LedgerColumn.REPACK_OUT: TransactionType.REPACK_OUT,
    LedgerColumn.SAMPLE_OUT: TransactionType.SAMPLE_OUT,
    LedgerColumn.WASTE_OUT: TransactionType.WASTE,
}


def default_type_for(column: LedgerColumn) -> TransactionType:
    return COLUMN_DEFAULT_TYPES[column]
