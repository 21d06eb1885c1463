"""
Ledger balance columns and their sign convention.

Responsibility:
    Names every balance column of a ledger row, classifies it as opening,
    inflow or outflow, and owns the closing-balance formula.  Both the
    database computed column and the verification path are built from
    the tuples below, so the formula exists in exactly one place.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    - closing = opening + sum(inflows) - sum(outflows)
    - Propagation sign: +delta for inflows and opening, -delta for outflows.
"""

from collections.abc import Mapping
from decimal import Decimal
from enum import Enum

from stock_kernel.exceptions import UnknownLedgerColumnError


class ColumnDirection(str, Enum):
    OPENING = "opening"
    INFLOW = "inflow"
    OUTFLOW = "outflow"


class LedgerColumn(str, Enum):
    """Balance-bearing columns of a ledger row (values are attribute names)."""

    OPENING_BALANCE = "opening_balance"
    # Inflows
    GOODS_IN = "goods_in"
    ADJUSTMENT = "adjustment"
    # Outflows
    SOLD = "sold"
    PRODUCTION_OUT = "production_out"
    REPACK_OUT = "repack_out"
    SAMPLE_OUT = "sample_out"
    WASTE_OUT = "waste_out"

    @property
    def direction(self) -> ColumnDirection:
        if self is LedgerColumn.OPENING_BALANCE:
            return ColumnDirection.OPENING
        if self in INFLOW_COLUMNS:
            return ColumnDirection.INFLOW
        return ColumnDirection.OUTFLOW

    @property
    def stock_sign(self) -> int:
        """+1 when growing this column grows the balance, -1 otherwise."""
        return -1 if self.direction is ColumnDirection.OUTFLOW else 1

    @property
    def is_movement(self) -> bool:
        return self is not LedgerColumn.OPENING_BALANCE


INFLOW_COLUMNS: tuple[LedgerColumn, ...] = (
    LedgerColumn.GOODS_IN,
    LedgerColumn.ADJUSTMENT,
)

OUTFLOW_COLUMNS: tuple[LedgerColumn, ...] = (
    LedgerColumn.SOLD,
    LedgerColumn.PRODUCTION_OUT,
    LedgerColumn.REPACK_OUT,
    LedgerColumn.SAMPLE_OUT,
    LedgerColumn.WASTE_OUT,
)

MOVEMENT_COLUMNS: tuple[LedgerColumn, ...] = INFLOW_COLUMNS + OUTFLOW_COLUMNS


def parse_column(column: "LedgerColumn | str") -> LedgerColumn:
    """Resolve a column from its enum member or attribute name.

    Raises:
        UnknownLedgerColumnError: For anything that is not a balance column.
    """
    if isinstance(column, LedgerColumn):
        return column
    try:
        return LedgerColumn(column)
    except ValueError as exc:
        raise UnknownLedgerColumnError(column) from exc


def propagation_delta(column: LedgerColumn, delta: Decimal) -> Decimal:
    """Change in the running balance carried to later days."""
    return delta * column.stock_sign


def compute_closing(opening: Decimal, movements: Mapping[LedgerColumn, Decimal]) -> Decimal:
    """closing = opening + inflows - outflows (missing movements count as 0)."""
    total = opening
    for column in INFLOW_COLUMNS:
        total += movements.get(column, Decimal("0"))
    for column in OUTFLOW_COLUMNS:
        total -= movements.get(column, Decimal("0"))
    return total


def closing_sql_expression() -> str:
    """SQL text of the closing formula for the generated column."""
    inflows = " + ".join(c.value for c in INFLOW_COLUMNS)
    outflows = " - ".join(c.value for c in OUTFLOW_COLUMNS)
    return f"opening_balance + {inflows} - {outflows}"
