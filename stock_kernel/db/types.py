"""
Module: stock_kernel.db.types
Responsibility: Annotated column aliases and the quantity coercion helpers
    used by every model and service that touches a stock balance.
Architecture position: Kernel > DB.  Importable from models/, domain/,
    services/ and selectors/; imports none of them.

Invariants enforced:
    - No floats: quantities are Decimal with QUANTITY_DECIMAL_PLACES places.
    - Non-finite values (NaN, Infinity) never reach the database.

Failure modes:
    - InvalidQuantityError from to_quantity() on non-numeric or non-finite input.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated

from sqlalchemy import Numeric, String, Text

from stock_kernel.exceptions import InvalidQuantityError

# Stock quantity: 38 digits, 9 decimal places
Quantity = Annotated[Decimal, Numeric(38, 9)]

# Opaque product identifier owned by the external catalog
ProductId = Annotated[str, String(64)]

# Short codes (transaction types, statuses, column names)
ShortCode = Annotated[str, String(50)]

# Free text notes
LongText = Annotated[str, Text]

QUANTITY_DECIMAL_PLACES = 9
_QUANTUM = Decimal(1).scaleb(-QUANTITY_DECIMAL_PLACES)

ZERO = Decimal("0")


def to_quantity(value: object) -> Decimal:
    """
    Coerce an int, str or Decimal into a finite quantity.

    Floats are rejected: their binary representation does not round-trip
    through Numeric columns exactly.

    Raises:
        InvalidQuantityError: If the value is a float, non-numeric, or not finite.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise InvalidQuantityError(value, "use Decimal, int or str, not float")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(value)
        except InvalidOperation as exc:
            raise InvalidQuantityError(value, "not a number") from exc
    else:
        raise InvalidQuantityError(value, f"unsupported type {type(value).__name__}")
    if not result.is_finite():
        raise InvalidQuantityError(value, "must be finite")
    return result


def round_quantity(value: Decimal) -> Decimal:
    """Round to the stored precision using ROUND_HALF_UP."""
    return value.quantize(_QUANTUM, rounding=ROUND_HALF_UP)
