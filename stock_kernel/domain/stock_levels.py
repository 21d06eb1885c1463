"""
Stock level classification and planning helpers.

Pure functions shared by the ledger row model, snapshots, the selectors and
the alert job.
"""

from decimal import ROUND_FLOOR, Decimal
from enum import Enum


class StockStatus(str, Enum):
    OUT_OF_STOCK = "out_of_stock"
    LOW_STOCK = "low_stock"
    OVERSTOCK = "overstock"
    AVAILABLE = "available"


def classify_stock(
    closing: Decimal,
    minimum: Decimal | None,
    maximum: Decimal | None,
) -> StockStatus:
    """Classify a closing balance against its planning bounds.

    The low-stock boundary is inclusive: ``closing == minimum`` is LOW_STOCK.
    """
    if closing <= 0:
        return StockStatus.OUT_OF_STOCK
    if minimum is not None and minimum > 0 and closing <= minimum:
        return StockStatus.LOW_STOCK
    if maximum is not None and maximum > 0 and closing >= maximum:
        return StockStatus.OVERSTOCK
    return StockStatus.AVAILABLE


def stock_utilization(closing: Decimal, maximum: Decimal | None) -> Decimal | None:
    """Closing balance as a percentage of the maximum, or None without a maximum."""
    if maximum is None or maximum <= 0:
        return None
    return closing / maximum * 100


def days_until_reorder(
    closing: Decimal,
    minimum: Decimal | None,
    average_daily_usage: Decimal,
) -> int | None:
    """Whole days before the balance reaches the minimum at the given usage rate."""
    if minimum is None or average_daily_usage <= 0:
        return None
    headroom = closing - minimum
    if headroom <= 0:
        return 0
    return int((headroom / average_daily_usage).to_integral_value(rounding=ROUND_FLOOR))
