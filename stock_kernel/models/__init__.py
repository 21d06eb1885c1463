"""ORM models for the stock ledger."""

from stock_kernel.models.ledger_row import GAP_FILL_NOTE, LedgerRow
from stock_kernel.models.ledger_snapshot import LedgerSnapshot
from stock_kernel.models.sequence import SequenceCounter
from stock_kernel.models.transaction_log import StockTransaction

__all__ = [
    "GAP_FILL_NOTE",
    "LedgerRow",
    "LedgerSnapshot",
    "SequenceCounter",
    "StockTransaction",
]
