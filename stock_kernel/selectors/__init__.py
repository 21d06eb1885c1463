"""Read-only query selectors for the stock ledger."""

from stock_kernel.selectors.ledger_selector import LedgerSelector

__all__ = ["LedgerSelector"]
