"""stock_batch.services -- the ledger jobs and the scheduler that runs them."""

from stock_batch.services.backfill import LedgerResyncService
from stock_batch.services.jobs import PendingTransactionJob, StockAlertJob, log_alert_sink
from stock_batch.services.rollover import DailyRolloverService
from stock_batch.services.scheduler import LedgerScheduler, ScheduledJob, default_jobs

__all__ = [
    "DailyRolloverService",
    "LedgerResyncService",
    "LedgerScheduler",
    "PendingTransactionJob",
    "ScheduledJob",
    "StockAlertJob",
    "default_jobs",
    "log_alert_sink",
]
