"""
stock_batch.domain -- Pure types and value objects for the ledger jobs.

ZERO I/O.  All result types are frozen dataclasses.
"""

from stock_batch.domain.retry import RetryPolicy, is_retryable, run_with_retry
from stock_batch.domain.schedule import CronSpec, matches_cron, next_cron_match, parse_cron
from stock_batch.domain.types import (
    ManualRolloverResult,
    PendingFailure,
    PendingRunResult,
    ResyncResult,
    RolloverOutcome,
    RolloverResult,
    RolloverState,
    RolloverStatus,
    RolloverTrigger,
)

__all__ = [
    "CronSpec",
    "ManualRolloverResult",
    "PendingFailure",
    "PendingRunResult",
    "ResyncResult",
    "RetryPolicy",
    "RolloverOutcome",
    "RolloverResult",
    "RolloverState",
    "RolloverStatus",
    "RolloverTrigger",
    "is_retryable",
    "matches_cron",
    "next_cron_match",
    "parse_cron",
    "run_with_retry",
]
