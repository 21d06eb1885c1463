"""
Retry policy for the scheduled rollover.

Contract:
    ``run_with_retry`` calls ``fn`` until it succeeds, the failure is not
    retryable, or ``max_attempts`` is reached; the last exception is
    re-raised.  Sleeping is injected so tests never wait.

Architecture: stock_batch/domain.  No I/O besides the injected ``sleep``.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from stock_kernel.exceptions import StockKernelError
from stock_kernel.logging_config import get_logger

logger = get_logger("batch.retry")

T = TypeVar("T")

DEFAULT_RETRY_DELAYS: tuple[float, ...] = (5.0, 15.0, 30.0)
DEFAULT_MAX_ATTEMPTS = 4


@dataclass(frozen=True)
class RetryPolicy:
    """Attempts and the delay before each retry.

    ``delays_seconds[i]`` is waited after the (i+1)-th failed attempt; the
    last delay repeats if there are more retries than delays.
    """

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    delays_seconds: tuple[float, ...] = DEFAULT_RETRY_DELAYS

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1: {self.max_attempts}")
        if any(d < 0 for d in self.delays_seconds):
            raise ValueError(f"delays must not be negative: {self.delays_seconds}")

    def delay_for(self, failed_attempt: int) -> float:
        if not self.delays_seconds:
            return 0.0
        index = min(failed_attempt, len(self.delays_seconds)) - 1
        return float(self.delays_seconds[index])


NO_RETRY = RetryPolicy(max_attempts=1, delays_seconds=())


def is_retryable(exc: BaseException) -> bool:
    """Kernel errors carry their own flag; anything else (driver errors,
    timeouts) is presumed transient."""
    if isinstance(exc, StockKernelError):
        return exc.retryable
    return True


def run_with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy,
    sleep: Callable[[float], None] = time.sleep,
    on_retry: Callable[[int, BaseException, float], None] | None = None,
) -> T:
    attempt = 0
    while True:
        attempt += 1
        try:
            return fn()
        except Exception as exc:
            if attempt >= policy.max_attempts or not is_retryable(exc):
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "retry_scheduled",
                extra={
                    "attempt": attempt,
                    "max_attempts": policy.max_attempts,
                    "delay_seconds": delay,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            if on_retry is not None:
                on_retry(attempt, exc, delay)
            sleep(delay)
