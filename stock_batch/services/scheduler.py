"""
LedgerScheduler -- In-process polling cron scheduler.

Contract:
    Polls on a fixed interval; every registered job whose next fire time
    (computed by ``next_cron_match`` in business local time) has passed is
    run, and its next fire time is recomputed from the current time.

Architecture: stock_batch/services.  Uses stock_batch.domain.schedule for
    pure evaluation; actions are plain callables (rollover, pending
    transactions, stock alerts).

Invariants enforced:
    - All timestamps from the injected calendar's clock.
    - A failing job is logged and does not stop the loop or other jobs.
    - Graceful shutdown (stop signal checked between jobs).
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime

from stock_kernel.domain.business_calendar import BusinessCalendar
from stock_kernel.logging_config import get_logger

from stock_batch.domain.schedule import CronSpec, next_cron_match, parse_cron

logger = get_logger("batch.scheduler")

ROLLOVER_JOB = "daily_rollover"
PENDING_JOB = "pending_transactions"
ALERT_JOB = "stock_alerts"


@dataclass(frozen=True)
class ScheduledJob:
    name: str
    cron_expression: str
    action: Callable[[], object]


class LedgerScheduler:
    """In-process polling scheduler for the ledger jobs.

    Contract:
        - ``tick()`` fires every due job and returns their names.
        - ``start()`` / ``stop()`` for background thread operation.

    Non-goals:
        - NOT a distributed scheduler (no leader election); the rollover's
          own locking handles a second process.
        - Does not catch up on fire times missed while the process was down.
    """

    def __init__(
        self,
        calendar: BusinessCalendar,
        jobs: Sequence[ScheduledJob] = (),
        tick_interval_seconds: float = 30,
    ):
        if tick_interval_seconds <= 0:
            raise ValueError(f"tick interval must be positive: {tick_interval_seconds}")
        self._calendar = calendar
        self._tick_interval = tick_interval_seconds
        self._jobs: dict[str, ScheduledJob] = {}
        self._specs: dict[str, CronSpec] = {}
        self._next_run: dict[str, datetime] = {}
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        for job in jobs:
            self.add_job(job)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def add_job(self, job: ScheduledJob) -> None:
        """Register a job.

        Raises:
            ValueError: Duplicate name or invalid cron expression.
        """
        if job.name in self._jobs:
            raise ValueError(f"Job already registered: {job.name}")
        spec = parse_cron(job.cron_expression)
        self._jobs[job.name] = job
        self._specs[job.name] = spec
        self._next_run[job.name] = next_cron_match(spec, self._calendar.local_now())

    @property
    def job_names(self) -> list[str]:
        return list(self._jobs)

    def next_run_at(self, name: str) -> datetime:
        return self._next_run[name]

    def tick(self) -> list[str]:
        """Run due jobs (public for testing).  Returns the names fired."""
        now = self._calendar.local_now()
        fired: list[str] = []
        for name, job in self._jobs.items():
            if self._stop_event.is_set():
                break
            if now < self._next_run[name]:
                continue
            try:
                job.action()
            except Exception:
                logger.exception("scheduled_job_failed", extra={"job_name": name})
            else:
                logger.info("scheduled_job_completed", extra={"job_name": name})
            self._next_run[name] = next_cron_match(self._specs[name], now)
            fired.append(name)
        return fired

    def start(self) -> None:
        """Start the scheduler in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="ledger-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info(
            "scheduler_started",
            extra={"tick_interval": self._tick_interval, "jobs": self.job_names},
        )

    def stop(self, timeout: float = 30.0) -> None:
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until stop() is called; True if it was."""
        return self._stop_event.wait(timeout=timeout)

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_exception")
            self._stop_event.wait(timeout=self._tick_interval)


def default_jobs(
    rollover: Callable[[], object],
    pending: Callable[[], object],
    alerts: Callable[[], object],
    rollover_cron: str = "0 0 * * *",
    pending_cron: str = "5 0 * * *",
    alert_cron: str = "0 8 * * *",
) -> list[ScheduledJob]:
    """The three ledger jobs: midnight rollover, 00:05 pending, 08:00 alerts."""
    return [
        ScheduledJob(ROLLOVER_JOB, rollover_cron, rollover),
        ScheduledJob(PENDING_JOB, pending_cron, pending),
        ScheduledJob(ALERT_JOB, alert_cron, alerts),
    ]
