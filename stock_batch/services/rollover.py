"""
DailyRolloverService -- snapshot yesterday, open today, prune history.

Contract:
    ``run_once(trigger)`` performs one rollover in ONE transaction:

    1. ``previous_business_date`` = most recent business date before today
       that has rows (not calendar yesterday, so days without activity or
       a missed run do not break the chain).
    2. Idempotency check against today's rows (see below).
    3. Snapshot every active row of the previous date, unless that date
       already has snapshots.
    4. Carry forward: one row per active product with opening = previous
       closing, zero movements, thresholds and notes copied.  Chunked
       bulk insert.
    5. Retention: delete snapshots older than ``retention_days``.

    When today already has rows the scheduled path SKIPS (logging any
    products that are still missing), while the manual path carries forward
    exactly the missing products or reports RolloverAlreadyCompleteError.

Architecture: stock_batch/services.  Uses kernel LedgerStore and
    LedgerSelector; owns its transactions via session_scope.

Invariants enforced:
    - At most one row per (product, date): the store's unique constraint
      turns a cross-process race into a retryable LedgerConcurrencyError.
    - One rollover per process at a time (module lock), plus a
      transaction-scoped advisory lock on PostgreSQL.
    - All timestamps come from the injected calendar's clock.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from stock_kernel.db.engine import session_scope
from stock_kernel.domain.business_calendar import BusinessCalendar
from stock_kernel.exceptions import (
    RolloverAlreadyCompleteError,
    RolloverInProgressError,
    StockKernelError,
)
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.models.ledger_row import LedgerRow
from stock_kernel.selectors.ledger_selector import LedgerSelector
from stock_kernel.services.ledger_store import DEFAULT_BATCH_SIZE, LedgerStore

from stock_batch.domain.retry import RetryPolicy, run_with_retry
from stock_batch.domain.schedule import next_cron_match, parse_cron
from stock_batch.domain.types import (
    ManualRolloverResult,
    RolloverOutcome,
    RolloverResult,
    RolloverState,
    RolloverStatus,
    RolloverTrigger,
)

logger = get_logger("batch.rollover")

DEFAULT_ROLLOVER_CRON = "0 0 * * *"
DEFAULT_RETENTION_DAYS = 365
ROLLOVER_LOCK_NAME = "daily_rollover"

_ROLLOVER_LOCK = threading.Lock()

_MESSAGES = {
    RolloverOutcome.CARRIED_FORWARD: "Rolled {carried} product(s) from {previous} into {today}",
    RolloverOutcome.PARTIAL_CARRY_FORWARD: (
        "Carried {carried} missing product(s) from {previous} into {today}"
    ),
    RolloverOutcome.SKIPPED: "Rollover for {today} already done",
    RolloverOutcome.NOTHING_TO_ROLL: "No business date before {today} to roll from",
}


class DailyRolloverService:
    """Runs the daily ledger rollover.

    Contract:
        - ``execute_scheduled()`` is the cron entry point: retries transient
          failures per ``retry_policy`` and never raises.
        - ``trigger_manual()`` is the operator entry point: no retry,
          refuses overlapping runs, returns a ManualRolloverResult.

    Non-goals:
        - Does NOT notify anyone; ``on_failure`` is the hook for that.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        calendar: BusinessCalendar,
        actor_id: UUID,
        *,
        enabled: bool = True,
        cron_expression: str = DEFAULT_ROLLOVER_CRON,
        retry_policy: RetryPolicy | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        sleep: Callable[[float], None] = time.sleep,
        on_failure: Callable[[RolloverResult], Any] | None = None,
    ):
        parse_cron(cron_expression)
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive: {batch_size}")
        if retention_days < 0:
            raise ValueError(f"retention_days must not be negative: {retention_days}")
        self._session_factory = session_factory
        self._calendar = calendar
        self._actor_id = actor_id
        self._enabled = enabled
        self._cron_expression = cron_expression
        self._retry_policy = retry_policy or RetryPolicy()
        self._batch_size = batch_size
        self._retention_days = retention_days
        self._sleep = sleep
        self._on_failure = on_failure
        self._state = RolloverState.IDLE
        self._last_result: RolloverResult | None = None

    @property
    def state(self) -> RolloverState:
        return self._state

    @property
    def last_result(self) -> RolloverResult | None:
        return self._last_result

    @property
    def cron_expression(self) -> str:
        return self._cron_expression

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    def execute_scheduled(self) -> RolloverResult | None:
        """Cron path.  Returns None when the rollover is disabled."""
        if not self._enabled:
            logger.info("rollover_disabled")
            return None

        attempts = 0

        def attempt() -> RolloverResult:
            nonlocal attempts
            attempts += 1
            return self.run_once(RolloverTrigger.SCHEDULED)

        started = self._calendar.clock.now()
        try:
            result = run_with_retry(attempt, self._retry_policy, self._sleep)
        except Exception as exc:
            failed = RolloverResult(
                run_id=uuid4(),
                trigger=RolloverTrigger.SCHEDULED,
                state=RolloverState.ROLLED_BACK,
                outcome=RolloverOutcome.FAILED,
                business_date=self._calendar.today(),
                started_at=started,
                finished_at=self._calendar.clock.now(),
                attempts=attempts,
                error_code=getattr(exc, "code", type(exc).__name__),
                error_message=str(exc),
            )
            self._last_result = failed
            logger.error(
                "rollover_gave_up",
                extra={
                    "attempts": attempts,
                    "error_code": failed.error_code,
                    "error": failed.error_message,
                },
            )
            self._notify_failure(failed)
            return failed

        result = replace(result, attempts=attempts)
        self._last_result = result
        return result

    def trigger_manual(self) -> ManualRolloverResult:
        """Operator path: one attempt, partial carry-forward allowed."""
        try:
            result = self.run_once(RolloverTrigger.MANUAL)
        except StockKernelError as exc:
            logger.warning(
                "manual_rollover_rejected",
                extra={"error_code": exc.code, "error": str(exc)},
            )
            return ManualRolloverResult(
                success=False,
                message=str(exc),
                error_code=exc.code,
            )
        except Exception as exc:
            logger.exception("manual_rollover_failed")
            return ManualRolloverResult(
                success=False,
                message=f"Rollover failed: {exc}",
                outcome=RolloverOutcome.FAILED,
                error_code="ROLLOVER_FAILED",
            )
        return ManualRolloverResult(
            success=True,
            message=self._describe(result),
            outcome=result.outcome,
            result=result,
        )

    def run_once(self, trigger: RolloverTrigger = RolloverTrigger.SCHEDULED) -> RolloverResult:
        """One rollover attempt in its own transaction.

        Raises:
            RolloverInProgressError: Another rollover holds the lock.
            RolloverAlreadyCompleteError: Manual trigger, nothing missing.
            LedgerConcurrencyError: A concurrent writer created today's rows.
        """
        today = self._calendar.today()
        if not _ROLLOVER_LOCK.acquire(blocking=False):
            raise RolloverInProgressError(today)
        try:
            return self._run_locked(trigger, today)
        finally:
            _ROLLOVER_LOCK.release()

    # -------------------------------------------------------------------------
    # Status and maintenance
    # -------------------------------------------------------------------------

    def next_run_at(self) -> datetime | None:
        if not self._enabled:
            return None
        return next_cron_match(parse_cron(self._cron_expression), self._calendar.local_now())

    def get_status(self) -> RolloverStatus:
        today = self._calendar.today()
        with session_scope(self._session_factory) as session:
            selector = LedgerSelector(session, self._calendar)
            store = LedgerStore(session, self._calendar.clock)
            previous = store.latest_date_before(today)
            pending: tuple[str, ...] = ()
            if previous is not None:
                present = store.product_ids_on(today)
                pending = tuple(
                    pid for pid in selector.active_products_on(previous) if pid not in present
                )
            last_snapshot = selector.latest_snapshot_info()
        return RolloverStatus(
            enabled=self._enabled,
            cron_expression=self._cron_expression,
            timezone_name=self._calendar.timezone_name,
            state=self._state,
            business_date=today,
            last_snapshot=last_snapshot,
            next_run_at=self.next_run_at(),
            last_result=self._last_result,
            pending_products=pending,
        )

    def bootstrap_snapshots(self) -> dict[date, int]:
        """Snapshot every past business date that has rows but no snapshots.

        Used once when the snapshot table is introduced on an existing
        ledger.  Today is never snapshotted.
        """
        today = self._calendar.today()
        written: dict[date, int] = {}
        with session_scope(self._session_factory) as session:
            selector = LedgerSelector(session, self._calendar)
            store = LedgerStore(session, self._calendar.clock)
            covered = set(selector.snapshot_dates())
            snapshot_time = self._calendar.clock.now()
            for business_date in sorted(selector.distinct_dates_before(today)):
                if business_date in covered:
                    continue
                rows = store.active_rows_on(business_date)
                if rows:
                    written[business_date] = store.insert_snapshots(
                        rows, snapshot_time, self._actor_id, self._batch_size
                    )
        logger.info(
            "snapshots_bootstrapped",
            extra={"dates": len(written), "snapshots": sum(written.values())},
        )
        return written

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_locked(self, trigger: RolloverTrigger, today: date) -> RolloverResult:
        run_id = uuid4()
        started = self._calendar.clock.now()
        self._state = RolloverState.RUNNING
        with LogContext.bind(run_id=str(run_id), business_date=today.isoformat()):
            logger.info("rollover_started", extra={"trigger": trigger.value})
            try:
                with session_scope(self._session_factory) as session:
                    result = self._execute(session, run_id, trigger, today, started)
            except Exception as exc:
                self._state = RolloverState.ROLLED_BACK
                logger.error(
                    "rollover_rolled_back",
                    extra={
                        "trigger": trigger.value,
                        "error_type": type(exc).__name__,
                        "error": str(exc),
                    },
                )
                raise
            self._state = RolloverState.COMMITTED
            result = replace(result, finished_at=self._calendar.clock.now())
            self._last_result = result
            logger.info(
                "rollover_committed",
                extra={
                    "trigger": trigger.value,
                    "outcome": result.outcome.value,
                    "previous_business_date": result.previous_business_date,
                    "snapshots_created": result.snapshots_created,
                    "rows_carried": result.rows_carried,
                    "snapshots_deleted": result.snapshots_deleted,
                },
            )
            return result

    def _execute(
        self,
        session: Session,
        run_id: UUID,
        trigger: RolloverTrigger,
        today: date,
        started: datetime,
    ) -> RolloverResult:
        store = LedgerStore(session, self._calendar.clock)
        if not store.try_advisory_lock(ROLLOVER_LOCK_NAME):
            raise RolloverInProgressError(today)

        def result(outcome: RolloverOutcome, **fields: Any) -> RolloverResult:
            return RolloverResult(
                run_id=run_id,
                trigger=trigger,
                state=RolloverState.COMMITTED,
                outcome=outcome,
                business_date=today,
                started_at=started,
                **fields,
            )

        previous = store.latest_date_before(today)
        if previous is None:
            logger.info("rollover_nothing_to_roll")
            return result(RolloverOutcome.NOTHING_TO_ROLL)

        source_rows = store.active_rows_on(previous)
        present = store.product_ids_on(today)
        to_carry = source_rows
        outcome = RolloverOutcome.CARRIED_FORWARD

        if present:
            missing = [row for row in source_rows if row.product_id not in present]
            missing_ids = tuple(row.product_id for row in missing)
            if trigger is RolloverTrigger.SCHEDULED:
                if missing:
                    logger.warning(
                        "rollover_skipped_with_missing_products",
                        extra={
                            "previous_business_date": previous,
                            "missing_count": len(missing),
                            "missing_products": list(missing_ids),
                        },
                    )
                else:
                    logger.info("rollover_already_done")
                return result(
                    RolloverOutcome.SKIPPED,
                    previous_business_date=previous,
                    missing_products=missing_ids,
                )
            if not missing:
                raise RolloverAlreadyCompleteError(today, store.count_rows_on(today))
            to_carry = missing
            outcome = RolloverOutcome.PARTIAL_CARRY_FORWARD

        snapshots = 0
        if store.snapshot_count(previous) == 0:
            snapshots = store.insert_snapshots(
                source_rows, started, self._actor_id, self._batch_size
            )
        else:
            logger.info("rollover_snapshot_exists", extra={"snapshot_date": previous})

        carried = store.bulk_insert_rows(
            [self._carry_forward(row, today) for row in to_carry],
            self._batch_size,
        )

        deleted = store.delete_snapshots_before(today - timedelta(days=self._retention_days))

        return result(
            outcome,
            previous_business_date=previous,
            snapshots_created=snapshots,
            rows_carried=carried,
            snapshots_deleted=deleted,
            carried_products=tuple(row.product_id for row in to_carry),
        )

    def _carry_forward(self, row: LedgerRow, today: date) -> dict[str, Any]:
        return {
            "product_id": row.product_id,
            "business_date": today,
            "opening_balance": row.closing_balance,
            "minimum_threshold": row.minimum_threshold,
            "maximum_threshold": row.maximum_threshold,
            "notes": None if row.is_gap_fill else row.notes,
            "created_by_id": self._actor_id,
        }

    def _describe(self, result: RolloverResult) -> str:
        return _MESSAGES[result.outcome].format(
            carried=result.rows_carried,
            previous=result.previous_business_date,
            today=result.business_date,
        )

    def _notify_failure(self, result: RolloverResult) -> None:
        if self._on_failure is None:
            return
        try:
            self._on_failure(result)
        except Exception:
            logger.exception("rollover_failure_hook_failed")
