"""
Small scheduled jobs around the ledger.

PendingTransactionJob
    Completes PENDING log entries whose business date has arrived (orders
    invoiced for a future date).  Each entry runs in its own transaction,
    so one bad entry does not hold back the rest.

StockAlertJob
    Computes OUT_OF_STOCK / LOW_STOCK alerts for the previous business date
    and hands them to an injected sink.  Delivery (mail, push, chat) is the
    sink's business; the default sink logs a warning per alert.

Architecture: stock_batch/services.  Jobs own their transactions.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import date
from uuid import UUID

from sqlalchemy.orm import Session

from stock_kernel.db.engine import session_scope
from stock_kernel.domain.business_calendar import BusinessCalendar
from stock_kernel.domain.dtos import StockAlert
from stock_kernel.logging_config import LogContext, get_logger
from stock_kernel.selectors.ledger_selector import LedgerSelector
from stock_kernel.services.product_catalog import ProductCatalog
from stock_kernel.services.stock_movement_service import StockMovementService

from stock_batch.domain.types import PendingFailure, PendingRunResult

logger = get_logger("batch.jobs")

AlertSink = Callable[[Sequence[StockAlert]], None]


def log_alert_sink(alerts: Sequence[StockAlert]) -> None:
    for alert in alerts:
        logger.warning(
            "stock_alert",
            extra={
                "product_id": alert.product_id,
                "product": alert.label,
                "business_date": alert.business_date,
                "status": alert.status.value,
                "closing_balance": alert.closing_balance,
                "minimum_threshold": alert.minimum_threshold,
            },
        )


class PendingTransactionJob:
    """Completes due PENDING transactions."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        calendar: BusinessCalendar,
        actor_id: UUID,
        catalog: ProductCatalog | None = None,
    ):
        self._session_factory = session_factory
        self._calendar = calendar
        self._actor_id = actor_id
        self._catalog = catalog

    def _service(self, session: Session) -> StockMovementService:
        return StockMovementService(session, self._calendar, self._catalog)

    def run(self) -> PendingRunResult:
        today = self._calendar.today()
        with session_scope(self._session_factory) as session:
            due = [
                (entry.id, entry.transaction_number)
                for entry in self._service(session).due_pending(today)
            ]

        completed: list[str] = []
        failed: list[PendingFailure] = []
        for entry_id, number in due:
            with LogContext.bind(transaction_number=number):
                try:
                    with session_scope(self._session_factory) as session:
                        self._service(session).complete_pending(entry_id, self._actor_id)
                except Exception as exc:
                    code = getattr(exc, "code", type(exc).__name__)
                    logger.warning(
                        "pending_transaction_failed",
                        extra={"error_code": code, "error": str(exc)},
                    )
                    failed.append(PendingFailure(number, code, str(exc)))
                else:
                    completed.append(number)

        logger.info(
            "pending_transactions_processed",
            extra={
                "business_date": today,
                "found": len(due),
                "completed": len(completed),
                "failed": len(failed),
            },
        )
        return PendingRunResult(
            business_date=today,
            total_found=len(due),
            completed=tuple(completed),
            failed=tuple(failed),
        )


class StockAlertJob:
    """Reports products that are out of stock or at/below their minimum."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        calendar: BusinessCalendar,
        catalog: ProductCatalog | None = None,
        sink: AlertSink | None = None,
    ):
        self._session_factory = session_factory
        self._calendar = calendar
        self._catalog = catalog
        self._sink = sink or log_alert_sink

    def run(self, business_date: date | None = None) -> list[StockAlert]:
        """Alerts for ``business_date`` (default: the previous business date)."""
        with session_scope(self._session_factory) as session:
            selector = LedgerSelector(session, self._calendar)
            if business_date is None:
                earlier = selector.distinct_dates_before(self._calendar.today())
                if not earlier:
                    logger.info("stock_alerts_no_business_date")
                    return []
                business_date = earlier[0]
            alerts = selector.low_stock_report(business_date, self._catalog)

        logger.info(
            "stock_alerts_computed",
            extra={"business_date": business_date, "alert_count": len(alerts)},
        )
        if alerts:
            self._sink(alerts)
        return alerts
