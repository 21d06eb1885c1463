"""
ConsistencyChecker -- read-time verification of the ledger invariants.

Responsibility:
    Walks a product's rows over a date range and reports two kinds of drift:

    closing_formula
        closing_balance differs from opening + inflows - outflows.
    continuity
        a row's opening differs from the previous row's closing plus the
        opening-balance corrections logged for that row's day.

Architecture position:
    Kernel > Services.  Used by the admin CLI ``check`` command, by tests,
    and by operators before deciding to run the resync tool.

Failure modes:
    - verify() raises LedgerConsistencyError.  It is fatal and never retried;
      the remedy is LedgerResyncService.
"""

from __future__ import annotations

from datetime import date

from sqlalchemy.orm import Session

from stock_kernel.db.types import ZERO, round_quantity
from stock_kernel.domain.columns import LedgerColumn, compute_closing
from stock_kernel.domain.clock import Clock
from stock_kernel.domain.dtos import ConsistencyIssue
from stock_kernel.exceptions import LedgerConsistencyError
from stock_kernel.logging_config import get_logger
from stock_kernel.models.ledger_row import LedgerRow
from stock_kernel.services.base import BaseService
from stock_kernel.services.ledger_store import LedgerStore
from stock_kernel.services.transaction_log import TransactionLogService

logger = get_logger("services.consistency")

CLOSING_FORMULA = "closing_formula"
CONTINUITY = "continuity"


class ConsistencyChecker(BaseService[LedgerRow]):
    """Detects formula and continuity drift; never repairs it."""

    def __init__(self, session: Session, clock: Clock):
        super().__init__(session, clock)
        self._store = LedgerStore(session, clock)
        self._log = TransactionLogService(session, clock)

    def inspect(
        self,
        product_id: str,
        date_from: date,
        date_to: date,
    ) -> list[ConsistencyIssue]:
        rows = self._store.list_range(product_id, date_from, date_to)
        if not rows:
            return []

        corrections = self._log.aggregate_by_day(date_from, date_to, product_id)
        issues: list[ConsistencyIssue] = []

        previous = self._previous_row(product_id, rows[0].business_date)
        for row in rows:
            expected_closing = round_quantity(
                compute_closing(row.opening_balance, row.movements())
            )
            if round_quantity(row.closing_balance) != expected_closing:
                issues.append(
                    ConsistencyIssue(
                        product_id, row.business_date, CLOSING_FORMULA,
                        expected_closing, row.closing_balance,
                    )
                )

            if previous is not None:
                correction = corrections.get(
                    (row.business_date, product_id), {}
                ).get(LedgerColumn.OPENING_BALANCE, ZERO)
                expected_opening = round_quantity(previous.closing_balance + correction)
                if round_quantity(row.opening_balance) != expected_opening:
                    issues.append(
                        ConsistencyIssue(
                            product_id, row.business_date, CONTINUITY,
                            expected_opening, row.opening_balance,
                        )
                    )
            previous = row

        return issues

    def verify(self, product_id: str, date_from: date, date_to: date) -> None:
        """Raise LedgerConsistencyError when inspect() finds anything."""
        issues = self.inspect(product_id, date_from, date_to)
        if not issues:
            return
        logger.error(
            "ledger_inconsistency_detected",
            extra={
                "product_id": product_id,
                "date_from": date_from,
                "date_to": date_to,
                "issue_count": len(issues),
                "first_issue": issues[0].describe(),
            },
        )
        raise LedgerConsistencyError(product_id, [issue.describe() for issue in issues])

    def _previous_row(self, product_id: str, before: date) -> LedgerRow | None:
        return self._store.latest_row_before(product_id, before)
