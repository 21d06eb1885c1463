"""
Tests for stock_batch.services.backfill -- LedgerResyncService.

Rows drift (manual edits, failed writes); resync rebuilds movements from the
COMPLETED transaction log and recomputes opening balances day by day.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from stock_kernel.db.engine import session_scope
from stock_kernel.domain.columns import LedgerColumn
from stock_kernel.domain.transaction_types import TransactionType
from stock_kernel.exceptions import InvalidBusinessDateError
from stock_kernel.services.ledger_store import LedgerStore
from stock_kernel.services.propagation_engine import PropagationEngine
from stock_kernel.services.stock_movement_service import StockMovementService
from stock_kernel.services.transaction_log import TransactionLogService

from stock_batch.services.backfill import LedgerResyncService
from tests.conftest import TODAY

START = TODAY - timedelta(days=3)


@pytest.fixture
def resync(session_factory, calendar):
    return LedgerResyncService(session_factory, calendar)


@pytest.fixture
def history(session_factory, calendar, actor_id):
    """Purchase 30 on START, sell 5 the day after, open today's row."""

    def _history(product_id):
        with session_scope(session_factory) as session:
            movements = StockMovementService(session, calendar)
            movements.record_purchase(product_id, START, 30, actor_id)
            movements.record_sale(product_id, START + timedelta(days=1), 5, actor_id)
            movements.store.get_or_create_row(product_id, TODAY, actor_id)

    return _history


@pytest.fixture
def corrupt(session_factory, clock):
    """Overwrite sold on START+1 and zero the opening of START+2."""

    def _corrupt(product_id):
        with session_scope(session_factory) as session:
            store = LedgerStore(session, clock)
            store.require_row(product_id, START + timedelta(days=1)).sold = Decimal("99")
            store.require_row(product_id, START + timedelta(days=2)).opening_balance = Decimal("0")

    return _corrupt


class TestResync:
    def test_direct_engine_writes_survive_resync(
        self, resync, session_factory, calendar, rows_on, actor_id
    ):
        with session_scope(session_factory) as session:
            StockMovementService(session, calendar).record_purchase("P-1", START, 100, actor_id)
            PropagationEngine(session, calendar).apply_delta(
                "P-1", START, LedgerColumn.SOLD, 15, actor_id
            )
        assert rows_on(START)["P-1"].closing_balance == Decimal("85")

        result = resync.resync(START, actor_id)

        assert result.updated_rows == 0
        assert rows_on(START)["P-1"].closing_balance == Decimal("85")
        assert rows_on(START + timedelta(days=2))["P-1"].closing_balance == Decimal("85")

    def test_rebuilds_drifted_rows(self, resync, history, corrupt, rows_on, actor_id):
        history("P-1")
        corrupt("P-1")

        result = resync.resync(START, actor_id)

        assert result.start_date == START
        assert result.end_date == TODAY
        assert result.processed_days == 4
        assert result.updated_rows == 2
        assert result.created_rows == 0
        sale_day = rows_on(START + timedelta(days=1))["P-1"]
        assert sale_day.movements[LedgerColumn.SOLD] == Decimal("5")
        assert sale_day.closing_balance == Decimal("25")
        assert rows_on(START + timedelta(days=2))["P-1"].opening_balance == Decimal("25")
        assert rows_on(TODAY)["P-1"].opening_balance == Decimal("25")

    def test_second_run_changes_nothing(self, resync, history, corrupt, actor_id):
        history("P-1")
        corrupt("P-1")
        resync.resync(START, actor_id)

        again = resync.resync(START, actor_id)

        assert again.updated_rows == 0
        assert again.created_rows == 0

    def test_first_row_keeps_its_opening(self, resync, seed, rows_on, actor_id):
        seed("P-1", START, opening=40)
        seed("P-1", START + timedelta(days=1), opening=40)

        result = resync.resync(START, actor_id)

        assert result.updated_rows == 0
        assert rows_on(START)["P-1"].opening_balance == Decimal("40")

    def test_creates_rows_for_logged_days(self, resync, session_factory, clock, rows_on, actor_id):
        with session_scope(session_factory) as session:
            TransactionLogService(session, clock).record(
                product_id="Q",
                business_date=TODAY - timedelta(days=1),
                transaction_type=TransactionType.PURCHASE_IN,
                column=LedgerColumn.GOODS_IN,
                quantity=Decimal("12"),
                performed_by=actor_id,
            )

        result = resync.resync(START, actor_id)

        assert result.created_rows == 1
        row = rows_on(TODAY - timedelta(days=1))["Q"]
        assert row.opening_balance == 0
        assert row.closing_balance == Decimal("12")
        assert "Q" not in rows_on(TODAY)

    def test_soft_deleted_day_is_not_recreated(
        self, resync, session_factory, clock, seed, rows_on, actor_id
    ):
        day = TODAY - timedelta(days=1)
        seed("Q", day)
        with session_scope(session_factory) as session:
            LedgerStore(session, clock).soft_delete_row("Q", day, actor_id)
            TransactionLogService(session, clock).record(
                product_id="Q",
                business_date=day,
                transaction_type=TransactionType.PURCHASE_IN,
                column=LedgerColumn.GOODS_IN,
                quantity=Decimal("12"),
                performed_by=actor_id,
            )

        result = resync.resync(START, actor_id)

        assert result.created_rows == 0
        assert "Q" not in rows_on(day)

    def test_product_filter(self, resync, history, corrupt, rows_on, actor_id):
        for pid in ("P-1", "P-2"):
            history(pid)
            corrupt(pid)

        result = resync.resync(START, actor_id, product_id="P-2")

        assert result.product_id == "P-2"
        sale_day = rows_on(START + timedelta(days=1))
        assert sale_day["P-2"].movements[LedgerColumn.SOLD] == Decimal("5")
        assert sale_day["P-1"].movements[LedgerColumn.SOLD] == Decimal("99")

    def test_future_start_rejected(self, resync, actor_id):
        with pytest.raises(InvalidBusinessDateError):
            resync.resync(TODAY + timedelta(days=1), actor_id)
