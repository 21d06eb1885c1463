"""
Pytest fixtures for the stock ledger test suite.

Provides:
- In-memory SQLite database with the real ORM models and append-only listeners
- A deterministic clock and business calendar pinned to TODAY
- Kernel services bound to the test session
- captured_logs for asserting on structured log events

SQLite notes:
- Numeric columns round-trip through floats; tests use quantities that are
  exact in binary (whole numbers, halves).
- Row locks (FOR UPDATE) compile to nothing; advisory locks are skipped.
"""

import json
import logging
from datetime import date, datetime
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from stock_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from stock_kernel.domain.business_calendar import BusinessCalendar
from stock_kernel.domain.clock import DeterministicClock
from stock_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from stock_kernel.services.ledger_store import LedgerStore
from stock_kernel.services.propagation_engine import PropagationEngine
from stock_kernel.services.stock_movement_service import StockMovementService
from stock_kernel.services.transaction_log import TransactionLogService

# 2024-01-10 03:00 UTC is 10:00 on 2024-01-10 in the business timezone (UTC+7).
NOW_UTC = datetime(2024, 1, 10, 3, 0, 0)
TODAY = date(2024, 1, 10)

TEST_ACTOR_ID = uuid4()


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL (STOCK_LEDGER_TEST_DATABASE_URL)"
    )


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture stock_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, propagation):
            propagation.apply_delta(...)
            assert any(r["message"] == "delta_applied" for r in captured_logs())
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("stock_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def db_engine():
    engine = init_engine_from_url("sqlite:///:memory:")
    create_tables()
    yield engine
    reset_engine()


@pytest.fixture
def session_factory(db_engine):
    return get_session_factory()


@pytest.fixture
def session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# =============================================================================
# Time
# =============================================================================


@pytest.fixture
def clock():
    # Naive datetimes for SQLite compatibility (SQLite strips tzinfo);
    # the calendar reads naive clock values as UTC.
    return DeterministicClock(fixed_time=NOW_UTC)


@pytest.fixture
def calendar(clock):
    return BusinessCalendar(clock)


@pytest.fixture
def actor_id():
    return TEST_ACTOR_ID


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def store(session, clock):
    return LedgerStore(session, clock)


@pytest.fixture
def propagation(session, calendar):
    return PropagationEngine(session, calendar)


@pytest.fixture
def movements(session, calendar):
    return StockMovementService(session, calendar)


@pytest.fixture
def transaction_log(session, clock):
    return TransactionLogService(session, clock)


@pytest.fixture
def seed_row(session, store, actor_id):
    """Create a row with explicit opening and movement values.

    Usage::

        seed_row("P-1", date(2024, 1, 8), opening=100, sold=30)
    """

    def _seed(product_id, business_date, opening=0, minimum=None, maximum=None, **movements):
        row = store.create_row(
            product_id,
            business_date,
            actor_id,
            opening_balance=opening,
            minimum_threshold=minimum,
            maximum_threshold=maximum,
        )
        for column, value in movements.items():
            setattr(row, column, Decimal(str(value)))
        session.flush()
        session.refresh(row)
        return row

    return _seed


@pytest.fixture
def seed_chain(seed_row):
    """Rows for consecutive days with continuity intact.

    ``seed_chain("P-1", start, [(goods_in, sold), ...], opening=0)``
    """

    def _chain(product_id, start, days, opening=0):
        from datetime import timedelta

        rows = []
        running = Decimal(str(opening))
        for offset, (goods_in, sold) in enumerate(days):
            row = seed_row(
                product_id,
                start + timedelta(days=offset),
                opening=running,
                goods_in=goods_in,
                sold=sold,
            )
            running = row.closing_balance
            rows.append(row)
        return rows

    return _chain
