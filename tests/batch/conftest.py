"""
Fixtures for the batch jobs.

Batch services open and commit their own transactions, so data is seeded
through ``session_scope`` and results are read back as DTOs inside a
fresh scope instead of through the shared ``session`` fixture.
"""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from stock_kernel.db.engine import session_scope
from stock_kernel.models.ledger_row import LedgerRow
from stock_kernel.models.ledger_snapshot import LedgerSnapshot
from stock_kernel.services.ledger_store import LedgerStore


@pytest.fixture
def seed(session_factory, clock, actor_id):
    """Commit one ledger row.

    Usage::

        seed("P-1", date(2024, 1, 9), opening=10, minimum=5, sold=3)
    """

    def _seed(
        product_id,
        business_date,
        opening=0,
        minimum=None,
        maximum=None,
        notes=None,
        active=True,
        **movements,
    ):
        with session_scope(session_factory) as session:
            row = LedgerStore(session, clock).create_row(
                product_id,
                business_date,
                actor_id,
                opening_balance=opening,
                minimum_threshold=minimum,
                maximum_threshold=maximum,
                notes=notes,
            )
            for column, value in movements.items():
                setattr(row, column, Decimal(str(value)))
            row.is_active = active
        return product_id

    return _seed


@pytest.fixture
def rows_on(session_factory):
    """``rows_on(day)`` -> {product_id: LedgerRowInfo} for live rows."""

    def _rows_on(business_date):
        with session_scope(session_factory) as session:
            rows = session.execute(
                select(LedgerRow).where(
                    LedgerRow.business_date == business_date,
                    LedgerRow.deleted_at.is_(None),
                )
            ).scalars()
            return {row.product_id: row.to_dto() for row in rows}

    return _rows_on


@pytest.fixture
def snapshot_counts(session_factory):
    """``snapshot_counts()`` -> {snapshot_date: count}."""

    def _counts():
        with session_scope(session_factory) as session:
            result = session.execute(
                select(LedgerSnapshot.snapshot_date, func.count(LedgerSnapshot.id))
                .group_by(LedgerSnapshot.snapshot_date)
            ).all()
            return {snapshot_date: count for snapshot_date, count in result}

    return _counts


@pytest.fixture
def seed_snapshot(session_factory, clock, actor_id):
    """Commit snapshots of the given products' rows on one date."""

    def _seed_snapshot(business_date, *product_ids):
        with session_scope(session_factory) as session:
            store = LedgerStore(session, clock)
            rows = [store.require_row(pid, business_date) for pid in product_ids]
            return store.insert_snapshots(rows, clock.now(), actor_id)

    return _seed_snapshot
