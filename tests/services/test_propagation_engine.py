"""
Tests for PropagationEngine.apply_delta.

Covers the single-day path, backdated propagation for inflows and
outflows, opening-balance corrections, gap filling and input rejection.
TODAY is 2024-01-10 in the business timezone.
"""

from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from stock_kernel.domain.business_calendar import BusinessCalendar
from stock_kernel.domain.clock import DeterministicClock
from stock_kernel.domain.columns import MOVEMENT_COLUMNS, LedgerColumn
from stock_kernel.domain.dtos import ProductInfo
from stock_kernel.domain.transaction_types import TransactionStatus, TransactionType
from stock_kernel.exceptions import (
    InvalidBusinessDateError,
    InvalidQuantityError,
    InvalidTransactionStateError,
    LedgerRowRetiredError,
    ProductNotFoundError,
    TransactionColumnMismatchError,
    UnknownLedgerColumnError,
)
from stock_kernel.models.ledger_row import GAP_FILL_NOTE
from stock_kernel.services.product_catalog import StaticProductCatalog
from stock_kernel.services.propagation_engine import PropagationEngine, validate_business_date
from stock_kernel.services.transaction_log import DocumentReference
from tests.conftest import TODAY

D = TODAY - timedelta(days=3)


class TestSingleDay:
    def test_get_or_create_on_empty_product(self, store, actor_id):
        row = store.get_or_create_row("P", TODAY, actor_id)
        assert row.opening_balance == 0
        assert row.closing_balance == 0

    def test_inflow_today(self, propagation, actor_id):
        row = propagation.apply_delta("P", TODAY, LedgerColumn.GOODS_IN, 100, actor_id)

        assert row.goods_in == Decimal("100")
        assert row.closing_balance == Decimal("100")
        assert propagation.last_outcome.rows_shifted == 0
        assert propagation.last_outcome.gap_rows_created == 0

    def test_deltas_accumulate(self, propagation, actor_id):
        propagation.apply_delta("P", TODAY, "goods_in", 100, actor_id)
        propagation.apply_delta("P", TODAY, "sold", 30, actor_id)
        row = propagation.apply_delta("P", TODAY, "sold", "2.5", actor_id)

        assert row.sold == Decimal("32.5")
        assert row.closing_balance == Decimal("67.5")

    def test_sets_updated_by(self, propagation, actor_id):
        row = propagation.apply_delta("P", TODAY, "goods_in", 1, actor_id)
        assert row.updated_by_id == actor_id


class TestBackdatedPropagation:
    def test_backdated_inflow_shifts_later_openings(self, propagation, store, actor_id):
        propagation.apply_delta("P", D, LedgerColumn.GOODS_IN, 100, actor_id)
        store.get_or_create_row("P", TODAY, actor_id)

        propagation.apply_delta("P", D, LedgerColumn.GOODS_IN, 20, actor_id)

        assert store.require_row("P", D).closing_balance == Decimal("120")
        for offset in (1, 2, 3):
            later = store.require_row("P", D + timedelta(days=offset))
            assert later.opening_balance == Decimal("120")
            assert later.closing_balance == Decimal("120")

    def test_backdated_outflow_moves_every_later_row(self, propagation, seed_chain, actor_id):
        rows = seed_chain("P", D, [(100, 0), (10, 5), (0, 20)])
        before = [
            (r.opening_balance, r.closing_balance, r.movements()) for r in rows
        ]

        propagation.apply_delta("P", D, LedgerColumn.SOLD, 15, actor_id)

        assert rows[0].closing_balance == before[0][1] - 15
        for row, (opening, closing, movements) in zip(rows[1:], before[1:]):
            assert row.opening_balance == opening - 15
            assert row.closing_balance == closing - 15
            assert row.movements() == movements

    def test_outcome_reports_carried_delta(self, propagation, seed_chain, actor_id):
        seed_chain("P", D, [(50, 0), (0, 0)])

        propagation.apply_delta("P", D, LedgerColumn.WASTE_OUT, 4, actor_id)

        outcome = propagation.last_outcome
        assert outcome.carried_delta == Decimal("-4")
        # D+1 existed, D+2 was a gap
        assert outcome.gap_rows_created == 1
        assert outcome.rows_shifted == 2

    def test_rows_of_other_products_untouched(self, propagation, seed_chain, actor_id):
        seed_chain("P", D, [(10, 0), (0, 0)])
        other = seed_chain("Q", D, [(10, 0), (0, 0)])

        propagation.apply_delta("P", D, LedgerColumn.GOODS_IN, 5, actor_id)

        assert other[1].opening_balance == Decimal("10")

    def test_opening_correction_today_propagates_nowhere(self, propagation, actor_id):
        row = propagation.apply_delta("P", TODAY, LedgerColumn.OPENING_BALANCE, 12, actor_id)
        assert row.opening_balance == Decimal("12")
        assert propagation.last_outcome.rows_shifted == 0

    def test_opening_correction_on_past_day(self, propagation, seed_chain, actor_id):
        rows = seed_chain("P", TODAY - timedelta(days=2), [(10, 0), (0, 3)], opening=5)

        propagation.apply_delta(
            "P", TODAY - timedelta(days=2), LedgerColumn.OPENING_BALANCE, -5, actor_id
        )

        assert rows[0].opening_balance == Decimal("0")
        assert rows[0].closing_balance == Decimal("10")
        assert rows[1].opening_balance == Decimal("10")
        assert rows[1].closing_balance == Decimal("7")

    def test_logs_delta_applied(self, propagation, actor_id, captured_logs):
        propagation.apply_delta("P", D, LedgerColumn.GOODS_IN, 3, actor_id)

        records = [r for r in captured_logs() if r["message"] == "delta_applied"]
        assert len(records) == 1
        assert records[0]["product_id"] == "P"
        assert records[0]["business_date"] == D.isoformat()
        assert records[0]["backdated"] is True


class TestTransactionLog:
    def test_every_delta_is_logged(self, propagation, transaction_log, actor_id):
        row = propagation.apply_delta("P", D, LedgerColumn.SOLD, 15, actor_id)

        [entry] = transaction_log.list_for_range(D, TODAY, "P")
        assert entry.type is TransactionType.SALE
        assert entry.column is LedgerColumn.SOLD
        assert entry.quantity == Decimal("-15")
        assert entry.balance_after == row.closing_balance
        assert entry.performed_by == actor_id

    def test_explicit_type_and_reference(self, propagation, actor_id):
        propagation.apply_delta("P", TODAY, LedgerColumn.GOODS_IN, 10, actor_id)
        row, entry = propagation.post_delta(
            "P", TODAY, LedgerColumn.SOLD, -4, actor_id,
            transaction_type=TransactionType.SALE_RETURN,
            reference=DocumentReference(order_id="SO-7"),
            reason="Damaged in transit",
        )

        assert row.closing_balance == Decimal("14")
        assert entry.type is TransactionType.SALE_RETURN
        assert entry.quantity == Decimal("4")
        assert entry.order_id == "SO-7"
        assert entry.reason == "Damaged in transit"

    @pytest.mark.parametrize(
        "column, expected",
        [
            (LedgerColumn.OPENING_BALANCE, TransactionType.OPENING_BALANCE),
            (LedgerColumn.GOODS_IN, TransactionType.PRODUCTION_IN),
            (LedgerColumn.PRODUCTION_OUT, TransactionType.PRODUCTION_USAGE),
            (LedgerColumn.WASTE_OUT, TransactionType.WASTE),
        ],
    )
    def test_default_type_follows_the_column(self, propagation, actor_id, column, expected):
        _, entry = propagation.post_delta("P", TODAY, column, 2, actor_id)
        assert entry.type is expected

    def test_type_for_another_column_is_rejected(self, propagation, transaction_log, actor_id):
        with pytest.raises(TransactionColumnMismatchError) as exc_info:
            propagation.apply_delta(
                "P", TODAY, LedgerColumn.GOODS_IN, 5, actor_id,
                transaction_type=TransactionType.SALE,
            )
        assert exc_info.value.expected == "sold"
        assert transaction_log.list_for_range(TODAY, TODAY, "P") == []

    def test_complete_pending_reuses_the_staged_entry(
        self, propagation, transaction_log, actor_id
    ):
        staged = transaction_log.stage(
            product_id="P",
            business_date=TODAY,
            transaction_type=TransactionType.PURCHASE_IN,
            column=LedgerColumn.GOODS_IN,
            quantity=Decimal("8"),
            performed_by=actor_id,
        )

        row, entry = propagation.complete_pending(staged, actor_id)

        assert entry.id == staged.id
        assert entry.status == TransactionStatus.COMPLETED.value
        assert row.closing_balance == Decimal("8")
        assert len(transaction_log.list_for_range(TODAY, TODAY, "P")) == 1
        with pytest.raises(InvalidTransactionStateError):
            propagation.complete_pending(staged, actor_id)


class TestGapFill:
    def test_every_intervening_day_is_created(self, propagation, seed_row, store, actor_id):
        start = TODAY - timedelta(days=5)
        seed_row("P", start, opening=50)

        propagation.apply_delta("P", start, LedgerColumn.GOODS_IN, 10, actor_id)

        assert propagation.last_outcome.gap_rows_created == 4
        gap_rows = store.list_range("P", start + timedelta(days=1), TODAY)
        assert [r.business_date for r in gap_rows] == [
            start + timedelta(days=n) for n in range(1, 5)
        ]
        for row in gap_rows:
            assert row.opening_balance == Decimal("60")
            assert row.closing_balance == Decimal("60")
            assert all(row.movements()[c] == 0 for c in MOVEMENT_COLUMNS)
            assert row.notes == GAP_FILL_NOTE
            assert row.is_gap_fill

    def test_no_row_created_for_today(self, propagation, store, actor_id):
        propagation.apply_delta("P", D, LedgerColumn.GOODS_IN, 10, actor_id)
        assert store.get_row("P", TODAY) is None

    def test_gaps_seeded_from_nearest_existing_row(self, propagation, seed_row, store, actor_id):
        start = TODAY - timedelta(days=5)
        seed_row("P", start, opening=50)
        middle = seed_row("P", start + timedelta(days=2), opening=50, sold=10)

        propagation.apply_delta("P", start, LedgerColumn.GOODS_IN, 10, actor_id)

        assert store.require_row("P", start + timedelta(days=1)).opening_balance == Decimal("60")
        assert middle.opening_balance == Decimal("60")
        assert middle.closing_balance == Decimal("50")
        for offset in (3, 4):
            gap = store.require_row("P", start + timedelta(days=offset))
            assert gap.opening_balance == Decimal("50")

    def test_soft_deleted_day_is_not_refilled(self, propagation, seed_row, store, actor_id):
        start = TODAY - timedelta(days=4)
        seed_row("P", start, opening=5)
        seed_row("P", start + timedelta(days=2), opening=5)
        store.soft_delete_row("P", start + timedelta(days=2), actor_id)

        propagation.apply_delta("P", start, LedgerColumn.GOODS_IN, 1, actor_id)

        assert propagation.last_outcome.gap_rows_created == 2
        assert store.get_row("P", start + timedelta(days=2)) is None
        assert store.require_row("P", start + timedelta(days=3)).opening_balance == Decimal("6")

    def test_yesterday_needs_no_gap(self, propagation, actor_id):
        propagation.apply_delta("P", TODAY - timedelta(days=1), LedgerColumn.GOODS_IN, 1, actor_id)
        assert propagation.last_outcome.gap_rows_created == 0


class TestRejections:
    def test_future_date(self, propagation, actor_id):
        with pytest.raises(InvalidBusinessDateError) as exc_info:
            propagation.apply_delta("P", TODAY + timedelta(days=1), "goods_in", 1, actor_id)
        assert exc_info.value.code == "INVALID_BUSINESS_DATE"

    def test_datetime_is_not_a_business_date(self):
        with pytest.raises(InvalidBusinessDateError):
            validate_business_date(datetime(2024, 1, 9, 12, 0), TODAY)

    def test_float_delta(self, propagation, actor_id):
        with pytest.raises(InvalidQuantityError):
            propagation.apply_delta("P", TODAY, "goods_in", 1.5, actor_id)

    def test_non_finite_delta(self, propagation, actor_id):
        with pytest.raises(InvalidQuantityError):
            propagation.apply_delta("P", TODAY, "goods_in", Decimal("Infinity"), actor_id)

    def test_unknown_column(self, propagation, actor_id):
        with pytest.raises(UnknownLedgerColumnError):
            propagation.apply_delta("P", TODAY, "dipesan", 1, actor_id)

    def test_closing_balance_is_not_a_target(self, propagation, actor_id):
        with pytest.raises(UnknownLedgerColumnError):
            propagation.apply_delta("P", TODAY, "closing_balance", 1, actor_id)

    def test_retired_row(self, propagation, seed_row, store, actor_id):
        seed_row("P", D, opening=1)
        store.soft_delete_row("P", D, actor_id)
        with pytest.raises(LedgerRowRetiredError):
            propagation.apply_delta("P", D, "goods_in", 1, actor_id)

    def test_unknown_product_with_catalog(self, session, calendar, actor_id):
        catalog = StaticProductCatalog([ProductInfo("P-1", "SKU-1", "Sambal 250g")])
        engine = PropagationEngine(session, calendar, catalog)

        engine.apply_delta("P-1", TODAY, "goods_in", 1, actor_id)
        with pytest.raises(ProductNotFoundError):
            engine.apply_delta("P-2", TODAY, "goods_in", 1, actor_id)


def test_example_dates_outside_the_fixed_today(session, actor_id):
    """Scenario from 2025-01-10 to 2025-01-11 with today pinned to the 11th."""
    calendar = BusinessCalendar(DeterministicClock(datetime(2025, 1, 11, 2, 0)))
    engine = PropagationEngine(session, calendar)
    day, next_day = date(2025, 1, 10), date(2025, 1, 11)

    engine.apply_delta("P", day, LedgerColumn.GOODS_IN, 100, actor_id)
    tomorrow = engine.store.get_or_create_row("P", next_day, actor_id)
    assert tomorrow.opening_balance == Decimal("100")

    engine.apply_delta("P", day, LedgerColumn.GOODS_IN, 20, actor_id)
    assert engine.store.require_row("P", day).closing_balance == Decimal("120")
    assert tomorrow.opening_balance == Decimal("120")

    engine.apply_delta("P", day, LedgerColumn.SOLD, 15, actor_id)
    assert engine.store.require_row("P", day).closing_balance == Decimal("105")
    assert tomorrow.opening_balance == Decimal("105")
