"""
Tests for StockMovementService: business events, availability checks,
repacking, adjustments and counts, registration, reversal and the
PENDING lifecycle for future-dated movements.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from stock_kernel.domain.columns import LedgerColumn
from stock_kernel.domain.transaction_types import TransactionStatus, TransactionType
from stock_kernel.exceptions import (
    InsufficientStockError,
    InvalidBusinessDateError,
    InvalidQuantityError,
    InvalidTransactionStateError,
    LedgerRowAlreadyExistsError,
    MissingReasonError,
    TransactionAlreadyReversedError,
)
from stock_kernel.services.stock_movement_service import ProductRegistration
from tests.conftest import TODAY

YESTERDAY = TODAY - timedelta(days=1)


class TestBusinessEvents:
    def test_production_output_and_consumption(self, movements, actor_id):
        produced = movements.record_production_output(
            "FG-1", TODAY, 120, actor_id, production_batch_number="PB-7"
        )
        consumed = movements.record_material_consumption(
            "FG-1", TODAY, 20, actor_id, production_batch_number="PB-7"
        )

        row = movements.store.require_row("FG-1", TODAY)
        assert row.goods_in == Decimal("120")
        assert row.production_out == Decimal("20")
        assert produced.quantity == Decimal("120")
        assert consumed.quantity == Decimal("-20")
        assert consumed.balance_after == Decimal("100")
        assert consumed.production_batch_number == "PB-7"

    def test_sale_and_return_share_the_sold_column(self, movements, actor_id):
        movements.record_purchase("P-1", TODAY, 50, actor_id, reference_number="PO-3")
        movements.record_sale("P-1", TODAY, 12, actor_id, order_id="SO-1", order_item_id="1")
        ret = movements.record_sale_return("P-1", TODAY, 2, actor_id, order_id="SO-1")

        row = movements.store.require_row("P-1", TODAY)
        assert row.sold == Decimal("10")
        assert row.closing_balance == Decimal("40")
        assert ret.type is TransactionType.SALE_RETURN
        assert ret.quantity == Decimal("2")

    def test_sample_out_and_return(self, movements, actor_id):
        movements.record_purchase("P-1", TODAY, 10, actor_id)
        movements.record_sample_out("P-1", TODAY, 3, actor_id, notes="trade show")
        movements.record_sample_return("P-1", TODAY, 1, actor_id)

        row = movements.store.require_row("P-1", TODAY)
        assert row.sample_out == Decimal("2")
        assert row.closing_balance == Decimal("8")

    def test_waste(self, movements, actor_id):
        movements.record_purchase("P-1", TODAY, 10, actor_id)
        entry = movements.record_waste("P-1", TODAY, 4, actor_id, reason="expired")
        assert entry.reason == "expired"
        assert movements.balance_on("P-1", TODAY) == Decimal("6")

    def test_backdated_sale_propagates(self, movements, actor_id):
        movements.record_purchase("P-1", YESTERDAY, 30, actor_id)
        movements.store.get_or_create_row("P-1", TODAY, actor_id)

        movements.record_sale("P-1", YESTERDAY, 5, actor_id)

        assert movements.store.require_row("P-1", TODAY).opening_balance == Decimal("25")

    @pytest.mark.parametrize("quantity", [0, -1, "0"])
    def test_unsigned_types_need_positive_quantity(self, movements, actor_id, quantity):
        with pytest.raises(InvalidQuantityError):
            movements.record_sale("P-1", TODAY, quantity, actor_id)

    def test_log_entry_is_completed(self, movements, actor_id):
        entry = movements.record_purchase("P-1", TODAY, 1, actor_id)
        assert entry.status_enum is TransactionStatus.COMPLETED
        assert entry.transaction_number == "TRX-20240110-001"


class TestAvailability:
    def test_require_available_blocks_oversell(self, movements, actor_id):
        movements.record_purchase("P-1", TODAY, 5, actor_id)

        with pytest.raises(InsufficientStockError) as exc_info:
            movements.record_sale("P-1", TODAY, 6, actor_id, require_available=True)

        assert exc_info.value.available == Decimal("5")
        assert exc_info.value.requested == Decimal("6")
        assert movements.balance_on("P-1", TODAY) == Decimal("5")

    def test_require_available_allows_exact(self, movements, actor_id):
        movements.record_purchase("P-1", TODAY, 5, actor_id)
        movements.record_sale("P-1", TODAY, 5, actor_id, require_available=True)
        assert movements.balance_on("P-1", TODAY) == 0

    def test_without_check_balance_may_go_negative(self, movements, actor_id):
        movements.record_sale("P-1", TODAY, 3, actor_id)
        assert movements.balance_on("P-1", TODAY) == Decimal("-3")

    def test_balance_on_falls_back_to_earlier_row(self, movements, actor_id):
        movements.record_purchase("P-1", TODAY - timedelta(days=3), 9, actor_id)
        assert movements.balance_on("P-1", TODAY) == Decimal("9")


class TestRepacking:
    def test_moves_stock_between_products(self, movements, actor_id):
        movements.record_purchase("BULK", TODAY, 10, actor_id)

        out_entry, in_entry = movements.record_repacking(
            "BULK", "BOTTLE", TODAY, 2, 8, actor_id, repacking_id="RP-1"
        )

        assert movements.store.require_row("BULK", TODAY).repack_out == Decimal("2")
        assert movements.store.require_row("BOTTLE", TODAY).goods_in == Decimal("8")
        assert out_entry.type is TransactionType.REPACK_OUT
        assert in_entry.type is TransactionType.REPACK_IN
        assert out_entry.repacking_id == in_entry.repacking_id == "RP-1"


class TestAdjustmentsAndCounts:
    def test_adjustment_requires_reason(self, movements, actor_id):
        with pytest.raises(MissingReasonError):
            movements.record_adjustment("P-1", TODAY, 5, actor_id, reason="  ")

    def test_signed_adjustment(self, movements, actor_id):
        movements.record_purchase("P-1", TODAY, 10, actor_id)
        entry = movements.record_adjustment("P-1", TODAY, -4, actor_id, reason="breakage")

        row = movements.store.require_row("P-1", TODAY)
        assert row.adjustment == Decimal("-4")
        assert row.closing_balance == Decimal("6")
        assert entry.quantity == Decimal("-4")

    def test_zero_adjustment_rejected(self, movements, actor_id):
        with pytest.raises(InvalidQuantityError):
            movements.record_adjustment("P-1", TODAY, 0, actor_id, reason="nothing")

    def test_count_books_variance(self, movements, actor_id, captured_logs):
        movements.record_purchase("P-1", TODAY, 20, actor_id)

        result = movements.reconcile_physical_count("P-1", TODAY, 17, actor_id)

        assert result.system_quantity == Decimal("20")
        assert result.variance == Decimal("-3")
        assert result.entry.reason == "Physical stock count"
        assert movements.balance_on("P-1", TODAY) == Decimal("17")
        assert any(r["message"] == "physical_count_reconciled" for r in captured_logs())

    def test_count_without_variance_records_nothing(self, movements, actor_id):
        movements.record_purchase("P-1", TODAY, 20, actor_id)
        result = movements.reconcile_physical_count("P-1", TODAY, 20, actor_id)
        assert result.entry is None

    def test_negative_count_rejected(self, movements, actor_id):
        with pytest.raises(InvalidQuantityError):
            movements.reconcile_physical_count("P-1", TODAY, -1, actor_id)


class TestRegistration:
    def test_register_with_initial_stock(self, movements, actor_id):
        row = movements.register_product(
            ProductRegistration("P-NEW", initial_stock=40, minimum_threshold=5), actor_id
        )

        assert row.opening_balance == Decimal("40")
        assert row.closing_balance == Decimal("40")
        assert row.minimum_threshold == Decimal("5")
        assert row.maximum_threshold == Decimal("80")
        entries = movements.log.list_for_range(TODAY, TODAY, product_id="P-NEW")
        assert [e.type for e in entries] == [TransactionType.OPENING_BALANCE]
        assert entries[0].notes == "Initial stock"

    def test_register_without_stock_logs_nothing(self, movements, actor_id):
        row = movements.register_product(ProductRegistration("P-NEW"), actor_id)
        assert row.closing_balance == 0
        assert row.maximum_threshold is None
        assert movements.log.list_for_range(TODAY, TODAY) == []

    def test_register_twice_conflicts(self, movements, actor_id):
        movements.register_product(ProductRegistration("P-NEW"), actor_id)
        with pytest.raises(LedgerRowAlreadyExistsError):
            movements.register_product(ProductRegistration("P-NEW"), actor_id)

    def test_register_many_skips_existing(self, movements, actor_id, captured_logs):
        movements.register_product(ProductRegistration("P-1"), actor_id)

        result = movements.register_products(
            [ProductRegistration("P-1"), ProductRegistration("P-2", initial_stock=3)],
            actor_id,
        )

        assert result.created == ("P-2",)
        assert result.skipped == ("P-1",)
        assert movements.store.require_row("P-2", TODAY).closing_balance == Decimal("3")
        [record] = [r for r in captured_logs() if r["message"] == "products_registered"]
        assert record["created_count"] == 1
        assert record["skipped_count"] == 1

    def test_negative_initial_stock(self, movements, actor_id):
        with pytest.raises(InvalidQuantityError):
            movements.register_product(ProductRegistration("P-1", initial_stock=-2), actor_id)


class TestReversal:
    def test_reversal_restores_balance(self, movements, actor_id):
        movements.record_purchase("P-1", YESTERDAY, 50, actor_id)
        sale = movements.record_sale("P-1", YESTERDAY, 20, actor_id)
        movements.store.get_or_create_row("P-1", TODAY, actor_id)

        reversal = movements.reverse_transaction(sale.id, actor_id)

        assert movements.store.require_row("P-1", YESTERDAY).sold == 0
        assert movements.store.require_row("P-1", TODAY).opening_balance == Decimal("50")
        assert reversal.quantity == Decimal("20")
        assert reversal.reverses_entry_id == sale.id
        assert reversal.reference_number == sale.transaction_number
        assert reversal.reason == f"Reversal of {sale.transaction_number}"
        assert sale.quantity == Decimal("-20")

    def test_second_reversal_rejected(self, movements, actor_id):
        entry = movements.record_purchase("P-1", TODAY, 5, actor_id)
        movements.reverse_transaction(entry.id, actor_id)

        with pytest.raises(TransactionAlreadyReversedError):
            movements.reverse_transaction(entry.id, actor_id)

    def test_reversal_of_a_reversal_rejected(self, movements, actor_id):
        entry = movements.record_purchase("P-1", TODAY, 5, actor_id)
        reversal = movements.reverse_transaction(entry.id, actor_id, reason="typo")

        with pytest.raises(InvalidTransactionStateError):
            movements.reverse_transaction(reversal.id, actor_id)

    def test_pending_entry_cannot_be_reversed(self, movements, actor_id):
        staged = movements.stage_future_movement(
            "P-1", TODAY + timedelta(days=1), TransactionType.SALE, 1, actor_id
        )
        with pytest.raises(InvalidTransactionStateError):
            movements.reverse_transaction(staged.id, actor_id)


class TestFutureMovements:
    def test_future_sale_is_staged_without_ledger_effect(self, movements, actor_id):
        tomorrow = TODAY + timedelta(days=1)
        entry = movements.stage_future_movement(
            "P-1", tomorrow, TransactionType.SALE, 4, actor_id
        )

        assert entry.status_enum is TransactionStatus.PENDING
        assert entry.quantity == Decimal("-4")
        assert entry.balance_after is None
        assert movements.store.get_row("P-1", tomorrow) is None
        assert movements.due_pending() == []

    def test_completing_a_due_entry_applies_it(self, movements, clock, actor_id):
        movements.record_purchase("P-1", TODAY, 10, actor_id)
        entry = movements.stage_future_movement(
            "P-1", TODAY, TransactionType.SALE, 4, actor_id
        )

        assert [e.id for e in movements.due_pending()] == [entry.id]
        completed = movements.complete_pending(entry.id, actor_id)

        assert completed.status_enum is TransactionStatus.COMPLETED
        assert completed.balance_after == Decimal("6")
        assert movements.due_pending() == []

    def test_completing_before_the_date_fails(self, movements, actor_id):
        entry = movements.stage_future_movement(
            "P-1", TODAY + timedelta(days=2), TransactionType.SALE, 1, actor_id
        )
        with pytest.raises(InvalidBusinessDateError):
            movements.complete_pending(entry.id, actor_id)

    def test_cancel_pending(self, movements, actor_id):
        entry = movements.stage_future_movement(
            "P-1", TODAY, TransactionType.SALE, 1, actor_id
        )
        cancelled = movements.cancel_pending(entry.id, actor_id, reason="order voided")

        assert cancelled.status_enum is TransactionStatus.CANCELLED
        with pytest.raises(InvalidTransactionStateError):
            movements.complete_pending(entry.id, actor_id)

    def test_staged_adjustment_needs_reason(self, movements, actor_id):
        with pytest.raises(MissingReasonError):
            movements.stage_future_movement(
                "P-1", TODAY, TransactionType.ADJUSTMENT, 1, actor_id
            )


def test_movement_columns_match_rules(movements, actor_id):
    entry = movements.record_movement("P-1", TODAY, TransactionType.PURCHASE_IN, 3, actor_id)
    assert entry.column is LedgerColumn.GOODS_IN
