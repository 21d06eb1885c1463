"""
StockMovementService -- business events in, ledger deltas plus log entries out.

Responsibility:
    Translates stock events (production output, purchases, sales and
    returns, material consumption, repacking, sampling, waste, manual
    adjustments, physical counts, product registration) into one
    ``PropagationEngine.post_delta`` on the right ledger column, which also
    appends the transaction log entry, in the caller's transaction.
    Also owns reversal of completed entries and the PENDING lifecycle for
    future-dated movements.

Architecture position:
    Kernel > Services.  Entry point for order, production and stock-count
    collaborators.

Invariants enforced:
    - Every applied movement has exactly one COMPLETED log entry whose
      signed quantity equals the movement's effect on the balance.
    - Reversal is a new compensating entry; the original is never edited.
    - Manual adjustments carry a reason.
    - When several products are touched (repacking), their locks are taken
      in product-id order.

Failure modes:
    - InvalidQuantityError: zero/negative quantity for an unsigned type.
    - MissingReasonError: adjustment without a reason.
    - InsufficientStockError: require_available and the outflow exceeds the balance.
    - TransactionAlreadyReversedError / InvalidTransactionStateError on reversal
      and PENDING transitions.
    - Everything PropagationEngine raises.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from stock_kernel.db.types import ZERO, to_quantity
from stock_kernel.domain.business_calendar import BusinessCalendar
from stock_kernel.domain.transaction_types import (
    TransactionStatus,
    TransactionType,
    rule_for,
)
from stock_kernel.exceptions import (
    InsufficientStockError,
    InvalidBusinessDateError,
    InvalidQuantityError,
    InvalidTransactionStateError,
    MissingReasonError,
    TransactionAlreadyReversedError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.ledger_row import LedgerRow
from stock_kernel.models.transaction_log import StockTransaction
from stock_kernel.services.ledger_store import validate_thresholds
from stock_kernel.services.product_catalog import ProductCatalog
from stock_kernel.services.propagation_engine import PropagationEngine
from stock_kernel.services.transaction_log import (
    NO_REFERENCE,
    DocumentReference,
)

logger = get_logger("services.stock_movement")

DEFAULT_COUNT_REASON = "Physical stock count"


@dataclass(frozen=True)
class ProductRegistration:
    product_id: str
    initial_stock: Decimal | int | str = ZERO
    minimum_threshold: Decimal | int | str | None = None
    maximum_threshold: Decimal | int | str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class RegistrationResult:
    created: tuple[str, ...]
    skipped: tuple[str, ...]


@dataclass(frozen=True)
class CountReconciliation:
    product_id: str
    business_date: date
    system_quantity: Decimal
    counted_quantity: Decimal
    entry: StockTransaction | None

    @property
    def variance(self) -> Decimal:
        return self.counted_quantity - self.system_quantity


class StockMovementService:
    """
    Records stock movements against the ledger.

    Contract:
        Each public ``record_*`` call is one movement: one column delta via
        the PropagationEngine and one COMPLETED log entry.  Nothing commits.
    """

    def __init__(
        self,
        session: Session,
        calendar: BusinessCalendar,
        catalog: ProductCatalog | None = None,
    ):
        self.session = session
        self._calendar = calendar
        self.engine = PropagationEngine(session, calendar, catalog)
        self.store = self.engine.store
        self.log = self.engine.log

    # -------------------------------------------------------------------------
    # Generic entry point
    # -------------------------------------------------------------------------

    def record_movement(
        self,
        product_id: str,
        business_date: date,
        transaction_type: TransactionType,
        quantity: Decimal | int | str,
        actor_id: UUID,
        *,
        reference: DocumentReference = NO_REFERENCE,
        reason: str | None = None,
        notes: str | None = None,
        require_available: bool = False,
    ) -> StockTransaction:
        """
        Apply one movement and log it.

        ``quantity`` is a positive magnitude for every type except
        OPENING_BALANCE and ADJUSTMENT, which take a signed value.
        """
        rule = rule_for(transaction_type)
        amount = self._validate_quantity(quantity, transaction_type)
        if rule.requires_reason and not (reason and reason.strip()):
            raise MissingReasonError(transaction_type.value)

        effect = rule.stock_effect(amount)
        if require_available and effect < 0:
            self.store.lock_product_range(product_id, business_date)
            available = self.balance_on(product_id, business_date)
            if available + effect < 0:
                raise InsufficientStockError(product_id, business_date, available, -effect)

        _, entry = self.engine.post_delta(
            product_id, business_date, rule.column, rule.column_delta(amount), actor_id,
            transaction_type=transaction_type,
            reference=reference,
            reason=reason,
            notes=notes,
        )
        return entry

    def balance_on(self, product_id: str, business_date: date) -> Decimal:
        """Closing balance as of the date (latest row on or before it)."""
        row = self.store.get_row(product_id, business_date)
        if row is not None:
            return row.closing_balance
        return self.store.closing_before(product_id, business_date + timedelta(days=1))

    def _validate_quantity(
        self,
        quantity: Decimal | int | str,
        transaction_type: TransactionType,
    ) -> Decimal:
        amount = to_quantity(quantity)
        if rule_for(transaction_type).signed:
            if amount == 0:
                raise InvalidQuantityError(quantity, "must not be zero")
        elif amount <= 0:
            raise InvalidQuantityError(quantity, "must be positive")
        return amount

    # -------------------------------------------------------------------------
    # Business events
    # -------------------------------------------------------------------------

    def record_production_output(
        self,
        product_id: str,
        business_date: date,
        quantity: Decimal | int | str,
        actor_id: UUID,
        production_batch_number: str | None = None,
        notes: str | None = None,
    ) -> StockTransaction:
        return self.record_movement(
            product_id, business_date, TransactionType.PRODUCTION_IN, quantity, actor_id,
            reference=DocumentReference(production_batch_number=production_batch_number),
            notes=notes,
        )

    def record_purchase(
        self,
        product_id: str,
        business_date: date,
        quantity: Decimal | int | str,
        actor_id: UUID,
        reference_number: str | None = None,
        notes: str | None = None,
    ) -> StockTransaction:
        return self.record_movement(
            product_id, business_date, TransactionType.PURCHASE_IN, quantity, actor_id,
            reference=DocumentReference(reference_number=reference_number),
            notes=notes,
        )

    def record_sale(
        self,
        product_id: str,
        business_date: date,
        quantity: Decimal | int | str,
        actor_id: UUID,
        order_id: str | None = None,
        order_item_id: str | None = None,
        require_available: bool = False,
    ) -> StockTransaction:
        return self.record_movement(
            product_id, business_date, TransactionType.SALE, quantity, actor_id,
            reference=DocumentReference(order_id=order_id, order_item_id=order_item_id),
            require_available=require_available,
        )

    def record_sale_return(
        self,
        product_id: str,
        business_date: date,
        quantity: Decimal | int | str,
        actor_id: UUID,
        order_id: str | None = None,
        reason: str | None = None,
    ) -> StockTransaction:
        return self.record_movement(
            product_id, business_date, TransactionType.SALE_RETURN, quantity, actor_id,
            reference=DocumentReference(order_id=order_id),
            reason=reason,
        )

    def record_material_consumption(
        self,
        product_id: str,
        business_date: date,
        quantity: Decimal | int | str,
        actor_id: UUID,
        production_batch_number: str | None = None,
    ) -> StockTransaction:
        return self.record_movement(
            product_id, business_date, TransactionType.PRODUCTION_USAGE, quantity, actor_id,
            reference=DocumentReference(production_batch_number=production_batch_number),
        )

    def record_repacking(
        self,
        source_product_id: str,
        target_product_id: str,
        business_date: date,
        source_quantity: Decimal | int | str,
        target_quantity: Decimal | int | str,
        actor_id: UUID,
        repacking_id: str | None = None,
    ) -> tuple[StockTransaction, StockTransaction]:
        """Move stock from one product into another (e.g. bulk into bottles)."""
        for product_id in sorted({source_product_id, target_product_id}):
            self.store.lock_product_range(product_id, business_date)
        reference = DocumentReference(repacking_id=repacking_id)
        out_entry = self.record_movement(
            source_product_id, business_date, TransactionType.REPACK_OUT,
            source_quantity, actor_id, reference=reference,
        )
        in_entry = self.record_movement(
            target_product_id, business_date, TransactionType.REPACK_IN,
            target_quantity, actor_id, reference=reference,
        )
        return out_entry, in_entry

    def record_sample_out(
        self,
        product_id: str,
        business_date: date,
        quantity: Decimal | int | str,
        actor_id: UUID,
        notes: str | None = None,
    ) -> StockTransaction:
        return self.record_movement(
            product_id, business_date, TransactionType.SAMPLE_OUT, quantity, actor_id,
            notes=notes,
        )

    def record_sample_return(
        self,
        product_id: str,
        business_date: date,
        quantity: Decimal | int | str,
        actor_id: UUID,
        notes: str | None = None,
    ) -> StockTransaction:
        return self.record_movement(
            product_id, business_date, TransactionType.SAMPLE_RETURN, quantity, actor_id,
            notes=notes,
        )

    def record_waste(
        self,
        product_id: str,
        business_date: date,
        quantity: Decimal | int | str,
        actor_id: UUID,
        reason: str | None = None,
    ) -> StockTransaction:
        return self.record_movement(
            product_id, business_date, TransactionType.WASTE, quantity, actor_id,
            reason=reason,
        )

    def record_adjustment(
        self,
        product_id: str,
        business_date: date,
        quantity: Decimal | int | str,
        actor_id: UUID,
        reason: str,
        reference_number: str | None = None,
    ) -> StockTransaction:
        """Signed manual correction; positive adds stock, negative removes it."""
        return self.record_movement(
            product_id, business_date, TransactionType.ADJUSTMENT, quantity, actor_id,
            reference=DocumentReference(reference_number=reference_number),
            reason=reason,
        )

    def reconcile_physical_count(
        self,
        product_id: str,
        business_date: date,
        counted_quantity: Decimal | int | str,
        actor_id: UUID,
        reason: str = DEFAULT_COUNT_REASON,
        reference_number: str | None = None,
    ) -> CountReconciliation:
        """
        Book the difference between a physical count and the ledger.

        The variance (counted - closing) is recorded as an ADJUSTMENT;
        a zero variance records nothing.
        """
        counted = to_quantity(counted_quantity)
        if counted < 0:
            raise InvalidQuantityError(counted_quantity, "count must not be negative")
        self.store.lock_product_range(product_id, business_date)
        system = self.balance_on(product_id, business_date)
        variance = counted - system
        entry = None
        if variance != 0:
            entry = self.record_adjustment(
                product_id, business_date, variance, actor_id,
                reason=reason, reference_number=reference_number,
            )
        logger.info(
            "physical_count_reconciled",
            extra={
                "product_id": product_id,
                "business_date": business_date,
                "system_quantity": system,
                "counted_quantity": counted,
                "variance": variance,
            },
        )
        return CountReconciliation(product_id, business_date, system, counted, entry)

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register_product(
        self,
        registration: ProductRegistration,
        actor_id: UUID,
        business_date: date | None = None,
    ) -> LedgerRow:
        """
        Open a ledger row for a product with its initial stock.

        The maximum threshold defaults to twice the initial stock.

        Raises:
            LedgerRowAlreadyExistsError: The product already has a row that day.
        """
        day = business_date or self._calendar.today()
        initial = to_quantity(registration.initial_stock)
        if initial < 0:
            raise InvalidQuantityError(registration.initial_stock, "must not be negative")
        maximum = registration.maximum_threshold
        if maximum is None and initial > 0:
            maximum = initial * 2
        minimum, maximum = validate_thresholds(registration.minimum_threshold, maximum)

        self.store.lock_product_range(registration.product_id, day)
        row = self.store.create_row(
            registration.product_id,
            day,
            actor_id,
            opening_balance=self.store.closing_before(registration.product_id, day),
            minimum_threshold=minimum,
            maximum_threshold=maximum,
            notes=registration.notes,
        )
        if initial != 0:
            self.record_movement(
                registration.product_id, day, TransactionType.OPENING_BALANCE,
                initial, actor_id, notes="Initial stock",
            )
        return row

    def register_products(
        self,
        registrations: Sequence[ProductRegistration],
        actor_id: UUID,
        business_date: date | None = None,
    ) -> RegistrationResult:
        """Register many products; products that already have a row that day are skipped."""
        day = business_date or self._calendar.today()
        existing = self.store.product_ids_on(day)
        created: list[str] = []
        skipped: list[str] = []
        for registration in registrations:
            if registration.product_id in existing:
                skipped.append(registration.product_id)
                continue
            self.register_product(registration, actor_id, day)
            existing.add(registration.product_id)
            created.append(registration.product_id)
        logger.info(
            "products_registered",
            extra={
                "business_date": day,
                "created_count": len(created),
                "skipped_count": len(skipped),
            },
        )
        return RegistrationResult(tuple(created), tuple(skipped))

    # -------------------------------------------------------------------------
    # Reversal
    # -------------------------------------------------------------------------

    def reverse_transaction(
        self,
        entry_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> StockTransaction:
        """
        Undo a completed movement with a compensating entry on the same
        business date.  The original entry is left untouched.
        """
        original = self.log.get(entry_id)
        if original.status != TransactionStatus.COMPLETED.value or original.is_reversal:
            raise InvalidTransactionStateError(
                original.transaction_number,
                "reversal" if original.is_reversal else original.status,
                "reverse",
            )
        existing = self.log.find_reversal(original.id)
        if existing is not None:
            raise TransactionAlreadyReversedError(
                original.transaction_number, existing.transaction_number
            )

        _, entry = self.engine.post_delta(
            original.product_id, original.business_date, original.column,
            -original.column_delta, actor_id,
            transaction_type=original.type,
            reference=DocumentReference(
                order_id=original.order_id,
                order_item_id=original.order_item_id,
                production_batch_number=original.production_batch_number,
                repacking_id=original.repacking_id,
                reference_number=original.transaction_number,
            ),
            reason=reason or f"Reversal of {original.transaction_number}",
            reverses_entry_id=original.id,
        )
        return entry

    # -------------------------------------------------------------------------
    # Future-dated movements
    # -------------------------------------------------------------------------

    def stage_future_movement(
        self,
        product_id: str,
        business_date: date,
        transaction_type: TransactionType,
        quantity: Decimal | int | str,
        actor_id: UUID,
        *,
        reference: DocumentReference = NO_REFERENCE,
        reason: str | None = None,
        notes: str | None = None,
    ) -> StockTransaction:
        """Log a PENDING movement (e.g. an order invoiced for a later date).

        It has no ledger effect until ``complete_pending``.
        """
        if isinstance(business_date, datetime) or not isinstance(business_date, date):
            raise InvalidBusinessDateError(business_date, "expected a calendar date")
        rule = rule_for(transaction_type)
        amount = self._validate_quantity(quantity, transaction_type)
        if rule.requires_reason and not (reason and reason.strip()):
            raise MissingReasonError(transaction_type.value)
        return self.log.stage(
            product_id=product_id,
            business_date=business_date,
            transaction_type=transaction_type,
            column=rule.column,
            quantity=rule.stock_effect(amount),
            performed_by=actor_id,
            reference=reference,
            reason=reason,
            notes=notes,
        )

    def due_pending(self, today: date | None = None) -> list[StockTransaction]:
        """PENDING entries dated on or before today, oldest first."""
        return self.log.pending_due(today or self._calendar.today())

    def complete_pending(self, entry_id: UUID, actor_id: UUID) -> StockTransaction:
        """Apply a PENDING movement whose business date has arrived."""
        _, entry = self.engine.complete_pending(self.log.get(entry_id), actor_id)
        return entry

    def cancel_pending(
        self,
        entry_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> StockTransaction:
        return self.log.mark_cancelled(self.log.get(entry_id), actor_id, reason)
