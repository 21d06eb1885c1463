"""
Typed Exception Hierarchy for the Stock Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the ledger (order handling, production, stock counts, the nightly
rollover) must react to failures precisely.  A sale that races another writer
should be retried by the caller; a negative threshold is a user error; a broken
continuity chain means the resync tool has to run.  Parsing message strings to
tell those apart is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)
  4. Every exception says whether retrying the whole operation can help

Example - RIGHT way:
    try:
        engine.apply_delta(product_id, day, LedgerColumn.SOLD, qty, actor_id)
    except LedgerConcurrencyError:
        session.rollback()
        schedule_retry()                       # safe to retry
    except InvalidInputError as e:
        api_response(code=e.code, detail=str(e))

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from StockKernelError:

    StockKernelError (base)
    |
    +-- NotFoundError
    |   +-- ProductNotFoundError
    |   +-- LedgerRowNotFoundError
    |   +-- TransactionNotFoundError
    |
    +-- ConflictError
    |   +-- LedgerRowAlreadyExistsError
    |   +-- LedgerRowRetiredError
    |   +-- RolloverAlreadyCompleteError
    |   +-- TransactionAlreadyReversedError
    |   +-- InsufficientStockError
    |
    +-- InvalidInputError
    |   +-- InvalidBusinessDateError
    |   +-- InvalidQuantityError
    |   +-- InvalidThresholdError
    |   +-- UnknownLedgerColumnError
    |   +-- InvalidTransactionStateError
    |   +-- MissingReasonError
    |   +-- TransactionColumnMismatchError
    |
    +-- ConcurrencyFailure               (retryable)
    |   +-- LedgerConcurrencyError
    |   +-- RolloverInProgressError
    |
    +-- ConsistencyFailure               (fatal, never retried)
    |   +-- LedgerConsistencyError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                          | When Raised
-------------|-------------------------------|-----------------------------------------
NotFound     | PRODUCT_NOT_FOUND             | Catalog does not know the product
             | LEDGER_ROW_NOT_FOUND          | No row for (product, business date)
             | TRANSACTION_NOT_FOUND         | Transaction log entry id unknown
-------------|-------------------------------|-----------------------------------------
Conflict     | LEDGER_ROW_ALREADY_EXISTS     | Explicit create of an existing row
             | LEDGER_ROW_RETIRED            | Write to a soft-deleted row
             | ROLLOVER_ALREADY_COMPLETE     | Manual rollover, every product rolled
             | TRANSACTION_ALREADY_REVERSED  | Second reversal of the same entry
             | INSUFFICIENT_STOCK            | Sale larger than the available balance
-------------|-------------------------------|-----------------------------------------
InvalidInput | INVALID_BUSINESS_DATE         | Date after today / malformed
             | INVALID_QUANTITY              | Non-finite or non-positive quantity
             | INVALID_THRESHOLD             | Negative threshold or min > max
             | UNKNOWN_LEDGER_COLUMN         | Column is not a ledger balance column
             | INVALID_TRANSACTION_STATE     | Status transition not allowed
             | MISSING_REASON                | Manual adjustment without a reason
             | TRANSACTION_COLUMN_MISMATCH   | Transaction type books a different column
-------------|-------------------------------|-----------------------------------------
Concurrency  | LEDGER_CONCURRENCY_CONFLICT   | Lock contention, deadlock, unique race
             | ROLLOVER_IN_PROGRESS          | A rollover run is already executing
-------------|-------------------------------|-----------------------------------------
Consistency  | LEDGER_CONSISTENCY_VIOLATION  | Closing formula or continuity broken
-------------|-------------------------------|-----------------------------------------
Immutability | IMMUTABILITY_VIOLATION        | Update/delete of an append-only record

===============================================================================
DESIGN DECISIONS
===============================================================================

1. WHY INHERIT FROM Exception (not ValueError, etc.)?
   Domain exceptions should be catchable as a group. Inheriting from
   built-in types mixes domain errors with programming errors.

2. WHY A CLASS-LEVEL ``retryable`` FLAG?
   The rollover retry policy retries a whole run only when a retry can
   change the outcome.  Concurrency failures can; a consistency failure
   or bad input cannot.  Errors that are not StockKernelError (driver
   errors, lost connections) are treated as transient by the policy.

===============================================================================
"""

from datetime import date
from decimal import Decimal


class StockKernelError(Exception):
    """
    Base exception for all stock kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "STOCK_KERNEL_ERROR"
    retryable: bool = False


# =============================================================================
# NotFound
# =============================================================================


class NotFoundError(StockKernelError):
    """A referenced product, ledger row or log entry does not exist."""

    code: str = "NOT_FOUND"


class ProductNotFoundError(NotFoundError):
    """Product is not known to the product catalog."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class LedgerRowNotFoundError(NotFoundError):
    """No active ledger row exists for the product on the business date."""

    code: str = "LEDGER_ROW_NOT_FOUND"

    def __init__(self, product_id: str, business_date: date):
        self.product_id = product_id
        self.business_date = business_date
        super().__init__(
            f"No ledger row for product {product_id} on {business_date.isoformat()}"
        )


class TransactionNotFoundError(NotFoundError):
    """Transaction log entry with the given id was not found."""

    code: str = "TRANSACTION_NOT_FOUND"

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Stock transaction not found: {entry_id}")


# =============================================================================
# Conflict
# =============================================================================


class ConflictError(StockKernelError):
    """The request collides with state that already exists."""

    code: str = "CONFLICT"


class LedgerRowAlreadyExistsError(ConflictError):
    """A ledger row already exists for (product, business date)."""

    code: str = "LEDGER_ROW_ALREADY_EXISTS"

    def __init__(self, product_id: str, business_date: date):
        self.product_id = product_id
        self.business_date = business_date
        super().__init__(
            f"Ledger row already exists for product {product_id} "
            f"on {business_date.isoformat()}"
        )


class LedgerRowRetiredError(ConflictError):
    """The ledger row for (product, business date) was soft-deleted."""

    code: str = "LEDGER_ROW_RETIRED"

    def __init__(self, product_id: str, business_date: date):
        self.product_id = product_id
        self.business_date = business_date
        super().__init__(
            f"Ledger row for product {product_id} on "
            f"{business_date.isoformat()} has been deleted"
        )


class RolloverAlreadyCompleteError(ConflictError):
    """Manual rollover requested but every active product is already rolled."""

    code: str = "ROLLOVER_ALREADY_COMPLETE"

    def __init__(self, business_date: date, row_count: int):
        self.business_date = business_date
        self.row_count = row_count
        super().__init__(
            f"Inventory for {business_date.isoformat()} is already up to date "
            f"({row_count} products)"
        )


class TransactionAlreadyReversedError(ConflictError):
    """The transaction log entry already has a compensating entry."""

    code: str = "TRANSACTION_ALREADY_REVERSED"

    def __init__(self, transaction_number: str, reversal_number: str):
        self.transaction_number = transaction_number
        self.reversal_number = reversal_number
        super().__init__(
            f"Transaction {transaction_number} was already reversed by "
            f"{reversal_number}"
        )


class InsufficientStockError(ConflictError):
    """Requested outflow exceeds the available closing balance."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        product_id: str,
        business_date: date,
        available: Decimal,
        requested: Decimal,
    ):
        self.product_id = product_id
        self.business_date = business_date
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for product {product_id} on "
            f"{business_date.isoformat()}: available {available}, "
            f"requested {requested}"
        )


# =============================================================================
# InvalidInput
# =============================================================================


class InvalidInputError(StockKernelError):
    """Caller supplied a malformed or out-of-range value."""

    code: str = "INVALID_INPUT"


class InvalidBusinessDateError(InvalidInputError):
    """Business date is malformed or outside the accepted range."""

    code: str = "INVALID_BUSINESS_DATE"

    def __init__(self, value: object, reason: str):
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid business date {value!r}: {reason}")


class InvalidQuantityError(InvalidInputError):
    """Quantity or delta is not a finite decimal (or has the wrong sign)."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, value: object, reason: str):
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid quantity {value!r}: {reason}")


class InvalidThresholdError(InvalidInputError):
    """Planning threshold is negative or minimum exceeds maximum."""

    code: str = "INVALID_THRESHOLD"

    def __init__(
        self,
        minimum: Decimal | None,
        maximum: Decimal | None,
        reason: str,
    ):
        self.minimum = minimum
        self.maximum = maximum
        self.reason = reason
        super().__init__(
            f"Invalid thresholds (minimum={minimum}, maximum={maximum}): {reason}"
        )


class UnknownLedgerColumnError(InvalidInputError):
    """Column name does not identify a ledger balance column."""

    code: str = "UNKNOWN_LEDGER_COLUMN"

    def __init__(self, column: object):
        self.column = column
        super().__init__(f"Unknown ledger column: {column!r}")


class InvalidTransactionStateError(InvalidInputError):
    """Status transition not allowed for the transaction log entry."""

    code: str = "INVALID_TRANSACTION_STATE"

    def __init__(self, transaction_number: str, current_status: str, action: str):
        self.transaction_number = transaction_number
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Cannot {action} transaction {transaction_number} "
            f"in status {current_status}"
        )


class MissingReasonError(InvalidInputError):
    """Manual corrections must carry a human-readable reason."""

    code: str = "MISSING_REASON"

    def __init__(self, transaction_type: str):
        self.transaction_type = transaction_type
        super().__init__(f"A reason is required for {transaction_type} entries")


class TransactionColumnMismatchError(InvalidInputError):
    """Transaction type does not book the column the delta targets."""

    code: str = "TRANSACTION_COLUMN_MISMATCH"

    def __init__(self, transaction_type: str, expected: str, column: str):
        self.transaction_type = transaction_type
        self.expected = expected
        self.column = column
        super().__init__(
            f"{transaction_type} entries book {expected}, not {column}"
        )


# =============================================================================
# ConcurrencyFailure
# =============================================================================


class ConcurrencyFailure(StockKernelError):
    """Lock or transaction contention; the whole operation may be retried."""

    code: str = "CONCURRENCY_FAILURE"
    retryable: bool = True


class LedgerConcurrencyError(ConcurrencyFailure):
    """Concurrent writers collided on the same product's ledger rows."""

    code: str = "LEDGER_CONCURRENCY_CONFLICT"

    def __init__(self, product_id: str | None, operation: str, detail: str):
        self.product_id = product_id
        self.operation = operation
        self.detail = detail
        super().__init__(
            f"Concurrent modification during {operation}"
            f"{f' for product {product_id}' if product_id else ''}: {detail}"
        )


class RolloverInProgressError(ConcurrencyFailure):
    """Another rollover run holds the rollover lock."""

    code: str = "ROLLOVER_IN_PROGRESS"

    def __init__(self, business_date: date):
        self.business_date = business_date
        super().__init__(
            f"A rollover for {business_date.isoformat()} is already running"
        )


# =============================================================================
# ConsistencyFailure
# =============================================================================


class ConsistencyFailure(StockKernelError):
    """Ledger invariant broken at read time.  Run the resync tool."""

    code: str = "CONSISTENCY_FAILURE"


class LedgerConsistencyError(ConsistencyFailure):
    """Closing formula or day-to-day continuity does not hold."""

    code: str = "LEDGER_CONSISTENCY_VIOLATION"

    def __init__(self, product_id: str, issues: list[str]):
        self.product_id = product_id
        self.issues = issues
        super().__init__(
            f"Ledger for product {product_id} is inconsistent "
            f"({len(issues)} issue(s)): {'; '.join(issues[:5])}"
        )


# =============================================================================
# Immutability
# =============================================================================


class ImmutabilityError(StockKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Snapshots are immutable from creation; transaction log entries are
    immutable once they leave PENDING.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
