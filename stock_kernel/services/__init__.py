"""Services for the stock kernel (write side)."""

from stock_kernel.services.consistency_checker import ConsistencyChecker
from stock_kernel.services.ledger_store import LedgerStore, concurrency_guard
from stock_kernel.services.product_catalog import (
    ProductCatalog,
    StaticProductCatalog,
    require_product,
)
from stock_kernel.services.propagation_engine import PropagationEngine, PropagationOutcome
from stock_kernel.services.sequence_service import SequenceService
from stock_kernel.services.stock_movement_service import (
    CountReconciliation,
    ProductRegistration,
    RegistrationResult,
    StockMovementService,
)
from stock_kernel.services.transaction_log import (
    NO_REFERENCE,
    DocumentReference,
    TransactionLogService,
)

__all__ = [
    "NO_REFERENCE",
    "ConsistencyChecker",
    "CountReconciliation",
    "DocumentReference",
    "LedgerStore",
    "ProductCatalog",
    "ProductRegistration",
    "PropagationEngine",
    "PropagationOutcome",
    "RegistrationResult",
    "SequenceService",
    "StaticProductCatalog",
    "StockMovementService",
    "TransactionLogService",
    "concurrency_guard",
    "require_product",
]
