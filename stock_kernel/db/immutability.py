"""
Append-only enforcement via ORM event listeners.

Ledger snapshots and the stock transaction log are history.  Snapshots
never change after the rollover writes them; a transaction log entry may
move out of PENDING once and is frozen afterwards.  Ledger rows change all
the time but are never hard-deleted (soft delete sets deleted_at).

These listeners guard ORM unit-of-work operations.  Bulk statements
(``delete(LedgerSnapshot).where(...)`` in retention cleanup) bypass them on
purpose: retention is the one sanctioned way history leaves the database.

Usage:
    from stock_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup; idempotent
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from stock_kernel.exceptions import ImmutabilityViolationError
from stock_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})


def _blocked(entity_type: str, entity_id: str, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
    )


def _check_snapshot_update(mapper, connection, target):
    _blocked(
        "LedgerSnapshot",
        str(target.id),
        "UPDATE",
        "Ledger snapshots cannot be modified",
    )


def _check_snapshot_delete(mapper, connection, target):
    _blocked(
        "LedgerSnapshot",
        str(target.id),
        "DELETE",
        "Ledger snapshots are removed only by retention cleanup",
    )


def _check_transaction_update(mapper, connection, target):
    """
    Allow a single PENDING -> COMPLETED/CANCELLED transition, nothing after.

    If status is changing, the OLD value decides; otherwise the current
    value does.  Audit fields may always change.
    """
    from stock_kernel.domain.transaction_types import TransactionStatus

    status_history = get_history(target, "status")
    if status_history.deleted:
        was_pending = status_history.deleted[0] == TransactionStatus.PENDING.value
    else:
        was_pending = target.status == TransactionStatus.PENDING.value

    if was_pending:
        return

    for attr in inspect(target).attrs:
        if attr.key in _AUDIT_FIELDS:
            continue
        if attr.history.has_changes():
            _blocked(
                "StockTransaction",
                target.transaction_number,
                "UPDATE",
                f"Cannot modify field '{attr.key}' on a {target.status} transaction",
            )


def _check_transaction_delete(mapper, connection, target):
    _blocked(
        "StockTransaction",
        target.transaction_number,
        "DELETE",
        "Stock transactions are append-only; record a reversal instead",
    )


def _check_ledger_row_delete(mapper, connection, target):
    _blocked(
        "LedgerRow",
        f"{target.product_id}@{target.business_date.isoformat()}",
        "DELETE",
        "Ledger rows are soft-deleted, never removed",
    )


def _listeners():
    from stock_kernel.models.ledger_row import LedgerRow
    from stock_kernel.models.ledger_snapshot import LedgerSnapshot
    from stock_kernel.models.transaction_log import StockTransaction

    return (
        (LedgerSnapshot, "before_update", _check_snapshot_update),
        (LedgerSnapshot, "before_delete", _check_snapshot_delete),
        (StockTransaction, "before_update", _check_transaction_update),
        (StockTransaction, "before_delete", _check_transaction_delete),
        (LedgerRow, "before_delete", _check_ledger_row_delete),
    )


def register_immutability_listeners() -> None:
    """Register all append-only listeners (safe to call more than once)."""
    for model, name, fn in _listeners():
        if not event.contains(model, name, fn):
            event.listen(model, name, fn)
