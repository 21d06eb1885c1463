"""Database layer - engine, base classes, column types and append-only guards."""

from stock_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from stock_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    session_scope,
)
from stock_kernel.db.types import ProductId, Quantity, to_quantity

__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "ProductId",
    "Quantity",
    "to_quantity",
]
