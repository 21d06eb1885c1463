"""
Module: stock_kernel.db.engine
Responsibility: SQLAlchemy engine initialization, session factory management
    and the transactional scope used by every caller of the ledger services.
Architecture position: Kernel > DB.  May import from db/base.py and
    db/immutability.py.  MUST NOT import from services/, selectors/ or domain/
    (create_tables imports models/ lazily so metadata is complete).

Invariants enforced:
    - PostgreSQL runs at READ COMMITTED with explicit row locking
      (SELECT ... FOR UPDATE) wherever a read-modify-write needs it.
    - SQLite is accepted for tests and single-process tooling.  In-memory
      databases share one connection (StaticPool) so every session sees
      the same data.
    - Services flush only; session_scope() is the commit/rollback boundary.

Failure modes:
    - RuntimeError if get_engine/get_session/get_session_factory is called
      before init_engine_from_url().
    - Connection pool exhaustion if pool_size + max_overflow is exceeded.
"""

import atexit
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from stock_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Create the process-wide engine and session factory for ``database_url``.

    SQLite URLs get a thread-shareable connection (one StaticPool connection
    for ``:memory:``); anything else gets a pre-pinged QueuePool at READ
    COMMITTED.  Calling again replaces the previous engine without
    disposing it; use ``reset_engine()`` first when that matters.

    The pool arguments are ignored for SQLite.
    """
    global _engine, _SessionFactory

    url = make_url(database_url)
    dialect = url.get_backend_name()

    if dialect == "sqlite":
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if url.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
        _engine = create_engine(database_url, echo=echo, **kwargs)
    else:
        _engine = create_engine(
            database_url,
            echo=echo,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )

    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": dialect,
            "database": url.database,
            "echo": echo,
        },
    )

    return _engine


def _require_initialized() -> sessionmaker[Session]:
    if _engine is None or _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


def get_engine() -> Engine:
    _require_initialized()
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """The factory batch jobs use to open one session per run or per entry."""
    return _require_initialized()


def get_session() -> Session:
    return _require_initialized()()


@contextmanager
def session_scope(
    factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """
    Commit on success, roll back and re-raise on any exception, always close.

    Every ledger write (a movement with its log entry and propagation, one
    rollover run, one resync) happens inside exactly one scope::

        with session_scope(factory) as session:
            StockMovementService(session, calendar).record_sale(...)
    """
    session = (factory or _require_initialized())()
    try:
        yield session
        session.commit()
    except Exception as exc:
        session.rollback()
        logger.warning(
            "transaction_rolled_back",
            extra={"error_type": type(exc).__name__, "error": str(exc)},
        )
        raise
    finally:
        session.close()


def create_tables() -> None:
    """Create the ledger tables and register the append-only listeners."""
    from stock_kernel.db.base import Base
    from stock_kernel.db.immutability import register_immutability_listeners
    import stock_kernel.models  # noqa: F401

    Base.metadata.create_all(get_engine())
    register_immutability_listeners()
    logger.info("tables_created", extra={"tables": sorted(Base.metadata.tables)})


def reset_engine() -> None:
    """Dispose the engine and forget the factory (test teardown)."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


atexit.register(reset_engine)
