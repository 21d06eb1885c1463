"""
BaseService -- shared constructor for the write-side kernel services.

Every service receives a SQLAlchemy ``Session`` plus the ``Clock`` used for
audit timestamps, and only ever calls ``session.flush()``.  Committing is
the caller's job (``session_scope()``, the rollover job, the resync tool or
a test), so a movement, its log entry and its forward propagation commit
or roll back together.
"""

from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from stock_kernel.db.base import Base
from stock_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(Generic[ModelType]):
    """
    Base for services writing ``ModelType`` rows.

    Non-goals:
        - Does NOT commit or roll back.
        - Does NOT serve lock-free reads; those live in ``selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self._clock = clock or SystemClock()

    @property
    def clock(self) -> Clock:
        return self._clock
