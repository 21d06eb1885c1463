"""
Module: stock_kernel.selectors.base
Responsibility: Shared constructor for the read side of the ledger.
Architecture position: Kernel > Selectors.  May import from db/, domain/ and
    models/.  MUST NOT import from services/.

Invariants enforced:
    - Selectors only read: no add, delete, flush or commit.
    - No row locks, so availability checks never queue behind a
      propagation that is shifting later rows.
    - Results leave as frozen DTOs; live ORM instances stay inside.
"""

from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from stock_kernel.db.base import Base
from stock_kernel.domain.business_calendar import BusinessCalendar

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(Generic[ModelType]):
    """Holds the session and the calendar that resolves "today" for reads."""

    def __init__(self, session: Session, calendar: BusinessCalendar | None = None):
        self.session = session
        self._calendar = calendar or BusinessCalendar()

    @property
    def calendar(self) -> BusinessCalendar:
        return self._calendar
