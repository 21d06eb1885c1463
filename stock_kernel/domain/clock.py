"""
Clock -- injectable source of the current instant.

Nothing in the ledger calls ``datetime.now()`` or ``date.today()``: services
take a Clock, and business dates come from ``BusinessCalendar`` reading that
clock.  Tests pin time with ``DeterministicClock``, so "today", gap-fill
ranges, rollover dates and audit timestamps are all reproducible.

Naive datetimes are accepted (SQLite strips tzinfo) and read as UTC.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """Source of the current instant."""

    @abstractmethod
    def now(self) -> datetime:
        """Current instant; used for audit timestamps."""

    def now_utc(self) -> datetime:
        """Current instant as an aware UTC datetime."""
        current = self.now()
        if current.tzinfo is None:
            return current.replace(tzinfo=timezone.utc)
        return current.astimezone(timezone.utc)


class SystemClock(Clock):
    """Wall-clock time, always timezone-aware."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    ``now()`` keeps returning the same instant until ``set_time()``,
    ``advance()`` or ``tick()``.  The default instant, 2024-01-01 05:00 UTC,
    is midday in the default business timezone.
    """

    DEFAULT_TIME = datetime(2024, 1, 1, 5, 0, 0, tzinfo=timezone.utc)

    def __init__(self, fixed_time: datetime | None = None):
        self._current = fixed_time or self.DEFAULT_TIME

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        self._current = time

    def advance(self, seconds: float = 1) -> None:
        self._current += timedelta(seconds=seconds)

    def tick(self) -> datetime:
        """Advance one second and return the new instant."""
        self.advance(1)
        return self._current
