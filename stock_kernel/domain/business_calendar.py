"""
BusinessCalendar -- "today" in the fixed business timezone.

Responsibility:
    Every "today / yesterday / local midnight" decision in the ledger goes
    through one object bound to a fixed UTC offset (UTC+7 by default), so
    business dates never depend on the server's own timezone.

Architecture position:
    Kernel > Domain.  Wraps an injected Clock; zero I/O of its own.

Invariants enforced:
    - A business date is the calendar date of the clock's instant
      shifted to the business offset.
"""

from datetime import date, datetime, timedelta, timezone

from stock_kernel.domain.clock import Clock, SystemClock

DEFAULT_UTC_OFFSET_HOURS = 7
DEFAULT_TIMEZONE_NAME = "Asia/Jakarta"


class BusinessCalendar:
    """
    Resolves business dates from a Clock at a fixed UTC offset.

    Contract:
        ``today()`` is the only method the ledger core needs; the others
        serve scheduling and reporting.

    Non-goals:
        No daylight-saving handling -- the business offset is fixed.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        utc_offset_hours: int = DEFAULT_UTC_OFFSET_HOURS,
        timezone_name: str = DEFAULT_TIMEZONE_NAME,
    ):
        self._clock = clock or SystemClock()
        self._tz = timezone(timedelta(hours=utc_offset_hours), timezone_name)
        self.timezone_name = timezone_name
        self.utc_offset_hours = utc_offset_hours

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def tzinfo(self) -> timezone:
        return self._tz

    def local_now(self) -> datetime:
        """Current instant expressed in business local time."""
        return self.to_local(self._clock.now_utc())

    def to_local(self, instant: datetime) -> datetime:
        """Convert an instant to business local time (naive input is read as UTC)."""
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        return instant.astimezone(self._tz)

    def today(self) -> date:
        return self.local_now().date()

    def yesterday(self) -> date:
        return self.today() - timedelta(days=1)

    def start_of_day(self, business_date: date) -> datetime:
        """Local midnight opening the business date, as an aware datetime."""
        return datetime(
            business_date.year, business_date.month, business_date.day,
            tzinfo=self._tz,
        )
