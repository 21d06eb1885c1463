"""
Pure cron evaluation for the ledger jobs.

Contract:
    ``parse_cron``, ``matches_cron`` and ``next_cron_match`` are PURE --
    no I/O, no clock reads.  The scheduler passes in business local time,
    so "0 0 * * *" means local midnight, when the business date turns.

Architecture: stock_batch/domain.  ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

# (field name, lowest value, highest value), in expression order.
_FIELDS = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day of month", 1, 31),
    ("month", 1, 12),
    ("day of week", 0, 6),
)

_SEARCH_LIMIT = timedelta(days=366)


@dataclass(frozen=True)
class CronSpec:
    """Allowed values per field of ``minute hour day_of_month month day_of_week``.

    Day of week follows cron: 0 is Sunday.
    """

    minutes: frozenset[int]
    hours: frozenset[int]
    days_of_month: frozenset[int]
    months: frozenset[int]
    days_of_week: frozenset[int]


def _number(text: str, name: str) -> int:
    if not text.isdigit():
        raise ValueError(f"Invalid {name} value '{text}'")
    return int(text)


def _expand(part: str, name: str, low: int, high: int) -> range:
    """One comma-separated element: ``*``, ``N``, ``N-M``, each optionally ``/step``."""
    base, slash, step_text = part.partition("/")
    step = _number(step_text, name) if slash else 1
    if step <= 0:
        raise ValueError(f"Step must be positive in {name} field: '{part}'")

    if base == "*":
        start, end = low, high
    elif "-" in base:
        first, _, last = base.partition("-")
        start, end = _number(first, name), _number(last, name)
    else:
        start = _number(base, name)
        # "5/15" runs from 5 to the top of the field; a bare "5" is just 5.
        end = high if slash else start

    if start > end:
        raise ValueError(f"Range start after end in {name} field: '{part}'")
    if start < low or end > high:
        raise ValueError(f"{name.capitalize()} '{part}' outside [{low}, {high}]")
    return range(start, end + 1, step)


def _parse_field(text: str, name: str, low: int, high: int) -> frozenset[int]:
    values: set[int] = set()
    for part in text.split(","):
        if not part:
            raise ValueError(f"Empty element in {name} field '{text}'")
        values.update(_expand(part, name, low, high))
    return frozenset(values)


def parse_cron(expression: str) -> CronSpec:
    """Parse a 5-field cron expression.

    Raises:
        ValueError: Wrong number of fields, bad syntax or out-of-range value.
    """
    parts = expression.split()
    if len(parts) != len(_FIELDS):
        raise ValueError(
            f"Cron expression must have 5 fields, got {len(parts)}: '{expression}'"
        )
    minutes, hours, days, months, weekdays = (
        _parse_field(text, name, low, high)
        for text, (name, low, high) in zip(parts, _FIELDS)
    )
    return CronSpec(minutes, hours, days, months, weekdays)


def matches_cron(spec: CronSpec, dt: datetime) -> bool:
    # datetime.weekday() is 0 for Monday; cron counts from Sunday.
    return (
        dt.minute in spec.minutes
        and dt.hour in spec.hours
        and dt.day in spec.days_of_month
        and dt.month in spec.months
        and (dt.weekday() + 1) % 7 in spec.days_of_week
    )


def next_cron_match(spec: CronSpec, after: datetime) -> datetime:
    """First whole minute strictly after ``after`` that matches.

    The result keeps ``after``'s tzinfo.  Whole hours and days that cannot
    match are skipped rather than walked minute by minute.

    Raises:
        ValueError: Nothing matches within a year (e.g. "0 0 31 2 *").
    """
    candidate = after.replace(second=0, microsecond=0) + timedelta(minutes=1)
    deadline = after + _SEARCH_LIMIT
    while candidate <= deadline:
        day_ok = (
            candidate.month in spec.months
            and candidate.day in spec.days_of_month
            and (candidate.weekday() + 1) % 7 in spec.days_of_week
        )
        if not day_ok:
            candidate = candidate.replace(hour=0, minute=0) + timedelta(days=1)
        elif candidate.hour not in spec.hours:
            candidate = candidate.replace(minute=0) + timedelta(hours=1)
        elif candidate.minute not in spec.minutes:
            candidate += timedelta(minutes=1)
        else:
            return candidate
    raise ValueError(f"No cron match found within 366 days after {after}")
