"""
LedgerSettings schema.

Frozen dataclasses produced by ``stock_config.loader`` from the defaults
file, an optional override file and the environment.  Every runtime knob
of the ledger jobs lives here; nothing else reads configuration.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

SYSTEM_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")

# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseSettings:
    url: str = "sqlite:///stock_ledger.db"
    echo: bool = False
    pool_size: int = 10
    max_overflow: int = 10


@dataclass(frozen=True)
class CalendarSettings:
    """Fixed business timezone (no DST)."""

    utc_offset_hours: int = 7
    timezone_name: str = "Asia/Jakarta"


@dataclass(frozen=True)
class RolloverSettings:
    enabled: bool = True
    cron: str = "0 0 * * *"
    max_attempts: int = 4
    retry_delays_seconds: tuple[float, ...] = (5.0, 15.0, 30.0)
    insert_batch_size: int = 500
    retention_days: int = 365


@dataclass(frozen=True)
class JobSettings:
    pending_cron: str = "5 0 * * *"
    alert_cron: str = "0 8 * * *"
    tick_interval_seconds: float = 30.0


@dataclass(frozen=True)
class LedgerSettings:
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    calendar: CalendarSettings = field(default_factory=CalendarSettings)
    rollover: RolloverSettings = field(default_factory=RolloverSettings)
    jobs: JobSettings = field(default_factory=JobSettings)
    log_level: str = "INFO"
    system_actor_id: UUID = SYSTEM_ACTOR_ID
