"""
stock_batch.domain.types -- Pure frozen dataclasses for the ledger jobs.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from uuid import UUID

from stock_kernel.domain.dtos import SnapshotSummary


# =============================================================================
# Rollover
# =============================================================================


class RolloverTrigger(str, Enum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"


class RolloverState(str, Enum):
    """Lifecycle of one rollover run."""

    IDLE = "idle"
    RUNNING = "running"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class RolloverOutcome(str, Enum):
    CARRIED_FORWARD = "carried_forward"  # Full rollover into an empty day
    PARTIAL_CARRY_FORWARD = "partial_carry_forward"  # Manual: missing products only
    SKIPPED = "skipped"  # Cron: today already has rows
    NOTHING_TO_ROLL = "nothing_to_roll"  # No earlier business date
    FAILED = "failed"


@dataclass(frozen=True)
class RolloverResult:
    """What one committed (or failed) rollover run did."""

    run_id: UUID
    trigger: RolloverTrigger
    state: RolloverState
    outcome: RolloverOutcome
    business_date: date
    previous_business_date: date | None = None
    snapshots_created: int = 0
    rows_carried: int = 0
    snapshots_deleted: int = 0
    carried_products: tuple[str, ...] = field(default_factory=tuple)
    missing_products: tuple[str, ...] = field(default_factory=tuple)
    started_at: datetime | None = None
    finished_at: datetime | None = None
    attempts: int = 1
    error_code: str | None = None
    error_message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.state == RolloverState.COMMITTED


@dataclass(frozen=True)
class ManualRolloverResult:
    success: bool
    message: str
    outcome: RolloverOutcome | None = None
    error_code: str | None = None
    result: RolloverResult | None = None


@dataclass(frozen=True)
class RolloverStatus:
    enabled: bool
    cron_expression: str
    timezone_name: str
    state: RolloverState
    business_date: date
    last_snapshot: SnapshotSummary | None
    next_run_at: datetime | None
    last_result: RolloverResult | None
    pending_products: tuple[str, ...] = field(default_factory=tuple)


# =============================================================================
# Resync
# =============================================================================


@dataclass(frozen=True)
class ResyncResult:
    start_date: date
    end_date: date
    processed_days: int
    updated_rows: int
    created_rows: int
    product_id: str | None = None


# =============================================================================
# Pending transactions
# =============================================================================


@dataclass(frozen=True)
class PendingFailure:
    transaction_number: str
    error_code: str
    message: str


@dataclass(frozen=True)
class PendingRunResult:
    business_date: date
    total_found: int
    completed: tuple[str, ...] = field(default_factory=tuple)
    failed: tuple[PendingFailure, ...] = field(default_factory=tuple)
