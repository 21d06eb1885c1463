"""
SequenceService -- monotonic counters for transaction numbers.

Responsibility:
    Allocates strictly increasing values per named sequence using a
    dedicated counter row locked with ``SELECT ... FOR UPDATE``.  The stock
    transaction log uses one sequence per business date to number entries
    ``TRX-YYYYMMDD-NNN``.

Architecture position:
    Kernel > Services.  Called by TransactionLogService.

Invariants enforced:
    - The locked counter row is the only source of the next value; the
      MAX()+1 pattern is never used.
    - The increment is transactional: a rolled-back caller returns its value.

Failure modes:
    - Counter creation races are absorbed by INSERT ... ON CONFLICT DO NOTHING
      followed by the locked read.
"""

from datetime import date
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_kernel.logging_config import get_logger
from stock_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")

TRANSACTION_PREFIX = "TRX"


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(self, session: Session):
        self._session = session

    def next_value(self, sequence_name: str) -> int:
        """
        Lock the counter (creating it on first use), increment, return.

        Postconditions:
            - Returns an integer > 0 strictly greater than any value
              previously returned for this name in committed transactions.
        """
        self._ensure_counter(sequence_name)

        counter = self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one()

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return counter.current_value if counter else None

    def next_transaction_number(self, business_date: date) -> str:
        """Allocate ``TRX-YYYYMMDD-NNN`` for the business date."""
        stamp = business_date.strftime("%Y%m%d")
        value = self.next_value(f"transaction:{stamp}")
        return f"{TRANSACTION_PREFIX}-{stamp}-{value:03d}"

    def _ensure_counter(self, sequence_name: str) -> None:
        dialect = self._session.get_bind().dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert as dialect_insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert as dialect_insert
        else:
            existing = self._session.execute(
                select(SequenceCounter.id).where(SequenceCounter.name == sequence_name)
            ).first()
            if existing is None:
                self._session.add(SequenceCounter(name=sequence_name, current_value=0))
                self._session.flush()
            return

        self._session.execute(
            dialect_insert(SequenceCounter)
            .values(id=uuid4(), name=sequence_name, current_value=0)
            .on_conflict_do_nothing(index_elements=["name"])
        )
