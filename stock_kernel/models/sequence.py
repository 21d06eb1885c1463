"""
Module: stock_kernel.models.sequence
Responsibility: Named counters for human-readable document numbers.
Architecture position: Kernel > Models.

Invariants enforced:
    - One counter row per name (uq_sequence_name); increments happen under
      SELECT ... FOR UPDATE in SequenceService.
"""

from sqlalchemy import BigInteger, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_kernel.db.base import Base


class SequenceCounter(Base):
    """Current value of a named sequence (e.g. "transaction:20250110")."""

    __tablename__ = "sequence_counters"

    __table_args__ = (UniqueConstraint("name", name="uq_sequence_name"),)

    name: Mapped[str] = mapped_column(String(64), nullable=False)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
