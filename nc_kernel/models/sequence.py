"""
Module: nc_kernel.models.sequence
Responsibility: Named counter rows backing SequenceService.

Each row is one named sequence.  Non-conformity numbers use one sequence
per organization per registration day, so the name embeds both.
"""

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from nc_kernel.db.base import Base


class SequenceCounter(Base):
    """
    Sequence counter table.

    Row-level locking on this table serializes number allocation.
    """

    __tablename__ = "nc_sequence_counters"

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    def __repr__(self) -> str:
        return f"<SequenceCounter {self.name}={self.current_value}>"
