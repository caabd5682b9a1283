"""
SequenceService -- non-conformity number allocation.

Numbers look like ``NC-20240101-0001``: prefix, registration day, and a
four-digit counter that restarts every day and runs separately for each
organization.  Each (organization, day) pair owns one row in
``nc_sequence_counters``; allocation locks that row (``SELECT ... FOR
UPDATE``) and increments it inside the caller's transaction.

Invariants enforced:
    - Numbers are never derived by counting non-conformities, so deleting
      a record never frees its number for reuse.
    - A rolled-back registration returns its number with the rest of the
      transaction.
    - The first registration of the day may race another one to create
      the counter row.  The loser's INSERT fails inside a savepoint, and
      it then locks and increments the winner's row.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from nc_kernel.logging_config import get_logger
from nc_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """Flush-only allocator; commits belong to the caller."""

    def __init__(self, session: Session):
        self._session = session

    def next_nc_number(self, organization_id: UUID, on_date: date, prefix: str = "NC") -> str:
        """Past 9999 a day's numbers simply grow a fifth digit."""
        day = on_date.strftime("%Y%m%d")
        value = self.next_value(f"nc_number:{organization_id}:{day}")
        return f"{prefix}-{day}-{value:04d}"

    def next_value(self, sequence_name: str) -> int:
        counter = self._lock(sequence_name) or self._create(sequence_name)
        if counter is None:
            value = 1
        else:
            counter.current_value += 1
            self._session.flush()
            value = counter.current_value
        logger.debug("sequence_allocated", extra={"sequence_name": sequence_name, "value": value})
        return value

    def _create(self, sequence_name: str) -> SequenceCounter | None:
        """Insert the counter at 1 and return None, or return the row a concurrent caller created."""
        savepoint = self._session.begin_nested()
        try:
            self._session.add(SequenceCounter(name=sequence_name, current_value=1))
            self._session.flush()
        except IntegrityError:
            savepoint.rollback()
            logger.debug("sequence_counter_race_retry", extra={"sequence_name": sequence_name})
            counter = self._lock(sequence_name)
            if counter is None:
                raise
            return counter
        savepoint.commit()
        return None

    def _lock(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
