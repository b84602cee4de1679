"""
SequenceService -- global ordering numbers for the status history.

Responsibility:
    Hands out the ``seq`` stamped on every status history row.  One counter
    row per sequence name, locked with ``SELECT ... FOR UPDATE`` while the
    caller's transaction is open.

Architecture position:
    Kernel > Services.  Used by AuditLog; never commits.

Invariants enforced:
    - Values for a name only grow.  They are never derived from
      ``MAX(seq) + 1`` over the history table.
    - A rolled-back transaction gives its value back; since the counter row
      stays locked until commit, history ``seq`` order is commit order.

Failure modes:
    - Two transactions creating the same counter row: the loser's insert is
      undone inside a savepoint and it re-reads the winner's row.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from sales_kernel.logging_config import get_logger
from sales_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """
    Counter-row allocator.

    Usage:
        seq = SequenceService(session).next_value(SequenceService.STATUS_HISTORY)
    """

    STATUS_HISTORY = "status_history"

    def __init__(self, session: Session):
        self._session = session

    def _counter_for_update(self, name: str) -> SequenceCounter | None:
        # populate_existing refreshes the counter row only.
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _create_counter(self, name: str) -> SequenceCounter | None:
        """Insert a counter at 1; None if another transaction got there first."""
        savepoint = self._session.begin_nested()
        try:
            counter = SequenceCounter(name=name, current_value=1)
            self._session.add(counter)
            self._session.flush()
        except IntegrityError:
            savepoint.rollback()
            logger.debug("sequence_counter_race_retry", extra={"sequence_name": name})
            return None
        savepoint.commit()
        return counter

    def next_value(self, name: str) -> int:
        """Allocate the next value of ``name`` (1 on first use)."""
        counter = self._counter_for_update(name)
        if counter is None:
            created = self._create_counter(name)
            if created is not None:
                value = created.current_value
                logger.debug("sequence_allocated", extra={"sequence_name": name, "value": value})
                return value
            counter = self._counter_for_update(name)
            if counter is None:
                raise RuntimeError(f"Sequence counter {name!r} vanished after insert race")

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, name: str) -> int | None:
        """Last allocated value of ``name`` without allocating; None if unused."""
        return self._session.execute(
            select(SequenceCounter.current_value).where(SequenceCounter.name == name)
        ).scalar_one_or_none()
