"""
SequenceService -- gap-free counters for generated journal references.

Each named sequence is one row in ``sequence_counters``.  The row is read
with ``SELECT ... FOR UPDATE`` (a no-op on SQLite, which serializes writers
anyway) and incremented in the caller's transaction, so a rolled-back
transaction gives its number back.  Taking ``max(reference) + 1`` is never
used: two writers would read the same maximum.

Failure modes:
    - IntegrityError while creating a counter row for the first time means
      another transaction created it concurrently.  The insert's savepoint
      is rolled back and the existing row is locked and incremented instead.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from school_ledger.logging_config import get_logger
from school_ledger.models.sequence import SequenceCounter
from school_ledger.services.base import BaseService

logger = get_logger("services.sequence")


class SequenceService(BaseService[SequenceCounter]):
    """
    Allocates strictly increasing integers per sequence name.

    Non-goals:
        - Does NOT call ``session.commit()``; the value is only durable once
          the caller commits.

    Usage:
        seq = SequenceService(session).next_value("journal_reference:JE:2026")
    """

    JOURNAL_REFERENCE = "journal_reference"

    def __init__(self, session: Session):
        super().__init__(session)

    @classmethod
    def journal_sequence_name(cls, prefix: str, year: int) -> str:
        """References restart at 1 every calendar year, per prefix."""
        return f"{cls.JOURNAL_REFERENCE}:{prefix}:{year}"

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self.session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Increment and return the named sequence.

        Postconditions:
            - Returns an integer > 0, strictly greater than any value
              previously returned for this name in committed transactions.
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            savepoint = self.session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self.session.add(counter)
                self.session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self.session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value without incrementing; None if never used."""
        counter = self.session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return counter.current_value if counter else None
