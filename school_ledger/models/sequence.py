"""Named counter rows backing gap-free journal reference numbers."""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from school_ledger.db.base import Base


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row is one named sequence (e.g. ``journal_reference:JE:2026``) with the
    last value handed out.  The row is locked while it is incremented.
    """

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )

    def __repr__(self) -> str:
        return f"<SequenceCounter {self.name}={self.current_value}>"
