"""
Module: school_ledger.models.journal
Responsibility: ORM persistence for journal entries and journal lines -- the
    append-only transaction log every balance is derived from.
Architecture position: Ledger > Models.  May import from db/ only.
    MUST NOT import from services/, selectors/ or domain/.

Invariants enforced:
    - reference is unique (uq_journal_reference).
    - An entry is reversed at most once (uq_journal_reversal_of).
    - A line carries exactly one non-zero amount, on either the debit or the
      credit side, both non-negative (checked by LedgerPoster; the check
      constraint ck_journal_line_one_side is the database backstop).
    - Posted entries and their lines are immutable (db/immutability.py).

Failure modes:
    - IntegrityError on duplicate reference (translated to
      DuplicateReferenceError by LedgerPoster).
    - ImmutabilityViolationError on UPDATE/DELETE of a posted entry or line.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from school_ledger.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from school_ledger.models.account import Account


class JournalEntryStatus(str, Enum):
    """Lifecycle status of a journal entry.

    Transitions are one-way: DRAFT -> POSTED -> REVERSED.
    """

    DRAFT = "draft"
    POSTED = "posted"
    REVERSED = "reversed"


# Statuses whose lines count toward balances.  A reversed entry was posted;
# its reversal cancels it.
POSTED_STATUSES = (JournalEntryStatus.POSTED.value, JournalEntryStatus.REVERSED.value)


class ReferenceType(str, Enum):
    """What kind of business document produced the entry."""

    PAYMENT = "payment"
    EXPENSE = "expense"
    SALARY = "salary"
    DEPRECIATION = "depreciation"
    ADJUSTMENT = "adjustment"
    OTHER = "other"


class JournalEntry(TrackedBase):
    """
    Journal entry header.

    Contract:
        reference is unique across the ledger.  total_debit and total_credit
        mirror the line sums and are equal for every posted entry.

    Non-goals:
        - Balance is not enforced at the ORM level; LedgerPoster validates it
          on create, update and post.
    """

    __tablename__ = "journal_entries"

    __table_args__ = (
        UniqueConstraint("reference", name="uq_journal_reference"),
        UniqueConstraint("reversal_of_id", name="uq_journal_reversal_of"),
        Index("idx_journal_entry_date", "entry_date"),
        Index("idx_journal_status", "status"),
        Index("idx_journal_source", "reference_type", "reference_id"),
    )

    reference: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    # Accounting date; drives as-of reporting
    entry_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    description: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
    )

    status: Mapped[JournalEntryStatus] = mapped_column(
        String(10),
        default=JournalEntryStatus.DRAFT,
        nullable=False,
    )

    total_debit: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
        default=Decimal("0"),
    )

    total_credit: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
        default=Decimal("0"),
    )

    # Source document (payment, expense, depreciation run, ...)
    reference_type: Mapped[ReferenceType] = mapped_column(
        String(20),
        default=ReferenceType.OTHER,
        nullable=False,
    )

    reference_id: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    posted_by: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    posted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # If this is a reversal, points to the original entry
    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=True,
    )

    # If this entry was reversed, points to the reversing entry
    reversed_by_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    reversal_reason: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
    )

    lines: Mapped[list["JournalLine"]] = relationship(
        back_populates="entry",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="JournalLine.line_seq",
    )

    def __repr__(self) -> str:
        return f"<JournalEntry {self.reference} status={self.status}>"

    @property
    def is_draft(self) -> bool:
        return self.status == JournalEntryStatus.DRAFT

    @property
    def is_posted(self) -> bool:
        return self.status == JournalEntryStatus.POSTED

    @property
    def is_reversed(self) -> bool:
        return self.status == JournalEntryStatus.REVERSED

    @property
    def line_debit_total(self) -> Decimal:
        """Sum of debit amounts recomputed from the lines."""
        return sum((line.debit_amount for line in self.lines), Decimal("0"))

    @property
    def line_credit_total(self) -> Decimal:
        """Sum of credit amounts recomputed from the lines."""
        return sum((line.credit_amount for line in self.lines), Decimal("0"))

    @property
    def is_balanced(self) -> bool:
        """Read-side convenience; not a write-time guard."""
        return self.line_debit_total == self.line_credit_total


class JournalLine(TrackedBase):
    """
    One debit or credit line within a journal entry.

    account_code and account_name are snapshots taken when the line is
    written, so historical entries keep their original labels.
    """

    __tablename__ = "journal_lines"

    __table_args__ = (
        Index("idx_line_entry", "journal_entry_id"),
        Index("idx_line_account", "account_id"),
        CheckConstraint(
            "debit_amount >= 0 AND credit_amount >= 0 "
            "AND (debit_amount = 0 OR credit_amount = 0)",
            name="ck_journal_line_one_side",
        ),
    )

    journal_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=False,
    )

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    account_code: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    account_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    debit_amount: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
        default=Decimal("0"),
    )

    credit_amount: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
        default=Decimal("0"),
    )

    memo: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
    )

    # Position within the entry
    line_seq: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    entry: Mapped["JournalEntry"] = relationship(
        back_populates="lines",
    )

    account: Mapped["Account"] = relationship()

    def __repr__(self) -> str:
        return (
            f"<JournalLine {self.account_code} "
            f"Dr {self.debit_amount} Cr {self.credit_amount}>"
        )

    @property
    def is_debit(self) -> bool:
        return self.debit_amount > 0

    @property
    def is_credit(self) -> bool:
        return self.credit_amount > 0

    @property
    def signed_amount(self) -> Decimal:
        """Debits positive, credits negative."""
        return self.debit_amount - self.credit_amount
