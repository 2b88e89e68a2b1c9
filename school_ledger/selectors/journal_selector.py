"""
Module: school_ledger.selectors.journal_selector
Responsibility: Read-only access to journal entries and their lines,
    returned as plain DTOs so callers never hold mutable ORM rows.
Architecture position: Ledger > Selectors.  May import from models/ and
    selectors/base.py.  MUST NOT import from services/.

Failure modes:
    - Returns None or an empty list when nothing matches; never raises on
      absence of data.  An unparseable id is treated as "no match".
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from school_ledger.models.journal import (
    POSTED_STATUSES,
    JournalEntry,
    JournalEntryStatus,
    JournalLine,
    ReferenceType,
)
from school_ledger.selectors.base import BaseSelector


@dataclass(frozen=True)
class JournalLineDTO:
    """Data transfer object for a journal line."""

    id: UUID
    account_id: UUID
    account_code: str
    account_name: str
    debit_amount: Decimal
    credit_amount: Decimal
    memo: str | None
    line_seq: int


@dataclass(frozen=True)
class JournalEntryDTO:
    """Data transfer object for a journal entry."""

    id: UUID
    reference: str
    entry_date: date
    description: str
    status: str
    total_debit: Decimal
    total_credit: Decimal
    reference_type: str
    reference_id: str | None
    posted_by: str | None
    posted_at: datetime | None
    reversal_of_id: UUID | None
    reversed_by_id: UUID | None
    created_by: str
    lines: tuple[JournalLineDTO, ...]

    @property
    def is_balanced(self) -> bool:
        return sum((l.debit_amount for l in self.lines), Decimal("0")) == sum(
            (l.credit_amount for l in self.lines), Decimal("0")
        )


@dataclass(frozen=True)
class AccountLineDTO:
    """A posted line on one account, with its entry's date and reference."""

    journal_entry_id: UUID
    reference: str
    entry_date: date
    debit_amount: Decimal
    credit_amount: Decimal
    memo: str | None


def _value(enum_or_str) -> str:
    return getattr(enum_or_str, "value", enum_or_str)


def _as_uuid(value: UUID | str) -> UUID | None:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


class JournalSelector(BaseSelector[JournalEntry]):
    """
    Journal entry queries.

    Multi-entry results are ordered by (entry_date, reference); lines inside
    each DTO by line_seq.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    def _to_dto(self, entry: JournalEntry) -> JournalEntryDTO:
        lines = tuple(
            JournalLineDTO(
                id=line.id,
                account_id=line.account_id,
                account_code=line.account_code,
                account_name=line.account_name,
                debit_amount=line.debit_amount,
                credit_amount=line.credit_amount,
                memo=line.memo,
                line_seq=line.line_seq,
            )
            for line in sorted(entry.lines, key=lambda x: x.line_seq)
        )
        return JournalEntryDTO(
            id=entry.id,
            reference=entry.reference,
            entry_date=entry.entry_date,
            description=entry.description,
            status=_value(entry.status),
            total_debit=entry.total_debit,
            total_credit=entry.total_credit,
            reference_type=_value(entry.reference_type),
            reference_id=entry.reference_id,
            posted_by=entry.posted_by,
            posted_at=entry.posted_at,
            reversal_of_id=entry.reversal_of_id,
            reversed_by_id=entry.reversed_by_id,
            created_by=entry.created_by,
            lines=lines,
        )

    def _entries(self, query) -> list[JournalEntryDTO]:
        query = query.options(selectinload(JournalEntry.lines)).order_by(
            JournalEntry.entry_date, JournalEntry.reference
        )
        return [self._to_dto(e) for e in self.session.execute(query).scalars()]

    def get(self, journal_entry_id: UUID | str) -> JournalEntryDTO | None:
        entry_uuid = _as_uuid(journal_entry_id)
        if entry_uuid is None:
            return None
        entry = self.session.get(JournalEntry, entry_uuid)
        return self._to_dto(entry) if entry is not None else None

    def get_by_reference(self, reference: str) -> JournalEntryDTO | None:
        entry = self.session.execute(
            select(JournalEntry)
            .options(selectinload(JournalEntry.lines))
            .where(JournalEntry.reference == reference)
        ).scalar_one_or_none()
        return self._to_dto(entry) if entry is not None else None

    def list_by_status(self, status: JournalEntryStatus | str) -> list[JournalEntryDTO]:
        return self._entries(
            select(JournalEntry).where(JournalEntry.status == _value(status))
        )

    def list_by_date_range(
        self,
        start_date: date,
        end_date: date,
        status: JournalEntryStatus | str | None = None,
    ) -> list[JournalEntryDTO]:
        """
        Entries with start_date <= entry_date <= end_date.

        Args:
            start_date: Start of range (inclusive).
            end_date: End of range (inclusive).
            status: Optional status filter.
        """
        query = select(JournalEntry).where(
            JournalEntry.entry_date >= start_date,
            JournalEntry.entry_date <= end_date,
        )
        if status is not None:
            query = query.where(JournalEntry.status == _value(status))
        return self._entries(query)

    def list_by_source(
        self,
        reference_type: ReferenceType | str,
        reference_id: str | None = None,
    ) -> list[JournalEntryDTO]:
        """Entries produced by a kind of source document, optionally one document."""
        query = select(JournalEntry).where(
            JournalEntry.reference_type == _value(reference_type)
        )
        if reference_id is not None:
            query = query.where(JournalEntry.reference_id == reference_id)
        return self._entries(query)

    def count(self, status: JournalEntryStatus | str | None = None) -> int:
        query = select(func.count(JournalEntry.id))
        if status is not None:
            query = query.where(JournalEntry.status == _value(status))
        return self.session.execute(query).scalar_one()

    def lines_for_account(
        self,
        account_id: UUID | str,
        as_of_date: date | None = None,
    ) -> list[AccountLineDTO]:
        """
        Posted lines hitting one account, oldest first.

        Lines of reversed entries are included alongside their reversals,
        so the lines net to the account's balance.
        """
        account_uuid = _as_uuid(account_id)
        if account_uuid is None:
            return []
        query = (
            select(JournalLine, JournalEntry.reference, JournalEntry.entry_date)
            .join(JournalEntry, JournalLine.journal_entry_id == JournalEntry.id)
            .where(
                JournalLine.account_id == account_uuid,
                JournalEntry.status.in_(POSTED_STATUSES),
            )
            .order_by(JournalEntry.entry_date, JournalEntry.reference, JournalLine.line_seq)
        )
        if as_of_date is not None:
            query = query.where(JournalEntry.entry_date <= as_of_date)

        return [
            AccountLineDTO(
                journal_entry_id=line.journal_entry_id,
                reference=reference,
                entry_date=entry_date,
                debit_amount=line.debit_amount,
                credit_amount=line.credit_amount,
                memo=line.memo,
            )
            for line, reference, entry_date in self.session.execute(query).all()
        ]
