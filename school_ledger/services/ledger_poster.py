"""
LedgerPoster -- journal entry validation, posting and reversal.

Responsibility:
    The single write path for journal entries.  Validates requested lines
    against the chart of accounts, persists drafts with a unique reference,
    moves drafts to posted, and neutralizes posted entries by reversal.

Architecture position:
    Ledger > Services.  Consumes AccountRegistry (account resolution) and
    SequenceService (reference numbers).  Used directly by callers and by
    DepreciationEngine for automated postings.

Invariants enforced:
    - Every entry has at least two lines; each line has exactly one
      non-zero, non-negative amount with at most two decimal places.
    - Sum of debits equals sum of credits to the cent, checked on create,
      on draft update and again on post.
    - Only drafts are posted, edited or deleted.  A posted entry changes only
      through reverse_entry, which adds a new posted entry with debit and
      credit swapped on every line and links both records.
    - references are unique (uq_journal_reference); a reversal is unique per
      original (uq_journal_reversal_of).  Inserts run in a savepoint and
      IntegrityError is translated to the matching ConflictError.

Failure modes:
    - ValidationError subclasses for malformed input; nothing is persisted.
    - EntryNotFoundError for unknown ids.
    - EntryNotDraftError / EntryNotPostedError / EntryAlreadyReversedError /
      DuplicateReferenceError / PostingInvariantError (ConflictErrors).
    - AccountReferencedError when deleting an account with journal lines.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from school_ledger.config import LedgerConfig
from school_ledger.db.immutability import account_subtree_has_posted_lines
from school_ledger.domain.clock import Clock, SystemClock
from school_ledger.domain.dtos import LineSpec
from school_ledger.domain.money import ZERO, to_money
from school_ledger.exceptions import (
    AccountReferencedError,
    DuplicateReferenceError,
    EntryAlreadyReversedError,
    EntryNotDraftError,
    EntryNotFoundError,
    EntryNotPostedError,
    InsufficientLinesError,
    InvalidAmountError,
    InvalidJournalLineError,
    PostingInvariantError,
    UnbalancedEntryError,
    ValidationError,
)
from school_ledger.logging_config import LogContext, get_logger
from school_ledger.models.account import Account
from school_ledger.models.journal import (
    JournalEntry,
    JournalEntryStatus,
    JournalLine,
    ReferenceType,
)
from school_ledger.services.account_registry import AccountRegistry
from school_ledger.services.base import BaseService
from school_ledger.services.sequence_service import SequenceService

logger = get_logger("services.ledger_poster")

MIN_LINES = 2


@dataclass(frozen=True)
class _ValidatedLine:
    account: Account
    debit: Decimal
    credit: Decimal
    memo: str | None


def _status_of(entry: JournalEntry) -> str:
    return getattr(entry.status, "value", entry.status)


def _coerce_line(index: int, raw: LineSpec | Mapping) -> LineSpec:
    if isinstance(raw, LineSpec):
        return raw
    if isinstance(raw, Mapping):
        account = raw.get("account", raw.get("account_id"))
        return LineSpec(
            account=account,
            debit=raw.get("debit", ZERO),
            credit=raw.get("credit", ZERO),
            memo=raw.get("memo"),
        )
    raise InvalidJournalLineError(index, None, "line must be a LineSpec or a mapping")


def _coerce_date(value: date | datetime | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value)
        except ValueError as exc:
            raise ValidationError(f"Invalid entry date {value!r}") from exc
    raise ValidationError(f"Invalid entry date {value!r}")


def _parse_reference_type(value: ReferenceType | str) -> ReferenceType:
    try:
        return ReferenceType(value)
    except ValueError as exc:
        valid = ", ".join(t.value for t in ReferenceType)
        raise ValidationError(
            f"Invalid reference type {value!r}: must be one of {valid}"
        ) from exc


class LedgerPoster(BaseService[JournalEntry]):
    """
    Write side of the journal.

    Contract:
        Accepts a caller-owned Session; flushes, never commits.  Every public
        method either completes its whole change or raises before any row is
        written (savepoints contain partial inserts).

    Non-goals:
        - Balances are not stored or adjusted here; TrialBalanceAggregator
          derives them from posted lines.
    """

    def __init__(
        self,
        session: Session,
        registry: AccountRegistry | None = None,
        config: LedgerConfig | None = None,
        clock: Clock | None = None,
        sequence_service: SequenceService | None = None,
    ):
        super().__init__(session)
        self._config = config or LedgerConfig()
        self._registry = registry or AccountRegistry(session, self._config)
        self._clock = clock or SystemClock()
        self._sequences = sequence_service or SequenceService(session)

    @property
    def registry(self) -> AccountRegistry:
        return self._registry

    # =========================================================================
    # Validation
    # =========================================================================

    def _validate_lines(self, lines: Iterable[LineSpec | Mapping] | None) -> list[_ValidatedLine]:
        """
        Resolve accounts and normalize amounts for a requested entry.

        Raises:
            InsufficientLinesError: fewer than two lines.
            InvalidJournalLineError: missing/unknown/inactive account, bad
                amount, or not exactly one non-zero side.
            UnbalancedEntryError: debits != credits.
        """
        raw_lines = list(lines or [])
        if len(raw_lines) < MIN_LINES:
            raise InsufficientLinesError(len(raw_lines))

        validated: list[_ValidatedLine] = []
        for index, raw in enumerate(raw_lines):
            spec = _coerce_line(index, raw)
            if spec.account is None or (isinstance(spec.account, str) and not spec.account.strip()):
                raise InvalidJournalLineError(index, None, "account is required")

            account = self._registry.find_account(spec.account)
            if account is None:
                raise InvalidJournalLineError(index, str(spec.account), "account does not exist")
            if not account.is_active:
                raise InvalidJournalLineError(index, account.code, "account is inactive")

            try:
                debit = to_money(spec.debit if spec.debit is not None else ZERO)
                credit = to_money(spec.credit if spec.credit is not None else ZERO)
            except InvalidAmountError as exc:
                raise InvalidJournalLineError(index, account.code, exc.reason) from exc

            if (debit > 0) == (credit > 0):
                raise InvalidJournalLineError(
                    index,
                    account.code,
                    "exactly one of debit or credit must be non-zero",
                )
            validated.append(_ValidatedLine(account, debit, credit, spec.memo))

        total_debit = sum((v.debit for v in validated), ZERO)
        total_credit = sum((v.credit for v in validated), ZERO)
        if total_debit != total_credit:
            raise UnbalancedEntryError(total_debit, total_credit)
        return validated

    @staticmethod
    def _make_lines(validated: list[_ValidatedLine], created_by: str) -> list[JournalLine]:
        return [
            JournalLine(
                account_id=v.account.id,
                account_code=v.account.code,
                account_name=v.account.name,
                debit_amount=v.debit,
                credit_amount=v.credit,
                memo=v.memo,
                line_seq=seq,
                created_by=created_by,
            )
            for seq, v in enumerate(validated)
        ]

    def _next_reference(self) -> str:
        year = self._clock.today().year
        prefix = self._config.reference_prefix
        seq = self._sequences.next_value(SequenceService.journal_sequence_name(prefix, year))
        return f"{prefix}-{year}-{seq:06d}"

    def _reference_exists(self, reference: str) -> bool:
        return self.session.execute(
            select(exists().where(JournalEntry.reference == reference))
        ).scalar()

    def _get_entry(self, entry_id: UUID | str) -> JournalEntry:
        entry_uuid = entry_id
        if not isinstance(entry_id, UUID):
            try:
                entry_uuid = UUID(str(entry_id))
            except ValueError as exc:
                raise EntryNotFoundError(str(entry_id)) from exc
        entry = self.session.get(JournalEntry, entry_uuid)
        if entry is None:
            raise EntryNotFoundError(str(entry_id))
        return entry

    def _insert_entry(self, entry: JournalEntry, *, on_conflict: Exception) -> None:
        savepoint = self.session.begin_nested()
        try:
            self.session.add(entry)
            self.session.flush()
            savepoint.commit()
        except IntegrityError as exc:
            savepoint.rollback()
            raise on_conflict from exc

    # =========================================================================
    # Drafts
    # =========================================================================

    def create_journal_entry(
        self,
        entry_date: date | datetime | str | None,
        description: str,
        lines: Iterable[LineSpec | Mapping],
        created_by: str = "system",
        reference_type: ReferenceType | str = ReferenceType.OTHER,
        reference_id: str | None = None,
        reference: str | None = None,
    ) -> JournalEntry:
        """
        Validate and persist a draft journal entry.

        Args:
            entry_date: Accounting date; defaults to the clock's today.
            description: Required narrative.
            lines: LineSpec objects (or mappings with account/debit/credit/memo).
                ``account`` may be an account id or code.
            created_by: Caller-provided user id.
            reference_type: payment, expense, salary, depreciation,
                adjustment or other.
            reference_id: Id of the source document, if any.
            reference: Explicit unique reference; generated as
                ``<prefix>-<year>-<seq>`` when omitted.

        Returns:
            The persisted draft JournalEntry.
        """
        posting_date = self._clock.today() if entry_date is None else _coerce_date(entry_date)
        if not isinstance(description, str) or not description.strip():
            raise ValidationError("Journal entry description is required")
        ref_type = _parse_reference_type(reference_type)
        validated = self._validate_lines(lines)

        if reference is None:
            reference = self._next_reference()
        elif self._reference_exists(reference):
            raise DuplicateReferenceError(reference)

        total = sum((v.debit for v in validated), ZERO)
        entry = JournalEntry(
            reference=reference,
            entry_date=posting_date,
            description=description.strip(),
            status=JournalEntryStatus.DRAFT.value,
            total_debit=total,
            total_credit=total,
            reference_type=ref_type.value,
            reference_id=reference_id,
            created_by=created_by,
            lines=self._make_lines(validated, created_by),
        )
        self._insert_entry(entry, on_conflict=DuplicateReferenceError(reference))

        logger.info(
            "journal_entry_created",
            extra={
                "journal_entry_id": str(entry.id),
                "reference": reference,
                "entry_date": posting_date,
                "line_count": len(validated),
                "total": total,
                "reference_type": ref_type.value,
            },
        )
        return entry

    def update_draft(
        self,
        entry_id: UUID | str,
        *,
        description: str | None = None,
        lines: Iterable[LineSpec | Mapping] | None = None,
        entry_date: date | datetime | str | None = None,
        updated_by: str = "system",
    ) -> JournalEntry:
        """
        Edit a draft in place.  Replacement lines go through the same
        validation as create_journal_entry.

        Raises:
            EntryNotDraftError: The entry is posted or reversed.
        """
        entry = self._get_entry(entry_id)
        if not entry.is_draft:
            raise EntryNotDraftError(str(entry.id), _status_of(entry))

        if description is not None:
            if not description.strip():
                raise ValidationError("Journal entry description is required")
            entry.description = description.strip()
        if entry_date is not None:
            entry.entry_date = _coerce_date(entry_date)
        if lines is not None:
            validated = self._validate_lines(lines)
            entry.lines.clear()
            self.session.flush()
            entry.lines.extend(self._make_lines(validated, updated_by))
            total = sum((v.debit for v in validated), ZERO)
            entry.total_debit = total
            entry.total_credit = total
        entry.updated_by = updated_by
        self.session.flush()

        logger.info(
            "journal_entry_updated",
            extra={"journal_entry_id": str(entry.id), "reference": entry.reference},
        )
        return entry

    def delete_draft(self, entry_id: UUID | str) -> None:
        """
        Physically delete a draft and its lines.

        Raises:
            EntryNotDraftError: The entry is posted or reversed.
        """
        entry = self._get_entry(entry_id)
        if not entry.is_draft:
            raise EntryNotDraftError(str(entry.id), _status_of(entry))
        reference = entry.reference
        self.session.delete(entry)
        self.session.flush()
        logger.info(
            "journal_entry_deleted",
            extra={"journal_entry_id": str(entry_id), "reference": reference},
        )

    # =========================================================================
    # Posting
    # =========================================================================

    def _check_postable(self, entry: JournalEntry) -> None:
        entry_id = str(entry.id)
        if len(entry.lines) < MIN_LINES:
            raise PostingInvariantError(entry_id, f"{len(entry.lines)} line(s), need {MIN_LINES}")
        for line in entry.lines:
            if line.debit_amount < 0 or line.credit_amount < 0:
                raise PostingInvariantError(entry_id, f"negative amount on account {line.account_code}")
            if (line.debit_amount > 0) == (line.credit_amount > 0):
                raise PostingInvariantError(
                    entry_id, f"line on account {line.account_code} is not one-sided"
                )
        debits = entry.line_debit_total
        credits = entry.line_credit_total
        if debits != credits:
            raise PostingInvariantError(entry_id, f"debits {debits} != credits {credits}")
        if debits != entry.total_debit or credits != entry.total_credit:
            raise PostingInvariantError(entry_id, "stored totals do not match lines")

    def post_entry(self, entry_id: UUID | str, posted_by: str = "system") -> JournalEntry:
        """
        Transition a draft to posted.  From here on the entry is immutable.

        Raises:
            EntryNotFoundError: Unknown id.
            EntryNotDraftError: The entry is not a draft.
            PostingInvariantError: The draft no longer balances.
        """
        entry = self._get_entry(entry_id)
        with LogContext.bind(entry_id=str(entry.id), actor_id=posted_by):
            if not entry.is_draft:
                raise EntryNotDraftError(str(entry.id), _status_of(entry))
            self._check_postable(entry)

            entry.status = JournalEntryStatus.POSTED.value
            entry.posted_by = posted_by
            entry.posted_at = self._clock.now()
            entry.updated_by = posted_by
            self.session.flush()

            logger.info(
                "journal_entry_posted",
                extra={
                    "journal_entry_id": str(entry.id),
                    "reference": entry.reference,
                    "total": entry.total_debit,
                },
            )
        return entry

    def create_and_post(
        self,
        entry_date: date | datetime | str | None,
        description: str,
        lines: Iterable[LineSpec | Mapping],
        posted_by: str = "system",
        reference_type: ReferenceType | str = ReferenceType.OTHER,
        reference_id: str | None = None,
        reference: str | None = None,
    ) -> JournalEntry:
        """Create a draft and post it immediately (automated postings)."""
        entry = self.create_journal_entry(
            entry_date,
            description,
            lines,
            created_by=posted_by,
            reference_type=reference_type,
            reference_id=reference_id,
            reference=reference,
        )
        return self.post_entry(entry.id, posted_by=posted_by)

    # =========================================================================
    # Reversal
    # =========================================================================

    def reverse_entry(
        self,
        entry_id: UUID | str,
        reason: str,
        reversed_by: str = "system",
        reversal_date: date | datetime | str | None = None,
    ) -> JournalEntry:
        """
        Neutralize a posted entry with a posted mirror entry.

        The reversal swaps debit and credit on every line, so for every
        account the two entries sum to zero.  The original's amounts are
        untouched; it only moves to ``reversed`` and gains reversed_by_id.
        Lines are copied from the original's snapshot, so a reversal still
        works after an account has been deactivated.

        Args:
            entry_id: Entry to reverse.
            reason: Required explanation, stored on the reversal.
            reversed_by: Caller-provided user id.
            reversal_date: Accounting date; defaults to the original's date.

        Returns:
            The posted reversal entry.

        Raises:
            EntryNotFoundError: Unknown id.
            EntryAlreadyReversedError: Already reversed.
            EntryNotPostedError: The entry is a draft.
        """
        original = self._get_entry(entry_id)
        with LogContext.bind(entry_id=str(original.id), actor_id=reversed_by):
            if original.is_reversed or original.reversed_by_id is not None:
                raise EntryAlreadyReversedError(
                    str(original.id),
                    str(original.reversed_by_id) if original.reversed_by_id else None,
                )
            if not original.is_posted:
                raise EntryNotPostedError(str(original.id), _status_of(original))
            if not isinstance(reason, str) or not reason.strip():
                raise ValidationError("Reversal reason is required")

            posting_date = (
                original.entry_date if reversal_date is None else _coerce_date(reversal_date)
            )
            now = self._clock.now()
            reversal = JournalEntry(
                reference=self._next_reference(),
                entry_date=posting_date,
                description=f"Reversal of {original.reference}: {reason.strip()}",
                status=JournalEntryStatus.POSTED.value,
                total_debit=original.total_credit,
                total_credit=original.total_debit,
                reference_type=original.reference_type,
                reference_id=original.reference_id,
                posted_by=reversed_by,
                posted_at=now,
                reversal_of_id=original.id,
                reversal_reason=reason.strip(),
                created_by=reversed_by,
                lines=[
                    JournalLine(
                        account_id=line.account_id,
                        account_code=line.account_code,
                        account_name=line.account_name,
                        debit_amount=line.credit_amount,
                        credit_amount=line.debit_amount,
                        memo=line.memo,
                        line_seq=line.line_seq,
                        created_by=reversed_by,
                    )
                    for line in original.lines
                ],
            )
            self._insert_entry(
                reversal,
                on_conflict=EntryAlreadyReversedError(str(original.id)),
            )

            original.status = JournalEntryStatus.REVERSED.value
            original.reversed_by_id = reversal.id
            original.updated_by = reversed_by
            self.session.flush()

            logger.info(
                "journal_entry_reversed",
                extra={
                    "journal_entry_id": str(original.id),
                    "reference": original.reference,
                    "reversal_entry_id": str(reversal.id),
                    "reversal_reference": reversal.reference,
                    "reason": reason.strip(),
                },
            )
        return reversal

    # =========================================================================
    # Accounts
    # =========================================================================

    def delete_account(self, account_id: UUID | str) -> None:
        """
        Delete an account that no journal line references.

        Direct sub-accounts are moved to the top level.  Posted lines on the
        account or any descendant block the delete, and so do draft lines
        on the account itself.

        Raises:
            AccountNotFoundError: Unknown id or code.
            AccountReferencedError: Journal lines reference the account or,
                for posted lines, one of its descendants.
        """
        account = self._registry.get_account(account_id)
        has_lines = self.session.execute(
            select(exists().where(JournalLine.account_id == account.id))
        ).scalar()
        if has_lines or account_subtree_has_posted_lines(self.session, account.id):
            raise AccountReferencedError(str(account.id))

        code = account.code
        savepoint = self.session.begin_nested()
        try:
            for child in self.session.execute(
                select(Account).where(Account.parent_id == account.id)
            ).scalars():
                child.parent_id = None
            self.session.delete(account)
            self.session.flush()
            savepoint.commit()
        except Exception:
            savepoint.rollback()
            raise

        logger.info(
            "account_deleted",
            extra={"account_id": str(account_id), "account_code": code},
        )
