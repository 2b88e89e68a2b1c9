"""
Typed exception hierarchy for the school ledger.

Every error carries a ``code`` class attribute (machine-readable, API-safe)
and stores its context as instance attributes, so callers catch by type and
read structured data instead of parsing messages.

    LedgerError (base)
    |
    +-- ValidationError          malformed or inconsistent input
    |   +-- InvalidAccountCodeError
    |   +-- InvalidAccountTypeError
    |   +-- InvalidAmountError
    |   +-- InvalidJournalLineError
    |   +-- InsufficientLinesError
    |   +-- UnbalancedEntryError
    |   +-- InvalidPeriodError
    |   +-- InvalidConfigurationError
    |
    +-- NotFoundError            reference to a nonexistent record
    |   +-- AccountNotFoundError
    |   +-- EntryNotFoundError
    |   +-- AssetNotFoundError
    |
    +-- ConflictError            uniqueness or state-machine violation
        +-- DuplicateAccountCodeError
        +-- DuplicateReferenceError
        +-- DuplicateDepreciationPeriodError
        +-- EntryNotDraftError
        +-- EntryNotPostedError
        +-- EntryAlreadyReversedError
        +-- PostingInvariantError
        +-- ImmutabilityViolationError
        +-- AccountReferencedError

Handling patterns::

    try:
        poster.post_entry(entry_id, posted_by=user_id)
    except EntryNotDraftError as e:
        notify(f"Entry {e.journal_entry_id} is already {e.status}")
    except LedgerError as e:
        api_response(code=e.code, message=str(e))

A trial balance that does not balance is NOT an exception; it is reported
through ``TrialBalance.is_balanced``.
"""

from decimal import Decimal


class LedgerError(Exception):
    """Base exception for all ledger errors."""

    code: str = "LEDGER_ERROR"


# Validation errors


class ValidationError(LedgerError):
    """Input is malformed or logically inconsistent."""

    code: str = "VALIDATION_ERROR"


class InvalidAccountCodeError(ValidationError):
    """Account code does not match the configured code pattern."""

    code: str = "INVALID_ACCOUNT_CODE"

    def __init__(self, account_code: str, pattern: str):
        self.account_code = account_code
        self.pattern = pattern
        super().__init__(
            f"Invalid account code {account_code!r}: must match {pattern}"
        )


class InvalidAccountTypeError(ValidationError):
    """Account type is unknown, or inconsistent with its parent."""

    code: str = "INVALID_ACCOUNT_TYPE"

    def __init__(self, account_type: str, reason: str):
        self.account_type = account_type
        self.reason = reason
        super().__init__(f"Invalid account type {account_type!r}: {reason}")


class InvalidAmountError(ValidationError):
    """Monetary amount is negative, non-finite, a float, or over-precise."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, amount: object, reason: str):
        self.amount = str(amount)
        self.reason = reason
        super().__init__(f"Invalid amount {amount!r}: {reason}")


class InvalidJournalLineError(ValidationError):
    """A journal line is missing fields, targets a bad account, or has bad amounts."""

    code: str = "INVALID_JOURNAL_LINE"

    def __init__(self, line_index: int, account: str | None, reason: str):
        self.line_index = line_index
        self.account = account
        self.reason = reason
        super().__init__(
            f"Invalid journal line {line_index} (account {account}): {reason}"
        )


class InsufficientLinesError(ValidationError):
    """A journal entry needs at least two lines."""

    code: str = "INSUFFICIENT_LINES"

    def __init__(self, line_count: int):
        self.line_count = line_count
        super().__init__(
            f"Journal entry requires at least 2 lines, got {line_count}"
        )


class UnbalancedEntryError(ValidationError):
    """Journal entry debits do not equal credits."""

    code: str = "UNBALANCED_ENTRY"

    def __init__(self, debits: Decimal, credits: Decimal):
        self.debits = str(debits)
        self.credits = str(credits)
        super().__init__(
            f"Unbalanced entry: debits={debits}, credits={credits}"
        )


class InvalidPeriodError(ValidationError):
    """Accounting period (year, month) is out of range."""

    code: str = "INVALID_PERIOD"

    def __init__(self, year: object, month: object):
        self.year = year
        self.month = month
        super().__init__(f"Invalid accounting period: year={year}, month={month}")


class InvalidConfigurationError(ValidationError):
    """Ledger configuration contains unknown keys or invalid values."""

    code: str = "INVALID_CONFIGURATION"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid configuration for {field!r}: {reason}")


# Not-found errors


class NotFoundError(LedgerError):
    """Referenced record does not exist."""

    code: str = "NOT_FOUND"


class AccountNotFoundError(NotFoundError):
    """Account with given id or code was not found."""

    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_ref: str):
        self.account_ref = account_ref
        super().__init__(f"Account not found: {account_ref}")


class EntryNotFoundError(NotFoundError):
    """Journal entry with given id or reference was not found."""

    code: str = "ENTRY_NOT_FOUND"

    def __init__(self, journal_entry_id: str):
        self.journal_entry_id = journal_entry_id
        super().__init__(f"Journal entry not found: {journal_entry_id}")


class AssetNotFoundError(NotFoundError):
    """Fixed asset with given id was not found."""

    code: str = "ASSET_NOT_FOUND"

    def __init__(self, asset_id: str):
        self.asset_id = asset_id
        super().__init__(f"Fixed asset not found: {asset_id}")


# Conflict errors


class ConflictError(LedgerError):
    """Operation violates a uniqueness or state-machine rule."""

    code: str = "CONFLICT"


class DuplicateAccountCodeError(ConflictError):
    """An account with this code already exists."""

    code: str = "DUPLICATE_ACCOUNT_CODE"

    def __init__(self, account_code: str):
        self.account_code = account_code
        super().__init__(f"Account code already exists: {account_code}")


class DuplicateReferenceError(ConflictError):
    """A journal entry with this reference already exists."""

    code: str = "DUPLICATE_REFERENCE"

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Journal reference already exists: {reference}")


class DuplicateDepreciationPeriodError(ConflictError):
    """Depreciation was already recorded for this asset and period."""

    code: str = "DUPLICATE_DEPRECIATION_PERIOD"

    def __init__(self, asset_id: str, year: int, month: int):
        self.asset_id = asset_id
        self.year = year
        self.month = month
        super().__init__(
            f"Depreciation already recorded for asset {asset_id} "
            f"in {year}-{month:02d}"
        )


class EntryNotDraftError(ConflictError):
    """Only draft entries may be posted, edited or deleted."""

    code: str = "ENTRY_NOT_DRAFT"

    def __init__(self, journal_entry_id: str, status: str):
        self.journal_entry_id = journal_entry_id
        self.status = status
        super().__init__(
            f"Journal entry {journal_entry_id} is {status}, not draft"
        )


class EntryNotPostedError(ConflictError):
    """Cannot reverse an entry that is not posted."""

    code: str = "ENTRY_NOT_POSTED"

    def __init__(self, journal_entry_id: str, status: str):
        self.journal_entry_id = journal_entry_id
        self.status = status
        super().__init__(
            f"Cannot reverse entry {journal_entry_id}: status is {status}, not posted"
        )


class EntryAlreadyReversedError(ConflictError):
    """Entry has already been reversed."""

    code: str = "ENTRY_ALREADY_REVERSED"

    def __init__(self, journal_entry_id: str, reversed_by_id: str | None = None):
        self.journal_entry_id = journal_entry_id
        self.reversed_by_id = reversed_by_id
        super().__init__(f"Entry {journal_entry_id} has already been reversed")


class ImmutabilityViolationError(ConflictError):
    """Attempted to modify or delete a posted record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class AccountReferencedError(ConflictError):
    """Account cannot be deleted because posted lines reference it."""

    code: str = "ACCOUNT_REFERENCED"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(
            f"Account {account_id} cannot be deleted: referenced by posted lines"
        )


class PostingInvariantError(ConflictError):
    """A draft no longer satisfies the double-entry rules when it is posted."""

    code: str = "POSTING_INVARIANT_VIOLATED"

    def __init__(self, journal_entry_id: str, reason: str):
        self.journal_entry_id = journal_entry_id
        self.reason = reason
        super().__init__(f"Cannot post entry {journal_entry_id}: {reason}")
