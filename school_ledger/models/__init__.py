"""ORM models for the school ledger."""

from school_ledger.models.account import (
    NORMAL_BALANCE_BY_TYPE,
    Account,
    AccountType,
    NormalBalance,
)
from school_ledger.models.asset import (
    AssetCategory,
    AssetStatus,
    DepreciationMethod,
    DepreciationRecord,
    FixedAsset,
)
from school_ledger.models.journal import (
    POSTED_STATUSES,
    JournalEntry,
    JournalEntryStatus,
    JournalLine,
    ReferenceType,
)
from school_ledger.models.sequence import SequenceCounter

__all__ = [
    "Account",
    "AccountType",
    "NormalBalance",
    "NORMAL_BALANCE_BY_TYPE",
    "JournalEntry",
    "JournalLine",
    "JournalEntryStatus",
    "ReferenceType",
    "POSTED_STATUSES",
    "FixedAsset",
    "DepreciationRecord",
    "AssetStatus",
    "AssetCategory",
    "DepreciationMethod",
    "SequenceCounter",
]
