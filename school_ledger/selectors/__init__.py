"""Selectors for the school ledger (read side)."""

from school_ledger.selectors.journal_selector import (
    AccountLineDTO,
    JournalEntryDTO,
    JournalLineDTO,
    JournalSelector,
)
from school_ledger.selectors.trial_balance import TrialBalanceAggregator, signed_balance

__all__ = [
    "JournalSelector",
    "JournalEntryDTO",
    "JournalLineDTO",
    "AccountLineDTO",
    "TrialBalanceAggregator",
    "signed_balance",
]
