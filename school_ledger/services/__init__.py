"""Services for the school ledger (write side)."""

from school_ledger.services.account_registry import AccountNode, AccountRegistry
from school_ledger.services.depreciation_engine import DepreciationEngine
from school_ledger.services.ledger_poster import LedgerPoster
from school_ledger.services.sequence_service import SequenceService

__all__ = [
    "AccountNode",
    "AccountRegistry",
    "DepreciationEngine",
    "LedgerPoster",
    "SequenceService",
]
