"""
Pure domain layer.

Money helpers, depreciation math, the clock abstraction and the DTOs that
cross the service boundary.  Nothing here opens a session or reads the
system clock (except SystemClock).
"""

from school_ledger.domain.clock import Clock, DeterministicClock, SystemClock
from school_ledger.domain.dtos import (
    AnnualDepreciationLine,
    AnnualDepreciationReport,
    DepreciationError,
    DepreciationRunResult,
    DepreciationSummary,
    LineSpec,
    TrialBalance,
    TrialBalanceRow,
)
from school_ledger.domain.money import CENT, ZERO, round_money, to_money

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "LineSpec",
    "TrialBalance",
    "TrialBalanceRow",
    "DepreciationError",
    "DepreciationRunResult",
    "DepreciationSummary",
    "AnnualDepreciationLine",
    "AnnualDepreciationReport",
    "CENT",
    "ZERO",
    "round_money",
    "to_money",
]
