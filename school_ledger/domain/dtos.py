"""
Immutable data structures crossing the service boundary.

LineSpec is the input shape for journal lines.  TrialBalance and the
depreciation results are derived, never persisted.  Nothing here touches a
session.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from school_ledger.domain.money import ZERO


@dataclass(frozen=True)
class LineSpec:
    """
    One requested journal line.

    ``account`` is either an account id or an account code.  Exactly one of
    ``debit`` / ``credit`` must be non-zero; LedgerPoster enforces it.
    Amounts may be given as Decimal, int or numeric string, never float.
    """

    account: UUID | str
    debit: Decimal | int | str = ZERO
    credit: Decimal | int | str = ZERO
    memo: str | None = None

    @classmethod
    def debit_line(cls, account: UUID | str, amount, memo: str | None = None) -> LineSpec:
        return cls(account=account, debit=amount, credit=ZERO, memo=memo)

    @classmethod
    def credit_line(cls, account: UUID | str, amount, memo: str | None = None) -> LineSpec:
        return cls(account=account, debit=ZERO, credit=amount, memo=memo)


@dataclass(frozen=True)
class TrialBalanceRow:
    """
    A single account in a trial balance.

    debit/credit are the raw posted sums; balance is signed by the
    account's normal balance (positive means "on its normal side").
    """

    account_id: UUID
    code: str
    name: str
    account_type: str
    normal_balance: str
    debit: Decimal
    credit: Decimal
    balance: Decimal


@dataclass(frozen=True)
class TrialBalance:
    """Point-in-time balances derived from posted journal lines."""

    as_of_date: date
    rows: tuple[TrialBalanceRow, ...]
    total_debit: Decimal
    total_credit: Decimal
    is_balanced: bool

    @property
    def difference(self) -> Decimal:
        return self.total_debit - self.total_credit

    def row_for(self, code: str) -> TrialBalanceRow | None:
        for row in self.rows:
            if row.code == code:
                return row
        return None


@dataclass(frozen=True)
class DepreciationError:
    """A per-asset failure collected during a batch run."""

    asset_code: str
    error: str
    error_code: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {"assetCode": self.asset_code, "error": self.error}


@dataclass
class DepreciationRunResult:
    """
    Outcome of one monthly depreciation run.

    assets_processed counts assets charged in this run.  Assets already
    charged for the period, fully depreciated or with a zero charge are
    counted in assets_skipped instead.  A failed asset appears only in
    errors.
    """

    year: int
    month: int
    total_depreciation: Decimal = ZERO
    assets_processed: int = 0
    entries_created: int = 0
    assets_skipped: int = 0
    errors: list[DepreciationError] = field(default_factory=list)
    journal_entry_ids: list[UUID] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def as_dict(self) -> dict[str, Any]:
        return {
            "totalDepreciation": self.total_depreciation,
            "assetsProcessed": self.assets_processed,
            "entriesCreated": self.entries_created,
            "errors": [e.as_dict() for e in self.errors],
        }


@dataclass(frozen=True)
class AnnualDepreciationLine:
    asset_id: UUID
    asset_code: str
    asset_name: str
    monthly_depreciation: Decimal
    annual_depreciation: Decimal


@dataclass(frozen=True)
class AnnualDepreciationReport:
    """Projected straight-line depreciation for a calendar year."""

    year: int
    assets: tuple[AnnualDepreciationLine, ...]
    total_annual_depreciation: Decimal


@dataclass(frozen=True)
class DepreciationSummary:
    """Recorded depreciation for the monthly periods between two dates, inclusive."""

    start: date
    end: date
    total_depreciation: Decimal
    entries_count: int
    affected_assets: int
