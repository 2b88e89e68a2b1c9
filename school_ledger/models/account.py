"""
Module: school_ledger.models.account
Responsibility: ORM persistence for the chart of accounts -- the target of
    every journal line.
Architecture position: Ledger > Models.  May import from db/ only.

Invariants enforced:
    - Account.code is globally unique (uq_account_code) and never changes
      after creation.
    - normal_balance is derived from account_type through
      NORMAL_BALANCE_BY_TYPE; it is never chosen by the caller.

Failure modes:
    - IntegrityError on duplicate code (translated to
      DuplicateAccountCodeError by AccountRegistry).
    - AccountReferencedError on deletion while posted lines exist
      (db/immutability.py).
"""

from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from school_ledger.db.base import TrackedBase, UUIDString


class AccountType(str, Enum):
    """Types of accounts in the chart of accounts."""

    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    EXPENSE = "expense"


class NormalBalance(str, Enum):
    """Normal balance side for an account."""

    DEBIT = "debit"
    CREDIT = "credit"


# Closed set of five types: a lookup table, not a class hierarchy.
NORMAL_BALANCE_BY_TYPE: dict[AccountType, NormalBalance] = {
    AccountType.ASSET: NormalBalance.DEBIT,
    AccountType.EXPENSE: NormalBalance.DEBIT,
    AccountType.LIABILITY: NormalBalance.CREDIT,
    AccountType.EQUITY: NormalBalance.CREDIT,
    AccountType.REVENUE: NormalBalance.CREDIT,
}


class Account(TrackedBase):
    """
    Chart of accounts entry.

    Contract:
        code is unique and immutable.  parent_id, when set, points at an
        account of the same type (checked by AccountRegistry).

    Non-goals:
        - Balances are not stored here.  They are always derived from posted
          journal lines by TrialBalanceAggregator.
    """

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint("code", name="uq_account_code"),
        Index("idx_account_type", "account_type"),
        Index("idx_account_active", "is_active"),
        Index("idx_account_parent", "parent_id"),
    )

    # Hierarchical numeric code, e.g. "1110"
    code: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    account_type: Mapped[AccountType] = mapped_column(
        String(20),
        nullable=False,
    )

    normal_balance: Mapped[NormalBalance] = mapped_column(
        String(10),
        nullable=False,
    )

    # Parent account for sub-accounts
    parent_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    description: Mapped[str | None] = mapped_column(
        String(500),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Account {self.code}: {self.name}>"

    @property
    def is_debit_normal(self) -> bool:
        return self.normal_balance == NormalBalance.DEBIT

    @property
    def is_credit_normal(self) -> bool:
        return self.normal_balance == NormalBalance.CREDIT
