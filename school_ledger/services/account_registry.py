"""
AccountRegistry -- the chart of accounts.

Responsibility:
    Creates accounts, looks them up by id or code, and answers the
    hierarchy and type queries the reporting pages need.  normal_balance is
    never supplied by the caller; it comes from NORMAL_BALANCE_BY_TYPE.

Invariants enforced:
    - Account code matches the configured pattern and is globally unique.
      Uniqueness rests on the uq_account_code constraint: the insert runs in
      a savepoint and an IntegrityError becomes DuplicateAccountCodeError,
      so two concurrent creators cannot both succeed.
    - A parent account exists and has the same type as its child.

Failure modes:
    - InvalidAccountCodeError / InvalidAccountTypeError / ValidationError on
      malformed input.
    - DuplicateAccountCodeError (a ConflictError) on an existing code.
    - AccountNotFoundError on lookups of a missing id or code.

Deleting accounts is LedgerPoster's job, because it owns the check against
posted journal lines.
"""

import re
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from school_ledger.config import LedgerConfig, load_default_chart
from school_ledger.exceptions import (
    AccountNotFoundError,
    DuplicateAccountCodeError,
    InvalidAccountCodeError,
    InvalidAccountTypeError,
    ValidationError,
)
from school_ledger.logging_config import get_logger
from school_ledger.models.account import (
    NORMAL_BALANCE_BY_TYPE,
    Account,
    AccountType,
)
from school_ledger.services.base import BaseService

logger = get_logger("services.account_registry")


@dataclass
class AccountNode:
    """An account with its active sub-accounts, for tree displays."""

    account: Account
    children: list["AccountNode"] = field(default_factory=list)


def _parse_account_type(account_type: AccountType | str) -> AccountType:
    try:
        return AccountType(account_type)
    except ValueError as exc:
        valid = ", ".join(t.value for t in AccountType)
        raise InvalidAccountTypeError(
            str(account_type), f"must be one of {valid}"
        ) from exc


def _as_uuid(value: UUID | str) -> UUID | None:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


class AccountRegistry(BaseService[Account]):
    """
    Chart of accounts service.

    Contract:
        Accepts a caller-owned Session; flushes, never commits.

    Guarantees:
        - create_account returns an active Account whose normal_balance is
          debit for asset/expense and credit for liability/equity/revenue.
    """

    def __init__(self, session: Session, config: LedgerConfig | None = None):
        super().__init__(session)
        self._config = config or LedgerConfig()
        self._code_re = re.compile(self._config.account_code_pattern)

    # =========================================================================
    # Creation
    # =========================================================================

    def create_account(
        self,
        code: str,
        name: str,
        account_type: AccountType | str,
        parent_id: UUID | str | None = None,
        *,
        description: str | None = None,
        created_by: str = "system",
    ) -> Account:
        """
        Create an account.

        Args:
            code: Numeric code matching the configured pattern, e.g. "1110".
            name: Display name.
            account_type: asset, liability, equity, revenue or expense.
            parent_id: Optional parent account id (or code) of the same type.
            description: Optional free text.
            created_by: Caller-provided user id.

        Returns:
            The created Account with is_active=True.

        Raises:
            InvalidAccountCodeError: code does not match the pattern.
            InvalidAccountTypeError: unknown type, or parent of another type.
            ValidationError: empty name.
            AccountNotFoundError: parent does not exist.
            DuplicateAccountCodeError: code already exists.
        """
        if not isinstance(code, str) or not self._code_re.fullmatch(code):
            raise InvalidAccountCodeError(str(code), self._config.account_code_pattern)
        if not isinstance(name, str) or not name.strip():
            raise ValidationError(f"Account {code}: name is required")
        acct_type = _parse_account_type(account_type)

        parent: Account | None = None
        if parent_id is not None:
            parent = self.get_account(parent_id)
            if parent.account_type != acct_type:
                raise InvalidAccountTypeError(
                    acct_type.value,
                    f"parent {parent.code} is {parent.account_type}",
                )

        if self._find_by_code(code) is not None:
            raise DuplicateAccountCodeError(code)

        account = Account(
            code=code,
            name=name.strip(),
            account_type=acct_type.value,
            normal_balance=NORMAL_BALANCE_BY_TYPE[acct_type].value,
            parent_id=parent.id if parent is not None else None,
            is_active=True,
            description=description,
            created_by=created_by,
        )

        savepoint = self.session.begin_nested()
        try:
            self.session.add(account)
            self.session.flush()
            savepoint.commit()
        except IntegrityError as exc:
            savepoint.rollback()
            raise DuplicateAccountCodeError(code) from exc

        logger.info(
            "account_created",
            extra={
                "account_id": str(account.id),
                "account_code": code,
                "account_type": acct_type.value,
                "normal_balance": account.normal_balance,
                "parent_code": parent.code if parent is not None else None,
            },
        )
        return account

    def initialize_default_accounts(self, created_by: str = "system") -> list[Account]:
        """
        Seed the default school chart of accounts.

        Idempotent: codes that already exist are left untouched.  Returns
        only the accounts created by this call.
        """
        created: list[Account] = []
        for spec in load_default_chart():
            code = str(spec["code"])
            if self._find_by_code(code) is not None:
                continue
            parent_code = spec.get("parent")
            created.append(
                self.create_account(
                    code=code,
                    name=spec["name"],
                    account_type=spec["type"],
                    parent_id=str(parent_code) if parent_code is not None else None,
                    description=spec.get("description"),
                    created_by=created_by,
                )
            )
        logger.info(
            "default_accounts_initialized",
            extra={"created_count": len(created)},
        )
        return created

    def deactivate_account(self, account_id: UUID | str, updated_by: str = "system") -> Account:
        """
        Mark an account inactive.  Its history stays; new lines are refused.

        Raises:
            AccountNotFoundError: If the account does not exist.
        """
        account = self.get_account(account_id)
        account.is_active = False
        account.updated_by = updated_by
        self.session.flush()
        logger.info(
            "account_deactivated",
            extra={"account_id": str(account.id), "account_code": account.code},
        )
        return account

    # =========================================================================
    # Lookups
    # =========================================================================

    def _find_by_code(self, code: str) -> Account | None:
        return self.session.execute(
            select(Account).where(Account.code == code)
        ).scalar_one_or_none()

    def find_account(self, id_or_code: UUID | str) -> Account | None:
        """Like get_account, returning None instead of raising."""
        account_uuid = _as_uuid(id_or_code)
        if account_uuid is not None:
            account = self.session.get(Account, account_uuid)
            if account is not None:
                return account
        if isinstance(id_or_code, str):
            return self._find_by_code(id_or_code)
        return None

    def get_account(self, id_or_code: UUID | str) -> Account:
        """
        Get an account by id or by code.

        Raises:
            AccountNotFoundError: If neither matches.
        """
        account = self.find_account(id_or_code)
        if account is None:
            raise AccountNotFoundError(str(id_or_code))
        return account

    def get_by_code(self, code: str) -> Account:
        """
        Raises:
            AccountNotFoundError: If no account has this code.
        """
        account = self._find_by_code(code)
        if account is None:
            raise AccountNotFoundError(code)
        return account

    def get_active_accounts(self) -> list[Account]:
        """All active accounts ordered by code."""
        return list(
            self.session.execute(
                select(Account).where(Account.is_active.is_(True)).order_by(Account.code)
            ).scalars()
        )

    def get_all_accounts(self) -> list[Account]:
        return list(self.session.execute(select(Account).order_by(Account.code)).scalars())

    def get_accounts_by_type(
        self,
        account_type: AccountType | str,
        active_only: bool = True,
    ) -> list[Account]:
        acct_type = _parse_account_type(account_type)
        stmt = select(Account).where(Account.account_type == acct_type.value)
        if active_only:
            stmt = stmt.where(Account.is_active.is_(True))
        return list(self.session.execute(stmt.order_by(Account.code)).scalars())

    def get_parent_accounts(self) -> list[Account]:
        """Active top-level accounts (no parent)."""
        return list(
            self.session.execute(
                select(Account)
                .where(Account.parent_id.is_(None), Account.is_active.is_(True))
                .order_by(Account.code)
            ).scalars()
        )

    def get_child_accounts(self, parent_id: UUID | str) -> list[Account]:
        """Active direct sub-accounts of a parent."""
        parent = self.get_account(parent_id)
        return list(
            self.session.execute(
                select(Account)
                .where(Account.parent_id == parent.id, Account.is_active.is_(True))
                .order_by(Account.code)
            ).scalars()
        )

    def get_hierarchy(self) -> list[AccountNode]:
        """Active accounts as a forest rooted at the top-level accounts."""
        accounts = self.get_active_accounts()
        nodes = {a.id: AccountNode(account=a) for a in accounts}
        roots: list[AccountNode] = []
        for account in accounts:
            node = nodes[account.id]
            parent_node = nodes.get(account.parent_id) if account.parent_id else None
            if parent_node is not None:
                parent_node.children.append(node)
            elif account.parent_id is None:
                roots.append(node)
        return roots
