"""
Module: school_ledger.selectors.trial_balance
Responsibility: Point-in-time account balances derived from posted journal
    lines.  No balance is stored anywhere; every figure here is recomputed
    from the journal at query time.
Architecture position: Ledger > Selectors.  May import from models/,
    domain/ and selectors/base.py.  MUST NOT import from services/.

Invariants enforced:
    - Only lines of posted entries count.  A reversed entry was posted and
      its reversal is posted too, so both are included and cancel out.
    - Lines count when entry_date <= as_of_date.
    - balance is signed by the account's normal side: debit-normal
      accounts report debit - credit, credit-normal accounts credit - debit.
    - is_balanced compares the totals after rounding to the cent.

Failure modes:
    - Never raises on inconsistent data.  An imbalance is reported through
      TrialBalance.is_balanced and a ``trial_balance_imbalanced`` warning.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from school_ledger.domain.dtos import TrialBalance, TrialBalanceRow
from school_ledger.domain.money import ZERO, round_money
from school_ledger.exceptions import AccountNotFoundError
from school_ledger.logging_config import get_logger
from school_ledger.models.account import Account, NormalBalance
from school_ledger.models.journal import POSTED_STATUSES, JournalEntry, JournalLine
from school_ledger.selectors.base import BaseSelector

logger = get_logger("selectors.trial_balance")


def _money(value) -> Decimal:
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return round_money(value)


def signed_balance(normal_balance: NormalBalance | str, debit: Decimal, credit: Decimal) -> Decimal:
    """Balance on the account's normal side."""
    if normal_balance == NormalBalance.DEBIT:
        return debit - credit
    return credit - debit


class TrialBalanceAggregator(BaseSelector[JournalLine]):
    """
    Read-only aggregation over the posted journal.

    Contract:
        Results reflect whatever is committed (or flushed in this session)
        at query time; a report taken mid-batch may simply include fewer
        postings.

    Non-goals:
        - No closing entries, no period locks, no multi-currency.
    """

    def __init__(self, session: Session):
        super().__init__(session)

    def _posted_sums(self, as_of_date: date | None):
        query = (
            select(
                JournalLine.account_id.label("account_id"),
                func.sum(JournalLine.debit_amount).label("debit_total"),
                func.sum(JournalLine.credit_amount).label("credit_total"),
            )
            .join(JournalEntry, JournalLine.journal_entry_id == JournalEntry.id)
            .where(JournalEntry.status.in_(POSTED_STATUSES))
            .group_by(JournalLine.account_id)
        )
        if as_of_date is not None:
            query = query.where(JournalEntry.entry_date <= as_of_date)
        return query

    def generate_trial_balance(
        self,
        as_of_date: date,
        include_zero_balances: bool = True,
    ) -> TrialBalance:
        """
        Trial balance as of the end of ``as_of_date``.

        Every account appears (active or not) ordered by code, unless
        ``include_zero_balances`` is False, in which case accounts with no
        posted activity up to the date are left out.

        Args:
            as_of_date: Cutoff date (inclusive).
            include_zero_balances: Keep accounts with zero debit and credit.

        Returns:
            TrialBalance with one row per account and ledger-wide totals.
        """
        sums = self._posted_sums(as_of_date).subquery()
        query = (
            select(Account, sums.c.debit_total, sums.c.credit_total)
            .outerjoin(sums, sums.c.account_id == Account.id)
            .order_by(Account.code)
        )

        rows: list[TrialBalanceRow] = []
        total_debit = ZERO
        total_credit = ZERO
        for account, debit_total, credit_total in self.session.execute(query).all():
            debit = _money(debit_total)
            credit = _money(credit_total)
            total_debit += debit
            total_credit += credit
            if not include_zero_balances and debit == 0 and credit == 0:
                continue
            rows.append(
                TrialBalanceRow(
                    account_id=account.id,
                    code=account.code,
                    name=account.name,
                    account_type=getattr(account.account_type, "value", account.account_type),
                    normal_balance=getattr(account.normal_balance, "value", account.normal_balance),
                    debit=debit,
                    credit=credit,
                    balance=signed_balance(account.normal_balance, debit, credit),
                )
            )

        total_debit = round_money(total_debit)
        total_credit = round_money(total_credit)
        balanced = total_debit == total_credit
        report = TrialBalance(
            as_of_date=as_of_date,
            rows=tuple(rows),
            total_debit=total_debit,
            total_credit=total_credit,
            is_balanced=balanced,
        )

        logger.info(
            "trial_balance_generated",
            extra={
                "as_of_date": as_of_date,
                "account_count": len(rows),
                "total_debit": total_debit,
                "total_credit": total_credit,
                "is_balanced": balanced,
            },
        )
        if not balanced:
            logger.warning(
                "trial_balance_imbalanced",
                extra={
                    "as_of_date": as_of_date,
                    "total_debit": total_debit,
                    "total_credit": total_credit,
                    "difference": report.difference,
                },
            )
        return report

    def account_balance(
        self,
        account_id: UUID | str,
        as_of_date: date | None = None,
    ) -> TrialBalanceRow:
        """
        Balance of a single account.

        Raises:
            AccountNotFoundError: If the account does not exist.
        """
        account_uuid = account_id
        if not isinstance(account_id, UUID):
            try:
                account_uuid = UUID(str(account_id))
            except ValueError as exc:
                raise AccountNotFoundError(str(account_id)) from exc
        account = self.session.get(Account, account_uuid)
        if account is None:
            raise AccountNotFoundError(str(account_id))

        sums = self._posted_sums(as_of_date).where(JournalLine.account_id == account.id)
        row = self.session.execute(sums).one_or_none()
        debit = _money(row.debit_total) if row else ZERO
        credit = _money(row.credit_total) if row else ZERO
        return TrialBalanceRow(
            account_id=account.id,
            code=account.code,
            name=account.name,
            account_type=getattr(account.account_type, "value", account.account_type),
            normal_balance=getattr(account.normal_balance, "value", account.normal_balance),
            debit=debit,
            credit=credit,
            balance=signed_balance(account.normal_balance, debit, credit),
        )
