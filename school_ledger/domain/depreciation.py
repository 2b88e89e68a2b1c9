"""
Straight-line depreciation math.

Pure functions: no session, no clock, no I/O.  Called by DepreciationEngine
and directly by tests.

Every amount is a ``Decimal`` rounded to cents through ``round_money``.
The monthly charge is never allowed to push accumulated depreciation past
the depreciable base, and the final period of an asset's useful life
absorbs whatever rounding remainder is left so the lifetime total equals
``purchase_price - residual_value`` exactly.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from school_ledger.domain.money import CENT, ZERO, round_money
from school_ledger.exceptions import InvalidPeriodError

MONTHS_PER_YEAR = 12
MIN_PERIOD_YEAR = 1900
MAX_PERIOD_YEAR = 9999


def validate_period(year: int, month: int) -> None:
    """
    Raises:
        InvalidPeriodError: If year or month is not a plausible calendar period.
    """
    if isinstance(year, bool) or not isinstance(year, int):
        raise InvalidPeriodError(year, month)
    if isinstance(month, bool) or not isinstance(month, int):
        raise InvalidPeriodError(year, month)
    if not (MIN_PERIOD_YEAR <= year <= MAX_PERIOD_YEAR) or not (1 <= month <= 12):
        raise InvalidPeriodError(year, month)


def period_start(year: int, month: int) -> date:
    """Accounting date of a monthly depreciation posting (first of month)."""
    validate_period(year, month)
    return date(year, month, 1)


def period_key(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def straight_line_monthly(
    purchase_price: Decimal,
    residual_value: Decimal,
    useful_life_years: int,
) -> Decimal:
    """
    Monthly straight-line charge: (price - residual) / years / 12.

    Returns ``ZERO`` for a non-positive useful life or depreciable base.
    """
    if not useful_life_years or useful_life_years <= 0:
        return ZERO
    base = purchase_price - residual_value
    if base <= 0:
        return ZERO
    return round_money(base / Decimal(useful_life_years) / MONTHS_PER_YEAR)


def rate_based_monthly(purchase_price: Decimal, annual_rate_percent: Decimal) -> Decimal:
    """Monthly charge from an annual percentage of the purchase price."""
    if annual_rate_percent is None or annual_rate_percent <= 0:
        return ZERO
    return round_money(purchase_price * annual_rate_percent / 100 / MONTHS_PER_YEAR)


def monthly_depreciation(
    purchase_price: Decimal,
    residual_value: Decimal,
    useful_life_years: int | None,
    depreciation_rate: Decimal | None = None,
) -> Decimal:
    """
    Nominal monthly charge for an asset.

    Useful life wins when both are present; the annual rate is only a
    fallback for assets recorded without a useful life.
    """
    if useful_life_years and useful_life_years > 0:
        return straight_line_monthly(purchase_price, residual_value, useful_life_years)
    if depreciation_rate is not None:
        return rate_based_monthly(purchase_price, depreciation_rate)
    return ZERO


def period_charge(
    *,
    purchase_price: Decimal,
    residual_value: Decimal,
    accumulated_depreciation: Decimal,
    monthly_amount: Decimal,
    periods_elapsed: int = 0,
    useful_life_years: int | None = None,
) -> Decimal:
    """
    Amount to charge for the next period.

    - Never more than the remaining depreciable base.
    - The last month of the useful life takes the full remainder.
    - A positive remainder is never charged less than one cent, so a tiny
      base still runs out instead of stalling at zero.

    Returns ``ZERO`` when nothing is left to depreciate, or when the asset
    has neither a useful life nor a positive monthly amount.
    """
    remaining = (purchase_price - residual_value) - accumulated_depreciation
    if remaining <= 0:
        return ZERO
    if monthly_amount <= 0 and not useful_life_years:
        return ZERO

    amount = monthly_amount if monthly_amount > CENT else CENT
    if useful_life_years and periods_elapsed + 1 >= useful_life_years * MONTHS_PER_YEAR:
        amount = remaining
    return round_money(min(amount, remaining))


def book_value(purchase_price: Decimal, accumulated_depreciation: Decimal) -> Decimal:
    return round_money(purchase_price - accumulated_depreciation)


def annual_projection(
    *,
    purchase_price: Decimal,
    residual_value: Decimal,
    accumulated_depreciation: Decimal,
    monthly_amount: Decimal,
) -> Decimal:
    """Twelve nominal months, capped by what is left to depreciate."""
    remaining = (purchase_price - residual_value) - accumulated_depreciation
    if remaining <= 0 or monthly_amount <= 0:
        return ZERO
    return round_money(min(monthly_amount * MONTHS_PER_YEAR, remaining))
