"""
Property-based tests for the ledger invariants.

Boundaries fuzzed here:
- Money rounding: half-up to cents, idempotent
- Depreciation schedule: lifetime total equals the depreciable base and
  accumulated depreciation never overshoots it
- Posting: any balanced entry keeps the trial balance balanced
- Reversal: an entry and its reversal net to zero on every account
"""

from datetime import date
from decimal import Decimal

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from school_ledger.domain import depreciation as calc
from school_ledger.domain.dtos import LineSpec
from school_ledger.domain.money import ZERO, round_money

DEBIT_CODES = ("1110", "1120", "1130", "5100", "5200", "5300")
CREDIT_CODES = ("4100", "4200", "2110")

DB_SETTINGS = settings(
    max_examples=25,
    deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture],
)


def cents(min_value: int = 1, max_value: int = 10**11):
    return st.integers(min_value=min_value, max_value=max_value).map(lambda c: Decimal(c) / 100)


# =============================================================================
# Pure domain properties
# =============================================================================


@given(st.decimals(min_value=-(10**9), max_value=10**9, allow_nan=False, allow_infinity=False, places=6))
def test_round_money_idempotent(value):
    once = round_money(value)
    assert round_money(once) == once
    assert abs(once - value) <= Decimal("0.005")


@settings(deadline=None)
@given(
    price=cents(),
    residual_share=st.integers(min_value=0, max_value=99),
    life=st.integers(min_value=1, max_value=40),
)
def test_full_life_schedule_sums_to_base(price, residual_share, life):
    residual = round_money(price * residual_share / 100)
    base = price - residual
    monthly = calc.straight_line_monthly(price, residual, life)

    accumulated = ZERO
    for elapsed in range(life * 12):
        charge = calc.period_charge(
            purchase_price=price,
            residual_value=residual,
            accumulated_depreciation=accumulated,
            monthly_amount=monthly,
            periods_elapsed=elapsed,
            useful_life_years=life,
        )
        assert charge >= 0
        accumulated += charge
        assert accumulated <= base

    assert accumulated == base
    assert calc.period_charge(
        purchase_price=price,
        residual_value=residual,
        accumulated_depreciation=accumulated,
        monthly_amount=monthly,
        periods_elapsed=life * 12,
        useful_life_years=life,
    ) == ZERO


@settings(deadline=None)
@given(
    price=cents(max_value=10**8),
    rate=st.integers(min_value=1, max_value=100).map(Decimal),
)
def test_rate_schedule_never_overshoots(price, rate):
    monthly = calc.monthly_depreciation(price, ZERO, None, rate)

    accumulated = ZERO
    for _ in range(5000):
        charge = calc.period_charge(
            purchase_price=price,
            residual_value=ZERO,
            accumulated_depreciation=accumulated,
            monthly_amount=monthly,
        )
        if charge == 0:
            break
        accumulated += charge
        assert accumulated <= price

    assert accumulated == price


# =============================================================================
# Posting properties
# =============================================================================


@st.composite
def balanced_lines(draw):
    amounts = draw(st.lists(cents(max_value=10**8), min_size=1, max_size=6))
    debits = [
        LineSpec.debit_line(draw(st.sampled_from(DEBIT_CODES)), amount) for amount in amounts
    ]
    credit_code = draw(st.sampled_from(CREDIT_CODES))
    return debits + [LineSpec.credit_line(credit_code, sum(amounts, ZERO))]


@DB_SETTINGS
@given(lines=balanced_lines())
def test_balanced_entry_keeps_trial_balance_balanced(poster, aggregator, default_chart, lines):
    before = aggregator.generate_trial_balance(date(2024, 12, 31))

    poster.create_and_post(date(2024, 6, 1), "Fuzzed entry", lines)

    after = aggregator.generate_trial_balance(date(2024, 12, 31))
    posted_total = sum((line.debit for line in lines if line.debit), ZERO)
    assert after.is_balanced
    assert after.total_debit == before.total_debit + posted_total


@DB_SETTINGS
@given(lines=balanced_lines())
def test_reversal_nets_to_zero(poster, aggregator, default_chart, lines):
    codes = {line.account for line in lines}
    before = {code: aggregator.account_balance(default_chart[code].id).balance for code in codes}

    entry = poster.create_and_post(date(2024, 6, 1), "Fuzzed entry", lines)
    poster.reverse_entry(entry.id, "Fuzzed reversal")

    for code in codes:
        assert aggregator.account_balance(default_chart[code].id).balance == before[code]
    assert aggregator.generate_trial_balance(date(2024, 12, 31)).is_balanced
