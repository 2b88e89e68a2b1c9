"""
Money helpers shared by every layer, so precision and rounding are defined
in exactly one place.

Every amount that enters the ledger is a ``Decimal`` with at most two
fractional digits.  Floats are never accepted.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from school_ledger.exceptions import InvalidAmountError

MONEY_DECIMAL_PLACES = 2
CENT = Decimal("0.01")
ZERO = Decimal("0.00")
DEFAULT_ROUNDING = ROUND_HALF_UP


def money_from_str(value: str) -> Decimal:
    """
    Create a Money value from string.

    Raises:
        InvalidAmountError: If value cannot be converted to Decimal.
    """
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise InvalidAmountError(value, "not a decimal number") from exc


def round_money(value: Decimal, rounding: str = DEFAULT_ROUNDING) -> Decimal:
    """
    Round a monetary value to the currency's smallest unit (cents).

    This is the only rounding function used for financial values; every
    computed amount (depreciation, aggregates) passes through here.
    """
    return value.quantize(CENT, rounding=rounding)


def to_money(value: object, *, allow_negative: bool = False) -> Decimal:
    """
    Validate and normalize an input amount to a 2-place Decimal.

    Accepts ``Decimal``, ``int`` and numeric strings.  Rejects floats,
    NaN/infinity, more than two fractional digits, and (unless
    ``allow_negative``) negative values.

    Raises:
        InvalidAmountError: On any of the rejected inputs above.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise InvalidAmountError(value, "floats are not accepted for money")
    if isinstance(value, str):
        amount = money_from_str(value.strip())
    elif isinstance(value, (Decimal, int)):
        amount = Decimal(value)
    else:
        raise InvalidAmountError(value, "unsupported type")

    if not amount.is_finite():
        raise InvalidAmountError(value, "amount must be finite")
    try:
        quantized = amount.quantize(CENT)
    except InvalidOperation as exc:
        raise InvalidAmountError(value, "amount out of range") from exc
    if amount != quantized:
        raise InvalidAmountError(value, "at most 2 decimal places allowed")
    if amount < 0 and not allow_negative:
        raise InvalidAmountError(value, "amount must not be negative")
    return quantized
