"""
Monetary Amount Module

Normalises monetary input to a two-place fixed-point Decimal.
NEVER keeps float values: floats are converted through their string form.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from typing import Union

from .errors import InvalidAmount

getcontext().prec = 28

AMOUNT_PRECISION = 2
QUANTUM = Decimal('0.1') ** AMOUNT_PRECISION
ZERO = Decimal('0.00')

AmountLike = Union[Decimal, int, float, str]


def to_amount(value: AmountLike, allow_negative: bool = True) -> Decimal:
    """
    Convert a value to a Decimal rounded to AMOUNT_PRECISION places.

    Args:
        value: Decimal, int, float or numeric string
        allow_negative: when False, any value below zero is refused,
            including ones that would round to 0.00

    Returns:
        Quantised Decimal amount (sign preserved)

    Raises:
        InvalidAmount: value is not numeric, not finite, negative when
            negatives are refused, or too large to represent
    """
    if isinstance(value, bool):
        raise InvalidAmount(f"Amount must be numeric, got {value!r}", value)

    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float, str)):
        try:
            amount = Decimal(str(value).strip())
        except InvalidOperation:
            raise InvalidAmount(f"Amount must be numeric, got {value!r}", value)
    else:
        raise InvalidAmount(f"Amount must be numeric, got {value!r}", value)

    if not amount.is_finite():
        raise InvalidAmount(f"Amount must be finite, got {value!r}", value)

    if not allow_negative and amount < 0:
        raise InvalidAmount(f"Amount cannot be negative, got {value!r}", value)

    try:
        amount = amount.quantize(QUANTUM, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise InvalidAmount(f"Amount out of range, got {value!r}", value)

    # -0.00 would otherwise serialize with a sign
    if amount.is_zero():
        return ZERO
    return amount


def format_amount(amount: Decimal) -> str:
    """Render an amount with exactly AMOUNT_PRECISION decimals"""
    return f"{amount:.{AMOUNT_PRECISION}f}"
