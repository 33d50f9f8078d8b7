"""
Money Utilities - Safe Decimal operations for prices.

Avoids float precision issues by using Decimal throughout.
"""
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Union

# Default precision for money operations (2 decimal places)
MONEY_PRECISION = Decimal("0.01")

Number = Union[str, int, float, Decimal, None]


def to_decimal(value: Number) -> Decimal:
    """
    Convert any value to Decimal safely.

    Args:
        value: Value to convert (str, int, float, Decimal, or None)

    Returns:
        Decimal representation of the value, or Decimal("0") if None/invalid
    """
    if value is None:
        return Decimal("0")

    if isinstance(value, Decimal):
        return value

    try:
        # Convert via string to avoid float precision issues
        if isinstance(value, float):
            return Decimal(str(value))
        return Decimal(value)
    except (InvalidOperation, ValueError, TypeError):
        return Decimal("0")


def round_money(value: Number) -> Decimal:
    """Round a monetary value to cents."""
    return to_decimal(value).quantize(MONEY_PRECISION, rounding=ROUND_HALF_UP)


def multiply(a: Number, b: Number) -> Decimal:
    """Multiply two values as Decimals."""
    return to_decimal(a) * to_decimal(b)


def to_float(value: Number) -> float:
    """
    Convert Decimal to float for JSON serialization.

    Only call this at the response boundary.
    """
    return float(round_money(value))


def relative_change(old: Number, new: Number) -> Decimal:
    """
    Relative change from old to new, as an absolute fraction.

    A change away from a zero price has no finite ratio and is reported as
    Decimal("Infinity"); no change is always Decimal("0").
    """
    old_value = to_decimal(old)
    new_value = to_decimal(new)
    if old_value == new_value:
        return Decimal("0")
    if old_value == 0:
        return Decimal("Infinity")
    return abs(new_value - old_value) / abs(old_value)
