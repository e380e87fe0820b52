# mlm_engine/utils/money.py
"""
Exact currency arithmetic.

All amounts are Decimal values with two places. Calculations that divide or
apply percentages run on integer cents and truncate toward zero, so every
share is exact to the cent and the platform keeps whatever is left over.
"""
from decimal import Decimal, ROUND_DOWN, InvalidOperation
from typing import Tuple, Union

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

MoneyInput = Union[Decimal, int, str]


def to_money(value: MoneyInput) -> Decimal:
    """
    Parse a money value into a two-place Decimal.

    Floats are refused because they cannot represent most cent values exactly.

    Raises:
        ValueError: If the value is a float, not a number, or has sub-cent precision
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise ValueError(f"Money values must be Decimal, int or str, got {type(value).__name__}")

    try:
        amount = Decimal(str(value).strip()) if not isinstance(value, Decimal) else value
    except InvalidOperation:
        raise ValueError(f"Not a money value: {value!r}")

    if not amount.is_finite():
        raise ValueError(f"Not a money value: {value!r}")

    quantized = amount.quantize(CENT)
    if quantized != amount:
        raise ValueError(f"Money value has more than two decimal places: {value!r}")

    return quantized


def to_cents(amount: Decimal) -> int:
    """Convert a Decimal amount to integer cents (exact)."""
    if isinstance(amount, float):
        raise ValueError(f"Money values must not be floats: {amount!r}")
    cents = Decimal(amount) * 100
    if cents != cents.to_integral_value():
        raise ValueError(f"Amount {amount} is not a whole number of cents")
    return int(cents)


def from_cents(cents: int) -> Decimal:
    """Convert integer cents to a two-place Decimal."""
    return (Decimal(int(cents)) / 100).quantize(CENT)


def percent_of(amount: Decimal, percentage: MoneyInput) -> Decimal:
    """
    Apply a percentage to an amount, truncating to the cent.

    Args:
        amount: Base amount
        percentage: Percentage such as 50 or "12.5"

    Returns:
        amount * percentage / 100, rounded down to the cent
    """
    pct = Decimal(str(percentage))
    if pct < 0:
        raise ValueError(f"Negative percentage: {percentage}")

    raw = Decimal(to_cents(amount)) * pct / 100
    return from_cents(int(raw.to_integral_value(rounding=ROUND_DOWN)))


def split_evenly(amount: Decimal, parts: int) -> Tuple[Decimal, Decimal]:
    """
    Split an amount into equal shares.

    Returns:
        (share, remainder) where share * parts + remainder == amount
    """
    if parts <= 0:
        raise ValueError(f"Cannot split into {parts} parts")

    share_cents, remainder_cents = divmod(to_cents(amount), parts)
    return from_cents(share_cents), from_cents(remainder_cents)


def format_money(amount: Decimal) -> str:
    return f"${amount:,.2f}"
