"""Utility functions for consistent percent/decimal and money conversions."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

ZERO = Decimal('0')
CENT = Decimal('0.01')
HUNDRED = Decimal('100')


def to_decimal(value: Any, default: Optional[Decimal] = ZERO) -> Optional[Decimal]:
    """
    Coerce a storage value (text, int, float, Decimal, None) to Decimal.

    Empty strings and None return ``default``. Floats go through ``str`` so
    0.1 stays 0.1 instead of its binary expansion.
    """
    if value is None:
        return default
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise InvalidOperation(f"Boolean is not a numeric value: {value!r}")
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))
    text = str(value).strip().replace(',', '')
    if not text:
        return default
    return Decimal(text)


def round_money(value: Decimal) -> Decimal:
    """Round to 2 decimals, half away from zero."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def round_whole(value: Decimal) -> Decimal:
    """Round to a whole number, half away from zero."""
    return value.quantize(Decimal('1'), rounding=ROUND_HALF_UP)


def clamp(value: Decimal, lower: Decimal, upper: Decimal) -> Decimal:
    return max(lower, min(upper, value))


def decimal_to_percentage(value: Optional[Decimal]) -> Decimal:
    """
    Convert decimal fraction (0.05) to whole percentage (5.0).
    """
    return to_decimal(value) * HUNDRED


def percentage_to_decimal(value: Optional[Decimal]) -> Decimal:
    """
    Convert whole percentage (5.0) to decimal fraction (0.05).
    """
    return to_decimal(value) / HUNDRED


def format_percent(value: Optional[Decimal]) -> str:
    """Render a fraction as a whole percent string ("25%")."""
    if value is None:
        return 'n/a'
    return f"{round_whole(decimal_to_percentage(value))}%"
