"""
Decimal and Money Calculation Utilities
========================================

Fixed-point money arithmetic with an explicit rounding policy (ROUND_HALF_UP
to two decimal places). Amounts are always Decimal; floats are converted
through ``str`` so 0.1 stays 0.1.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

TWO_PLACES = Decimal('0.01')
ZERO = Decimal('0.00')
MINOR_UNITS = 100


def to_decimal(value) -> Decimal:
    """Convert int/float/str/Decimal to Decimal. None becomes 0."""
    if value is None or value == '':
        return Decimal('0')
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(amount, places: Decimal = TWO_PLACES) -> Decimal:
    """
    Round amount to two decimal places using round-half-up

    Example:
        >>> round_money('136.3635')
        Decimal('136.36')
        >>> round_money('0.005')
        Decimal('0.01')
    """
    if amount is None:
        return ZERO
    return to_decimal(amount).quantize(places, rounding=ROUND_HALF_UP)


def to_minor_units(amount) -> int:
    """Convert a money amount to integer cents (rounded half-up first)."""
    return int(round_money(amount) * MINOR_UNITS)


def from_minor_units(minor: int) -> Decimal:
    return (Decimal(minor) / MINOR_UNITS).quantize(TWO_PLACES)


def split_evenly(total, parts: int) -> List[Decimal]:
    """
    Split ``total`` into ``parts`` amounts that sum to it exactly.

    base = floor(total / parts) in cents; the remaining cents go one at a
    time to the first entries, so amounts differ by at most one cent.

    Example:
        >>> split_evenly('100.00', 3)
        [Decimal('33.34'), Decimal('33.33'), Decimal('33.33')]
    """
    if parts <= 0:
        raise ValueError(f"parts must be positive, got: {parts}")

    total_minor = to_minor_units(total)
    base, remainder = divmod(total_minor, parts)
    return [
        from_minor_units(base + 1 if index < remainder else base)
        for index in range(parts)
    ]


def safe_divide(numerator, denominator, default: Decimal = ZERO) -> Decimal:
    """Unrounded division returning ``default`` when the denominator is zero."""
    denominator = to_decimal(denominator)
    if denominator == 0:
        return default
    return to_decimal(numerator) / denominator


def percentage_change(current, previous, places: Decimal = Decimal('0.1')) -> Optional[Decimal]:
    """(current - previous) / previous * 100, or None when previous is zero."""
    previous = to_decimal(previous)
    if previous == 0:
        return None
    change = (to_decimal(current) - previous) / previous * 100
    return change.quantize(places, rounding=ROUND_HALF_UP)


def within_tolerance(left, right, tolerance=TWO_PLACES) -> bool:
    """True when two amounts differ by at most one minor unit."""
    return abs(to_decimal(left) - to_decimal(right)) <= to_decimal(tolerance)
