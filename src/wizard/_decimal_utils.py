"""
Decimal utilities for price calculations.

Fees and sales tax are carried as Decimal and rounded to cents with
ROUND_HALF_UP so the quoted total matches what the customer is charged.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Union

Numeric = Union[int, float, str, Decimal]

MONEY_PLACES = Decimal("0.01")


def to_decimal(value: Numeric) -> Decimal:
    """Convert a numeric value to Decimal."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def money(value: Numeric) -> Decimal:
    """Round value to cents using ROUND_HALF_UP."""
    return to_decimal(value).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)


def percent_of(amount: Numeric, rate: Numeric) -> Decimal:
    """Charge ``rate`` (0.13 for 13%) on ``amount``, rounded to cents."""
    return money(to_decimal(amount) * to_decimal(rate))
