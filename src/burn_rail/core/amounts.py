"""
Token amount conversion.

Amounts cross API boundaries as Decimal token quantities and are stored as
integer base units so sums and splits are exact.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Union

from .errors import InvalidAmount

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    """Convert a number to Decimal, going through str for floats."""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidAmount(f"Not a number: {value!r}")


def to_base_units(amount: Number, decimals: int) -> int:
    """Token quantity -> integer base units (rounded half up)."""
    quantum = Decimal(1).scaleb(-decimals)
    scaled = to_decimal(amount).quantize(quantum, rounding=ROUND_HALF_UP)
    return int(scaled.scaleb(decimals))


def from_base_units(units: int, decimals: int) -> Decimal:
    """Integer base units -> token quantity."""
    return Decimal(int(units)).scaleb(-decimals)


def split_settlement(total_units: int) -> tuple[int, int]:
    """
    Split a settlement total into (burn, treasury).

    Burn is half the total rounded down; treasury gets the remainder so the
    two always sum to the total.
    """
    burn = total_units // 2
    return burn, total_units - burn
