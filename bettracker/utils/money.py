"""
Decimal helpers for ledger amounts and derived ratios.

Ledger amounts never pass through binary floating point: inputs are
converted from their string form and results are quantized half-up.
"""
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Union

Number = Union[Decimal, int, float, str]

CENT = Decimal("0.01")
BASIS = Decimal("0.0001")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value: Number) -> Decimal:
    """
    Convert a user-facing number to Decimal.
    
    Floats go through ``str`` so 0.1 stays 0.1 instead of its binary expansion.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("bool is not a monetary value")
    if isinstance(value, float):
        value = repr(value)
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError) as e:
        raise ValueError(f"Not a decimal number: {value!r}") from e


def money(value: Number) -> Decimal:
    """Quantize to cents."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def ratio(value: Number) -> Decimal:
    """Quantize a unit/ratio figure to four places."""
    return to_decimal(value).quantize(BASIS, rounding=ROUND_HALF_UP)


def safe_divide(numerator: Decimal, denominator: Decimal, default: Decimal = ZERO) -> Decimal:
    """Division that returns ``default`` when the denominator is zero."""
    if denominator == 0:
        return default
    return numerator / denominator


def percent(numerator: Decimal, denominator: Decimal) -> Decimal:
    """``numerator / denominator * 100`` to two places, 0 on an empty denominator."""
    return money(safe_divide(numerator, denominator) * HUNDRED)
