"""Decimal helpers shared by the calculators.

Rounding:
- Intermediate values keep full Decimal precision
- Output values are rounded half-up to the cent exactly once
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

ZERO = Decimal("0")
CENT = Decimal("0.01")


def round_to_cents(amount: Decimal) -> Decimal:
    """Round amount to 2 decimal places (cents)."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_decimal(value: object) -> Decimal:
    """Coerce a stored or user-supplied numeric value to Decimal.

    Floats go through str() so that 0.1 becomes Decimal("0.1").
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)  # type: ignore[arg-type]


def clamp_non_negative(amount: Decimal) -> Decimal:
    return amount if amount > ZERO else ZERO
