"""Conversion between integer minor units (cents) and display amounts.

Every persisted monetary value is an integer count of minor units. Display
amounts only exist at the edges, where operators type ``12.50`` and expect to
read ``12.50`` back.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

MINOR_UNITS_PER_MAJOR = 100
_CENT = Decimal("0.01")


def to_minor_units(amount: Decimal | str | int | float) -> int:
    try:
        value = Decimal(str(amount))
    except InvalidOperation as exc:
        raise ValueError(f"invalid monetary amount: {amount!r}") from exc
    if not value.is_finite():
        raise ValueError(f"invalid monetary amount: {amount!r}")
    return int((value * MINOR_UNITS_PER_MAJOR).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def to_major_units(minor: int) -> Decimal:
    return (Decimal(minor) / MINOR_UNITS_PER_MAJOR).quantize(_CENT)


def format_minor_units(minor: int) -> str:
    return f"{to_major_units(minor):.2f}"
