"""Decimal money helpers.

Amounts travel through the application as ``Decimal`` with two places and
are stored as integer cents.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

CENT = Decimal("0.01")
# Largest amount the 32-bit cents columns hold.
MAX_CENTS = 2**31 - 1


def to_decimal(value: Any) -> Decimal:
    """
    Convert a user supplied amount to a two-place ``Decimal``.

    Floats go through ``str`` so that ``19.99`` stays ``19.99``. Amounts are
    never rounded: more than two decimal places is an error.

    Raises:
        ValueError: If the value is not a finite number, has sub-cent
            precision or exceeds the storable range
    """
    if isinstance(value, bool) or value is None:
        raise ValueError(f"Not a monetary amount: {value!r}")

    if isinstance(value, float):
        value = str(value)

    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError):
        raise ValueError(f"Not a monetary amount: {value!r}")

    if not amount.is_finite():
        raise ValueError(f"Not a monetary amount: {value!r}")

    if abs(amount) * 100 > MAX_CENTS:
        raise ValueError(f"Amount out of range: {value!r}")

    quantized = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    if quantized != amount:
        raise ValueError(f"Amounts cannot have more than 2 decimal places: {value!r}")

    return quantized


def optional_decimal(value: Any) -> Optional[Decimal]:
    """Like ``to_decimal`` but passes ``None`` and empty strings through."""
    if value is None or value == "":
        return None
    return to_decimal(value)


def to_cents(amount: Decimal) -> int:
    """Convert a ``Decimal`` amount to integer cents."""
    return int((amount.quantize(CENT, rounding=ROUND_HALF_UP) * 100).to_integral_value())


def from_cents(cents: Optional[int]) -> Optional[Decimal]:
    """Convert integer cents back to a two-place ``Decimal``."""
    if cents is None:
        return None
    return (Decimal(cents) / 100).quantize(CENT)
