from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

"""
Money handling.

- Authoritative storage is integer cents (exact, two fractional digits).
- Decimal is only used at the edges: parsing input, applying the delivery
  markup and rendering "1234.50" strings. Floats are never accumulated.
"""

CENT = Decimal("0.01")


def to_cents(value) -> int:
    """
    Parse a money value into integer cents (half-up to the nearest cent).

    Accepts int (whole currency units), Decimal, or a decimal string.
    Floats are routed through str() so 0.1 stays 0.10, not 0.1000000000000000055.
    """
    if isinstance(value, bool):
        raise ValueError("amount must be a number")
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value) if not isinstance(value, Decimal) else value
    except (InvalidOperation, TypeError, ValueError):
        raise ValueError(f"invalid amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"invalid amount: {value!r}")
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    return (Decimal(int(cents)) / 100).quantize(CENT)


def format_cents(cents: int | None) -> str | None:
    if cents is None:
        return None
    return str(from_cents(cents))


def apply_markup(cents: int, markup) -> int:
    """cents * markup, rounded half-up to a whole cent."""
    factor = markup if isinstance(markup, Decimal) else Decimal(str(markup))
    return int((Decimal(int(cents)) * factor).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
