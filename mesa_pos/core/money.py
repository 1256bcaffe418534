"""Helpers for working with money stored as integer cents."""
from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

_DECIMAL_2_PLACES = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Convert *value* to a :class:`~decimal.Decimal` rounded to two places."""
    if isinstance(value, Decimal):
        quantized = value
    else:
        quantized = Decimal(str(value))
    return quantized.quantize(_DECIMAL_2_PLACES, rounding=ROUND_HALF_UP)


def cents_to_money(cents: int | float | str | Decimal | None) -> Decimal:
    if cents is None:
        return Decimal("0.00")
    return to_money(Decimal(cents) / Decimal(100))


def money_to_cents(value: Any) -> int:
    """Parse an operator-entered amount ("12.50") into integer cents."""
    try:
        amount = to_money(value)
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise ValueError(f"invalid amount: {value!r}") from exc
    return int(amount * Decimal(100))


def to_percent(value: Any) -> Decimal:
    try:
        pct = Decimal(str(value if value not in (None, "") else "0"))
    except (InvalidOperation, ValueError):
        return Decimal("0")
    return pct if pct > 0 else Decimal("0")


def percent_of(cents: int, pct: Any) -> int:
    """Flat percentage of *cents*, rounded half-up to the cent."""
    share = Decimal(int(cents)) * to_percent(pct) / Decimal(100)
    return int(share.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
