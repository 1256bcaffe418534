"""Currency formatting helpers for Mesa POS.

Amounts are stored as integer cents everywhere in the ledger. Receipts,
tickets and the command line show them with the business currency code and
two decimals, grouped by thousands.
"""

from __future__ import annotations

from ..core.money import cents_to_money


def format_amount(amount_cents: int | float | None, currency: str = "HNL") -> str:
    """Return ``"HNL 1,234.50"`` style text for an amount in cents."""

    amount = cents_to_money(amount_cents or 0)
    sign = "-" if amount < 0 else ""
    display = f"{abs(amount):,.2f}"
    if currency:
        return f"{currency} {sign}{display}"
    return f"{sign}{display}"


def amount_value(amount_cents: int | float | None) -> str:
    """Shorthand formatter that omits the currency label."""

    return format_amount(amount_cents, currency="").strip()
