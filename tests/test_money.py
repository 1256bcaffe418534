from decimal import Decimal

import pytest

from mesa_pos.core.money import cents_to_money, money_to_cents, percent_of, to_money, to_percent
from mesa_pos.utils.currency import amount_value, format_amount


def test_to_money_rounds_half_up():
    assert to_money("1.005") == Decimal("1.01")
    assert to_money(2) == Decimal("2.00")


def test_cents_conversions():
    assert cents_to_money(1250) == Decimal("12.50")
    assert cents_to_money(None) == Decimal("0.00")
    assert money_to_cents("12.50") == 1250
    assert money_to_cents(3) == 300
    with pytest.raises(ValueError):
        money_to_cents("doce")


def test_percentages():
    assert to_percent("") == Decimal("0")
    assert to_percent("-5") == Decimal("0")
    assert to_percent("abc") == Decimal("0")
    assert percent_of(8000, "15") == 1200
    assert percent_of(5, "10") == 1
    assert percent_of(4, "10") == 0


def test_format_amount():
    assert format_amount(123450) == "HNL 1,234.50"
    assert format_amount(-250, "USD") == "USD -2.50"
    assert format_amount(None) == "HNL 0.00"
    assert amount_value(99) == "0.99"
