from datetime import datetime

import pytest

from mesa_pos.core.bus import bus
from mesa_pos.core.db import db_transaction, setting_set
from mesa_pos.core.errors import (
    AlreadySettledError,
    LineItemNotFoundError,
    ReconciliationError,
    ValidationError,
)
from mesa_pos.core.outbox import outbox
from mesa_pos.services.settlement import SettlementProcessor, normalize_payment_method

from conftest import count_rows


@pytest.fixture
def tab(pos, menu):
    table = pos.tables.occupy(menu["Mesa 2"])
    burger = pos.ledger.add_item(table.name, 7, menu["Baleada"], 2)
    coffee = pos.ledger.add_item(table.name, 7, menu["Cafe"], 1)
    return table, burger, coffee


def test_settle_marks_paid_and_releases_table(pos, tab):
    table, burger, coffee = tab
    result = pos.settlement.settle(table.name, [burger.id, coffee.id], "cash", cashier="ana")

    assert {i.status for i in result.items} == {"paid"}
    assert {i.payment_method for i in result.items} == {"cash"}
    assert len({i.invoice_number for i in result.items}) == 1
    assert result.invoice_number.endswith("7")
    assert result.subtotal_cents == 8000
    assert result.total_cents == 8000
    assert result.table_released is True
    assert pos.tables.get(table.id).available is True
    for item in (burger, coffee):
        stored = pos.ledger.get(item.id)
        assert stored.status == "paid"
        assert stored.invoice_number == result.invoice_number
        assert stored.paid_at is not None


def test_settle_reuses_invoice_on_first_item(pos, tab):
    table, burger, coffee = tab
    with db_transaction() as conn:
        conn.execute("UPDATE sale_line_items SET invoice_number='2401017' WHERE id=?", (burger.id,))
    result = pos.settlement.settle(table.name, [burger.id, coffee.id], "card")
    assert result.invoice_number == "2401017"
    assert pos.ledger.get(coffee.id).invoice_number == "2401017"


def test_minted_invoice_uses_order_number_and_date(pos, menu):
    clock = lambda: datetime(2024, 10, 19, 12, 0)  # noqa: E731
    item = pos.ledger.add_item("Cliente", 7, menu["Cafe"], 1, order_type="takeout")
    processor = SettlementProcessor(ledger=pos.ledger, tables=pos.tables, clock=clock)
    assert processor.settle("Cliente", [item.id], "cash").invoice_number == "2410197"


def test_partial_settlement_keeps_table_occupied(pos, tab):
    table, burger, coffee = tab
    result = pos.settlement.settle(table.name, [burger.id], "cash")
    assert result.table_released is False
    assert pos.tables.get(table.id).available is False
    assert [i.id for i in pos.ledger.list_open_items(table.name)] == [coffee.id]

    result = pos.settlement.settle(table.name, [coffee.id], "cash")
    assert result.table_released is True


def test_retry_of_settled_lines_is_rejected(pos, tab):
    table, burger, coffee = tab
    pos.settlement.settle(table.name, [burger.id, coffee.id], "cash")
    audit_before = count_rows("audit_log", "action='tab_settle'")

    with pytest.raises(AlreadySettledError) as err:
        pos.settlement.settle(table.name, [burger.id, coffee.id], "cash")
    assert err.value.line_item_ids == sorted([burger.id, coffee.id])
    assert count_rows("audit_log", "action='tab_settle'") == audit_before


def test_validation_failures_write_nothing(pos, tab):
    table, burger, coffee = tab
    with pytest.raises(ValidationError):
        pos.settlement.settle(table.name, [], "cash")
    with pytest.raises(ValidationError):
        pos.settlement.settle(table.name, [burger.id], "")
    with pytest.raises(ValidationError):
        pos.settlement.settle(table.name, [burger.id], "bitcoin")
    with pytest.raises(LineItemNotFoundError):
        pos.settlement.settle(table.name, [burger.id, 9999], "cash")
    with pytest.raises(ValidationError, match="do not belong"):
        pos.settlement.settle("Mesa 10", [burger.id], "cash")
    assert count_rows("sale_line_items", "status='pending'") == 2
    assert pos.tables.get(table.id).available is False


def test_mixed_state_is_reported_as_reconciliation_error(pos, tab, monkeypatch):
    table, burger, coffee = tab
    real_mark_paid = SettlementProcessor._mark_paid

    def coffee_voided_meanwhile(self, conn, line_id, *args):
        if line_id == coffee.id:
            conn.execute("UPDATE sale_line_items SET status='cancelled' WHERE id=?", (line_id,))
        return real_mark_paid(self, conn, line_id, *args)

    monkeypatch.setattr(SettlementProcessor, "_mark_paid", coffee_voided_meanwhile)

    with pytest.raises(ReconciliationError) as err:
        pos.settlement.settle(table.name, [burger.id, coffee.id], "cash")

    assert err.value.settled_ids == [burger.id]
    assert err.value.unsettled_ids == [coffee.id]
    assert str(coffee.id) in err.value.message
    assert pos.ledger.get(burger.id).status == "paid"
    assert pos.tables.get(table.id).available is False


def test_totals_apply_tip_and_tax_half_up(pos, tab):
    table, burger, coffee = tab
    setting_set("tip_pct", "10")
    setting_set("tax_pct", "15.5")
    preview = pos.settlement.preview(table.name)
    assert preview.subtotal_cents == 8000
    assert preview.tip_cents == 800
    assert preview.tax_cents == 1240
    assert preview.total_cents == 10040
    assert count_rows("sale_line_items", "status='pending'") == 2

    result = pos.settlement.settle_tab(table.name, "Tarjeta")
    assert result.payment_method == "card"
    assert result.total_cents == 10040


def test_percentages_round_half_up_to_the_cent(pos, menu):
    setting_set("tax_pct", "12.5")
    item = pos.ledger.add_item("Cliente", 1, menu["Cafe"], 1, order_type="takeout")
    with db_transaction() as conn:
        conn.execute("UPDATE sale_line_items SET unit_price_cents=1, total_cents=1 WHERE id=?", (item.id,))
    assert pos.settlement.preview("Cliente").tax_cents == 0
    with db_transaction() as conn:
        conn.execute("UPDATE sale_line_items SET unit_price_cents=4, total_cents=4 WHERE id=?", (item.id,))
    # 4 * 12.5% = 0.5 cents -> 1
    assert pos.settlement.preview("Cliente").tax_cents == 1


def test_settle_tab_with_nothing_pending(pos, menu):
    with pytest.raises(ValidationError):
        pos.settlement.settle_tab("Mesa 1", "cash")


def test_takeout_settlement_does_not_touch_tables(pos, menu):
    item = pos.ledger.add_item("Maria", 3, menu["Cafe"], 1, order_type="takeout")
    result = pos.settlement.settle("Maria", [item.id], "online")
    assert result.table_released is False
    assert all(t.available for t in pos.tables.list_tables())


def test_settled_event_goes_through_outbox(pos, tab):
    table, burger, coffee = tab
    seen = []
    bus.subscribe("tab_settled", lambda result: seen.append(result.invoice_number))
    result = pos.settlement.settle_tab(table.name, "cash")
    assert outbox.drain()
    assert seen == [result.invoice_number]


@pytest.mark.parametrize(
    "raw, expected",
    [("cash", "cash"), ("CARD", "card"), ("Efectivo", "cash"), ("tarjeta", "card"), ("PayPal", "online")],
)
def test_payment_method_aliases(raw, expected):
    assert normalize_payment_method(raw) == expected
