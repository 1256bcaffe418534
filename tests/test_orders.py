import pytest

from mesa_pos.core.bus import bus
from mesa_pos.core.config_store import set_config_value
from mesa_pos.core.errors import CashierNotOpenError, NotAvailableError, ProductNotFoundError, ValidationError
from mesa_pos.core.outbox import outbox
from mesa_pos.services.ledger import OrderLedger
from mesa_pos.services.orders import OrderLine, format_notes

from conftest import count_rows, stock_of


def test_format_notes():
    assert format_notes("queso", "cebolla") == "Con: queso, Sin: cebolla"
    assert format_notes(without="cebolla") == "Sin: cebolla"
    assert format_notes() == ""


def test_dine_in_order_seats_numbers_and_writes_lines(pos, menu, register):
    placed = pos.orders.place_order(
        [OrderLine(menu["Baleada"], 2, "Con: queso"), {"product_id": menu["Cafe"], "quantity": 1}],
        cashier="ana",
    )
    assert placed.occupant == "Mesa 1"
    assert placed.table.name == "Mesa 1"
    assert placed.order_number == 1
    assert placed.subtotal_cents == 8000
    assert placed.settlement is None
    assert {i.invoice_number for i in placed.items} == {placed.invoice_number}
    assert pos.tables.get(placed.table.id).available is False
    assert [i.product_name for i in pos.ledger.list_open_items("Mesa 1")] == ["Baleada", "Cafe"]


def test_duplicate_products_in_one_request_share_a_line(pos, menu, register):
    placed = pos.orders.place_order([(menu["Baleada"], 1), (menu["Baleada"], 2)])
    assert len(placed.items) == 1
    assert placed.items[0].quantity == 3


def test_bar_orders_take_a_bar_seat(pos, menu, register):
    placed = pos.orders.place_order([(menu["Cerveza"], 1)], seat_kind="bar")
    assert placed.occupant == "Barra 1"
    with pytest.raises(NotAvailableError, match="no bar seats available"):
        pos.orders.place_order([(menu["Cerveza"], 1)], seat_kind="bar")


def test_failed_seating_writes_nothing(pos, menu, register):
    pos.tables.reserve("bar")
    counters_before = count_rows("order_counters")
    with pytest.raises(NotAvailableError):
        pos.orders.place_order([(menu["Cerveza"], 1)], seat_kind="bar")
    assert count_rows("sale_line_items") == 0
    assert count_rows("order_counters") == counters_before


def test_order_requires_open_register(pos, menu):
    with pytest.raises(CashierNotOpenError):
        pos.orders.place_order([(menu["Baleada"], 1)])
    assert all(t.available for t in pos.tables.list_tables())

    set_config_value("require_open_cashier", False)
    assert pos.orders.place_order([(menu["Baleada"], 1)]).occupant == "Mesa 1"


def test_invalid_lines_are_rejected_before_seating(pos, menu, register):
    with pytest.raises(ValidationError):
        pos.orders.place_order([])
    with pytest.raises(ValidationError):
        pos.orders.place_order([(menu["Baleada"], 0)])
    with pytest.raises(ProductNotFoundError):
        pos.orders.place_order([(9999, 1)])
    with pytest.raises(ValidationError):
        pos.orders.place_order([(menu["Baleada"], 1)], order_type="drive_thru")
    assert all(t.available for t in pos.tables.list_tables())
    assert count_rows("sale_line_items") == 0


def test_takeout_is_paid_on_the_spot(pos, menu, register):
    placed = pos.orders.place_order(
        [(menu["Cafe"], 2)], order_type="takeout", customer_name="Maria", payment_method="Efectivo"
    )
    assert placed.occupant == "Maria"
    assert placed.table is None
    assert placed.settlement.payment_method == "cash"
    assert placed.settlement.invoice_number == placed.invoice_number
    assert {i.status for i in placed.items} == {"paid"}
    assert all(t.available for t in pos.tables.list_tables())


def test_delivery_needs_payment_method(pos, menu, register):
    with pytest.raises(ValidationError):
        pos.orders.place_order([(menu["Cafe"], 1)], order_type="delivery")
    placed = pos.orders.place_order([(menu["Cafe"], 1)], order_type="delivery", payment_method="card")
    assert placed.occupant == "Cliente"


def test_closed_dine_in_account_frees_the_table(pos, menu, register):
    placed = pos.orders.place_order([(menu["Baleada"], 1)], payment_method="cash")
    assert placed.settlement.table_released is True
    assert pos.tables.get(placed.table.id).available is True


def test_failure_while_writing_releases_the_table(pos, menu, register, monkeypatch):
    original = OrderLedger.add_item
    calls = []

    def fail_on_second_line(self, *args, **kwargs):
        calls.append(args)
        if len(calls) == 2:
            raise ValidationError("disk full")
        return original(self, *args, **kwargs)

    monkeypatch.setattr(OrderLedger, "add_item", fail_on_second_line)
    with pytest.raises(ValidationError, match="disk full"):
        pos.orders.place_order([(menu["Baleada"], 3), (menu["Cerveza"], 1)])
    assert outbox.drain()

    assert len(calls) == 2
    assert count_rows("sale_line_items") == 0
    assert all(t.available for t in pos.tables.list_tables())
    assert stock_of(menu["Tortilla"]) == pytest.approx(100)
    assert stock_of(menu["Queso"]) == pytest.approx(10)


def test_add_to_tab_reuses_order_number_and_merges(pos, menu, register):
    placed = pos.orders.place_order([(menu["Baleada"], 1)])
    updated = pos.orders.add_to_tab(placed.occupant, [(menu["Baleada"], 2), (menu["Cerveza"], 1)])

    assert {i.order_number for i in updated} == {placed.order_number}
    lines = pos.ledger.list_open_items(placed.occupant)
    assert [(i.product_name, i.quantity) for i in lines] == [("Baleada", 3), ("Cerveza", 1)]
    assert {i.invoice_number for i in lines} == {placed.invoice_number}


def test_add_to_tab_needs_an_occupied_table(pos, menu, register):
    with pytest.raises(ValidationError, match="no open tab"):
        pos.orders.add_to_tab("Mesa 1", [(menu["Baleada"], 1)])
    with pytest.raises(ValidationError, match="does not exist"):
        pos.orders.add_to_tab("Mesa 99", [(menu["Baleada"], 1)])


def test_order_emits_one_prep_ticket_and_depletes_stock(pos, menu, register):
    tickets = []
    bus.subscribe("prep_ticket", tickets.append)
    pos.orders.place_order([OrderLine(menu["Baleada"], 2, format_notes(without="cebolla")), (menu["Cafe"], 1)])
    assert outbox.drain()

    assert len(tickets) == 1
    ticket = tickets[0]
    assert ticket.order_number == 1
    assert ticket.occupant == "Mesa 1"
    assert [(i.name, i.quantity, i.prep_minutes) for i in ticket.items] == [("Baleada", 2, 5), ("Cafe", 1, 15)]
    assert ticket.items[0].notes == "Sin: cebolla"
    assert stock_of(menu["Tortilla"]) == pytest.approx(98)
    assert stock_of(menu["Azucar"]) == pytest.approx(4)


def test_full_service_round(pos, menu, register):
    placed = pos.orders.place_order([(menu["Baleada"], 2)])
    pos.orders.add_to_tab(placed.occupant, [(menu["Cafe"], 1)])
    result = pos.settlement.settle_tab(placed.occupant, "cash", cashier="ana")

    assert result.subtotal_cents == 8000
    assert result.table_released is True
    summary = pos.cashier.shift_summary(register.id)
    assert summary.sales_by_method == {"cash": 8000}


def test_failed_tab_addition_is_rolled_back(pos, menu, register, monkeypatch):
    placed = pos.orders.place_order([(menu["Baleada"], 1)])
    assert outbox.drain()
    original = OrderLedger.add_item

    def fail_on_cerveza(self, occupant, order_number, product_id, *args, **kwargs):
        if product_id == menu["Cerveza"]:
            raise ValidationError("disk full")
        return original(self, occupant, order_number, product_id, *args, **kwargs)

    monkeypatch.setattr(OrderLedger, "add_item", fail_on_cerveza)
    with pytest.raises(ValidationError, match="disk full"):
        pos.orders.add_to_tab(placed.occupant, [(menu["Baleada"], 2), (menu["Cerveza"], 1)])
    assert outbox.drain()

    assert [(i.product_name, i.quantity) for i in pos.ledger.list_open_items(placed.occupant)] == [("Baleada", 1)]
    assert stock_of(menu["Tortilla"]) == pytest.approx(99)
    assert pos.tables.get(placed.table.id).available is False


def test_tab_settled_while_adding_is_not_reopened(pos, menu, register, monkeypatch):
    placed = pos.orders.place_order([(menu["Baleada"], 1)])
    original = OrderLedger.list_open_items
    settled = []

    def settle_from_other_terminal(self, occupant):
        if not settled:
            settled.append(occupant)
            pos.settlement.settle_tab(occupant, "cash")
        return original(self, occupant)

    monkeypatch.setattr(OrderLedger, "list_open_items", settle_from_other_terminal)
    with pytest.raises(ValidationError, match="no open tab"):
        pos.orders.add_to_tab(placed.occupant, [(menu["Cerveza"], 1)])

    assert settled == ["Mesa 1"]
    assert count_rows("sale_line_items", "status='pending'") == 0
    assert pos.tables.get(placed.table.id).available is True


def test_table_names_are_reserved_for_dine_in(pos, menu, register):
    with pytest.raises(ValidationError, match="is a table"):
        pos.orders.place_order(
            [(menu["Cafe"], 1)], order_type="takeout", customer_name="Mesa 2", payment_method="cash"
        )
    with pytest.raises(ValidationError, match="is a table"):
        pos.ledger.add_item("Mesa 2", 5, menu["Cafe"], 1, order_type="delivery")
    assert count_rows("sale_line_items") == 0
    assert all(t.available for t in pos.tables.list_tables())


def test_ledger_refuses_lines_for_a_free_table(pos, menu):
    with pytest.raises(ValidationError, match="no open tab"):
        pos.ledger.add_item("Mesa 1", 1, menu["Baleada"], 1)
    assert count_rows("sale_line_items") == 0
    assert stock_of(menu["Tortilla"]) == pytest.approx(100)
