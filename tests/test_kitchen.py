from datetime import datetime

import pytest

from mesa_pos.app import build_app
from mesa_pos.core.errors import ValidationError
from mesa_pos.core.outbox import outbox
from mesa_pos.services.kitchen import KitchenQueue
from mesa_pos.services.orders import PrepTicket, PrepTicketItem
from mesa_pos.services.printer import TicketPrinter, format_receipt_lines, format_ticket_lines
from mesa_pos.services.settlement import SettlementResult
from mesa_pos.core.business import BusinessConfig


def _ticket():
    return PrepTicket(
        order_number=12,
        occupant="Mesa 3",
        created_at=datetime(2024, 10, 19, 13, 5),
        items=[
            PrepTicketItem(1, "Baleada", 2, 5, "Sin: cebolla", "kitchen"),
            PrepTicketItem(2, "Cerveza", 1, 1, "", "bar"),
        ],
    )


def test_enqueue_splits_by_station(db):
    queue = KitchenQueue()
    created = queue.enqueue(_ticket())

    assert [t.station for t in created] == ["kitchen", "bar"]
    kitchen = queue.pending("kitchen")
    assert len(kitchen) == 1
    assert kitchen[0].items[0]["name"] == "Baleada"
    assert kitchen[0].items[0]["notes"] == "Sin: cebolla"
    assert kitchen[0].prep_minutes == 5
    assert len(queue.pending()) == 2


def test_complete_and_cancel_are_terminal(db):
    queue = KitchenQueue()
    kitchen, bar = queue.enqueue(_ticket())

    assert queue.complete(kitchen.id).status == "completed"
    assert queue.cancel(bar.id).status == "cancelled"
    assert queue.pending() == []
    with pytest.raises(ValidationError):
        queue.complete(kitchen.id)
    with pytest.raises(ValidationError):
        queue.cancel(9999)


def test_orders_reach_the_queue_through_the_bus(pos, menu, register):
    pos.orders.place_order([(menu["Baleada"], 1), (menu["Cafe"], 1)])
    assert outbox.drain()
    tickets = pos.kitchen.pending()
    assert sorted(t.station for t in tickets) == ["bar", "kitchen"]
    assert {t.order_number for t in tickets} == {1}


def test_ticket_lines():
    lines = format_ticket_lines(_ticket())
    assert lines[0] == "ORDEN #12"
    assert "2 x Baleada (5 min)" in lines
    assert "  Sin: cebolla" in lines


def test_receipt_lines_show_totals(pos, menu):
    item = pos.ledger.add_item("Maria", 4, menu["Baleada"], 2, order_type="takeout")
    result = SettlementResult(
        occupant="Maria",
        items=[item, item],
        invoice_number="2410194",
        payment_method="cash",
        subtotal_cents=10000,
        tip_cents=1000,
        tax_cents=1500,
        total_cents=12500,
    )
    config = BusinessConfig.load()
    lines = format_receipt_lines(result, config, cashier="ana")
    assert lines[0] == "Mesa POS"
    assert "Factura: 2410194" in lines
    assert "Pago: Efectivo" in lines
    assert "4 x Baleada" in lines
    assert "Propina: HNL 10.00" in lines
    assert "Total: HNL 125.00" in lines


def test_printer_writes_pdfs(db, tmp_path):
    printer = TicketPrinter(output_dir=tmp_path / "prints")
    path = printer.print_ticket(_ticket())
    assert path.exists()
    assert path.parent.name == "tickets"
    assert path.read_bytes().startswith(b"%PDF")


def test_app_sends_tickets_to_the_queue_and_the_printer(menu, tmp_path):
    app = build_app(print_tickets=True)
    app.printer.output_dir = tmp_path
    app.cashier.open("ana", 50000)

    placed = app.orders.place_order([(menu["Baleada"], 1), (menu["Cafe"], 1)])
    app.settlement.settle_tab(placed.occupant, "cash")
    assert outbox.drain()

    assert sorted(t.station for t in app.kitchen.pending()) == ["bar", "kitchen"]
    assert len(list((tmp_path / "tickets").glob("*.pdf"))) == 1
    assert len(list((tmp_path / "receipts").glob("*.pdf"))) == 1
