"""Command line front end for a Mesa POS terminal."""

from __future__ import annotations

import argparse
import sys
from typing import Optional, Sequence

from .app import PosApp, bootstrap, shutdown
from .core.business import BusinessConfig
from .core.errors import PosError, ValidationError
from .core.money import money_to_cents
from .services.expenses import record_expense
from .services.orders import OrderLine
from .utils.currency import format_amount


def parse_line(text: str) -> OrderLine:
    """``"7"``, ``"7x2"`` or ``"7x2:Sin: cebolla"`` -> OrderLine."""
    spec, _, notes = text.partition(":")
    product, _, qty = spec.lower().partition("x")
    try:
        return OrderLine(int(product), int(qty) if qty else 1, notes.strip())
    except ValueError as exc:
        raise ValidationError(f"cannot read order line '{text}', expected PRODUCT[xQTY][:NOTES]") from exc


def _cents(text: str) -> int:
    try:
        return money_to_cents(text)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


def _print_items(items, currency: str) -> None:
    for item in items:
        note = f"  [{item.notes}]" if item.notes else ""
        print(
            f"#{item.id:<5} {item.quantity:>3} x {item.product_name:<24} "
            f"{format_amount(item.total_cents, currency):>14}  {item.status}{note}"
        )


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="mesa-pos", description="Mesa POS order ledger terminal.")
    p.add_argument("--user", default="system", help="operator recorded in the audit log")
    p.add_argument("--business", default=None, help="business id (default: from config)")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="create or migrate the database")
    sub.add_parser("tables", help="show the floor map")

    reserve = sub.add_parser("reserve", help="claim the next free table or bar seat")
    reserve.add_argument("kind", choices=("table", "bar"))

    release = sub.add_parser("release", help="free a table")
    release.add_argument("table")

    order = sub.add_parser("order", help="place a new order")
    order.add_argument("lines", nargs="+", help="PRODUCT[xQTY][:NOTES]")
    order.add_argument("--type", dest="order_type", default="dine_in", choices=("dine_in", "takeout", "delivery"))
    order.add_argument("--seat", default="table", choices=("table", "bar"))
    order.add_argument("--customer", default="")
    order.add_argument("--pay", default=None, help="cash, card or online (closes the account)")

    add = sub.add_parser("add", help="add products to an occupied table")
    add.add_argument("table")
    add.add_argument("lines", nargs="+", help="PRODUCT[xQTY][:NOTES]")

    adjust = sub.add_parser("adjust", help="change the quantity of an order line")
    adjust.add_argument("line_id", type=int)
    adjust.add_argument("delta", type=int)

    remove = sub.add_parser("remove", help="delete an order line")
    remove.add_argument("line_id", type=int)

    tab = sub.add_parser("tab", help="show the open tab of a table or customer")
    tab.add_argument("occupant")

    settle = sub.add_parser("settle", help="pay a tab (all lines unless --lines is given)")
    settle.add_argument("occupant")
    settle.add_argument("method", help="cash, card or online")
    settle.add_argument("--lines", type=int, nargs="+", default=None)

    c_open = sub.add_parser("cashier-open", help="open the cash register")
    c_open.add_argument("opening_cash")

    c_close = sub.add_parser("cashier-close", help="close the cash register")
    c_close.add_argument("closing_cash")

    expense = sub.add_parser("expense", help="record an expense paid from the register")
    expense.add_argument("amount")
    expense.add_argument("description")
    expense.add_argument("--category", default="general")

    tickets = sub.add_parser("tickets", help="list pending preparation tickets")
    tickets.add_argument("--station", choices=("kitchen", "bar"), default=None)
    tickets.add_argument("--done", type=int, default=None, help="mark a ticket completed")
    return p


def run(app: PosApp, args: argparse.Namespace) -> int:
    currency = BusinessConfig.load().currency
    user = args.user
    cmd = args.command

    if cmd == "init":
        print("database ready")
    elif cmd == "tables":
        for table, pending in app.tables.floor_map():
            state = "free" if table.available else "occupied"
            print(f"{table.name:<12} {state:<9} {format_amount(pending, currency)}")
    elif cmd == "reserve":
        table = app.tables.reserve(args.kind, username=user)
        print(table.name)
    elif cmd == "release":
        table = app.tables.find_by_name(args.table)
        if table is None:
            raise ValidationError(f"table '{args.table}' does not exist")
        app.tables.release(table.id, username=user)
        print(f"{table.name} is free")
    elif cmd == "order":
        placed = app.orders.place_order(
            [parse_line(text) for text in args.lines],
            order_type=args.order_type,
            seat_kind=args.seat,
            customer_name=args.customer,
            payment_method=args.pay,
            cashier=user,
        )
        print(f"order {placed.order_number} for {placed.occupant} (invoice {placed.invoice_number})")
        _print_items(placed.items, currency)
        if placed.settlement is not None:
            print(f"paid {format_amount(placed.settlement.total_cents, currency)}")
    elif cmd == "add":
        items = app.orders.add_to_tab(args.table, [parse_line(text) for text in args.lines], cashier=user)
        _print_items(items, currency)
    elif cmd == "adjust":
        item = app.ledger.adjust_quantity(args.line_id, args.delta, username=user)
        print("line removed" if item is None else f"line {item.id} now x{item.quantity}")
    elif cmd == "remove":
        item = app.ledger.remove_item(args.line_id, username=user)
        print(f"removed {item.product_name}")
    elif cmd == "tab":
        preview = app.settlement.preview(args.occupant)
        _print_items(preview.items, currency)
        print(f"subtotal {format_amount(preview.subtotal_cents, currency)}")
        print(f"total    {format_amount(preview.total_cents, currency)}")
    elif cmd == "settle":
        if args.lines:
            result = app.settlement.settle(args.occupant, args.lines, args.method, cashier=user)
        else:
            result = app.settlement.settle_tab(args.occupant, args.method, cashier=user)
        print(f"invoice {result.invoice_number}: {format_amount(result.total_cents, currency)}")
        if result.table_released:
            print(f"{result.occupant} is free")
    elif cmd == "cashier-open":
        session = app.cashier.open(user, _cents(args.opening_cash))
        print(f"register opened (session {session.id})")
    elif cmd == "cashier-close":
        session = app.cashier.require_open()
        closed = app.cashier.close(session.id, _cents(args.closing_cash), username=user)
        summary = app.cashier.shift_summary(closed.id).as_dict(currency)
        for key in ("total_sales", "total_expenses", "net_utility", "expected_cash"):
            print(f"{key:<16} {summary[key]}")
    elif cmd == "expense":
        exp = record_expense(
            args.description,
            _cents(args.amount),
            category=args.category,
            recorded_by=user,
            business_id=app.business_id,
        )
        print(f"expense {exp.id}: {format_amount(exp.amount_cents, currency)}")
    elif cmd == "tickets":
        if args.done is not None:
            app.kitchen.complete(args.done)
        for ticket in app.kitchen.pending(args.station):
            names = ", ".join(f"{i['quantity']}x {i['name']}" for i in ticket.items)
            print(f"[{ticket.id}] {ticket.station:<7} #{ticket.order_number} {ticket.occupant}: {names}")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    app = bootstrap(args.business)
    try:
        return run(app, args)
    except PosError as exc:
        print(f"error: {exc.message}", file=sys.stderr)
        return 1
    finally:
        shutdown()


if __name__ == "__main__":
    sys.exit(main())
