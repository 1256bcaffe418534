"""Order intake: seat the party, number the order, write its lines, notify the kitchen."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from ..core.bus import bus
from ..core.config_store import current_business_id, get_config_flag
from ..core.errors import PosError, ValidationError
from ..core.outbox import Outbox, outbox as default_outbox
from .cashier import CashierSessionTracker
from .catalog import MenuCatalog, Product
from .inventory import InventoryCoordinator, InventoryDeductionRequest
from .ledger import ORDER_TYPES, LineItem, OrderLedger
from .numbering import NumberingService
from .settlement import SettlementProcessor, SettlementResult, normalize_payment_method
from .tables import Table, TableSessionManager

logger = logging.getLogger(__name__)

DEFAULT_CUSTOMER = "Cliente"


def format_notes(with_: str = "", without: str = "") -> str:
    """Kitchen note text, e.g. ``"Con: queso, Sin: cebolla"``."""
    parts = []
    if (with_ or "").strip():
        parts.append(f"Con: {with_.strip()}")
    if (without or "").strip():
        parts.append(f"Sin: {without.strip()}")
    return ", ".join(parts)


@dataclass(slots=True)
class OrderLine:
    product_id: int
    quantity: int = 1
    notes: str = ""


@dataclass(slots=True)
class PrepTicketItem:
    product_id: int
    name: str
    quantity: int
    prep_minutes: int
    notes: str = ""
    station: str = "kitchen"


@dataclass(slots=True)
class PrepTicket:
    order_number: int
    occupant: str
    items: List[PrepTicketItem] = field(default_factory=list)
    order_type: str = "dine_in"
    created_at: datetime = field(default_factory=datetime.now)


@dataclass(slots=True)
class PlacedOrder:
    order_number: int
    invoice_number: str
    occupant: str
    order_type: str
    items: List[LineItem] = field(default_factory=list)
    table: Optional[Table] = None
    settlement: Optional[SettlementResult] = None

    @property
    def subtotal_cents(self) -> int:
        return sum(item.total_cents for item in self.items)


def _coerce_line(raw) -> OrderLine:
    if isinstance(raw, OrderLine):
        line = raw
    elif isinstance(raw, dict):
        line = OrderLine(
            product_id=raw.get("product_id"),
            quantity=raw.get("quantity", 1),
            notes=raw.get("notes", "") or "",
        )
    else:
        try:
            line = OrderLine(*raw)
        except TypeError as exc:
            raise ValidationError(f"cannot read order line {raw!r}") from exc
    qty = line.quantity
    if isinstance(qty, bool) or not isinstance(qty, int) or qty < 1:
        raise ValidationError(f"quantity must be a whole number of at least 1, got {qty!r}")
    if line.product_id is None:
        raise ValidationError("order line is missing its product")
    return line


def _merge_request(lines: Sequence[OrderLine]) -> List[OrderLine]:
    """Collapse repeated products in one request into a single line."""
    merged: dict[int, OrderLine] = {}
    for line in lines:
        key = int(line.product_id)
        current = merged.get(key)
        if current is None:
            merged[key] = OrderLine(key, line.quantity, (line.notes or "").strip())
            continue
        current.quantity += line.quantity
        note = (line.notes or "").strip()
        if note and note not in current.notes.split("; "):
            current.notes = f"{current.notes}; {note}" if current.notes else note
    return list(merged.values())


class OrderService:
    """Wires tables, numbering, the ledger and settlement into the ordering flow."""

    __slots__ = (
        "business_id",
        "catalog",
        "tables",
        "numbering",
        "ledger",
        "settlement",
        "cashier",
        "outbox",
    )

    def __init__(
        self,
        business_id: str | None = None,
        *,
        catalog: MenuCatalog | None = None,
        tables: TableSessionManager | None = None,
        numbering: NumberingService | None = None,
        ledger: OrderLedger | None = None,
        settlement: SettlementProcessor | None = None,
        cashier: CashierSessionTracker | None = None,
        outbox: Outbox | None = None,
    ) -> None:
        self.business_id = business_id or current_business_id()
        self.outbox = outbox or default_outbox
        self.catalog = catalog or MenuCatalog(self.business_id)
        self.tables = tables or TableSessionManager(self.business_id)
        self.numbering = numbering or NumberingService(self.business_id)
        self.ledger = ledger or OrderLedger(
            self.business_id,
            catalog=self.catalog,
            inventory=InventoryCoordinator(self.business_id, outbox=self.outbox),
            tables=self.tables,
        )
        self.settlement = settlement or SettlementProcessor(
            self.business_id, ledger=self.ledger, tables=self.tables, outbox=self.outbox
        )
        self.cashier = cashier or CashierSessionTracker(self.business_id)

    def _require_register(self) -> None:
        if get_config_flag("require_open_cashier", True):
            self.cashier.require_open()

    def _resolve(self, lines: Iterable) -> tuple[List[OrderLine], dict[int, Product]]:
        request = [_coerce_line(raw) for raw in (lines or ())]
        if not request:
            raise ValidationError("an order needs at least one product")
        request = _merge_request(request)
        products = {line.product_id: self.catalog.get_product(line.product_id) for line in request}
        return request, products

    def place_order(
        self,
        lines: Iterable,
        *,
        order_type: str = "dine_in",
        seat_kind: str = "table",
        customer_name: str = "",
        payment_method: str | None = None,
        cashier: str = "system",
    ) -> PlacedOrder:
        """Take a new order.

        Dine-in orders claim the lowest free table or bar seat and stay open as
        a tab unless a payment method is given. Takeout and delivery are paid on
        the spot. Nothing is written when the menu lookup, the register check,
        the payment method or the seating fails.
        """
        if order_type not in ORDER_TYPES:
            raise ValidationError(f"unknown order type '{order_type}'")
        request, products = self._resolve(lines)
        closed_account = order_type != "dine_in" or payment_method not in (None, "")
        method = None
        if closed_account:
            if payment_method in (None, ""):
                raise ValidationError(f"{order_type} orders are paid on the spot; choose a payment method")
            method = normalize_payment_method(payment_method)
        self._require_register()

        table: Optional[Table] = None
        if order_type == "dine_in":
            table = self.tables.reserve(seat_kind, username=cashier)
            occupant = table.name
        else:
            occupant = (customer_name or "").strip() or DEFAULT_CUSTOMER
            if self.tables.find_by_name(occupant) is not None:
                raise ValidationError(f"'{occupant}' is a table; use another name for {order_type} orders")

        written: List[LineItem] = []
        try:
            order_number = self.numbering.next_order_number()
            invoice = self.numbering.invoice_number_for(order_number)
            for line in request:
                written.append(
                    self.ledger.add_item(
                        occupant,
                        order_number,
                        line.product_id,
                        line.quantity,
                        line.notes,
                        order_type=order_type,
                        invoice_number=invoice,
                        cashier=cashier,
                        deplete=False,
                    )
                )
        except Exception:
            logger.warning("order for '%s' failed while writing lines; undoing", occupant)
            self._undo(written, table, cashier)
            raise
        self._deplete(request)

        placed = PlacedOrder(
            order_number=order_number,
            invoice_number=invoice,
            occupant=occupant,
            order_type=order_type,
            items=written,
            table=table,
        )
        self._send_ticket(order_number, occupant, order_type, request, products)
        logger.info("order %s placed for '%s' (%s lines)", order_number, occupant, len(written))
        if closed_account:
            placed.settlement = self.settlement.settle(
                occupant, [item.id for item in written], method, cashier=cashier
            )
            placed.items = placed.settlement.items
        return placed

    def add_to_tab(self, table_name: str, lines: Iterable, *, cashier: str = "system") -> List[LineItem]:
        """Add products to an occupied table, merging with what it already has."""
        table = self.tables.find_by_name(table_name)
        if table is None:
            raise ValidationError(f"table '{table_name}' does not exist")
        if table.available:
            raise ValidationError(f"table '{table.name}' has no open tab")
        request, products = self._resolve(lines)
        self._require_register()

        open_items = self.ledger.list_open_items(table.name)
        order_number = self.ledger.open_order_number(table.name)
        if order_number is None:
            order_number = self.numbering.next_order_number()
        invoice = next(
            (item.invoice_number for item in open_items if item.invoice_number and item.order_number == order_number),
            "",
        ) or self.numbering.invoice_number_for(order_number)

        updated: List[LineItem] = []
        try:
            for line in request:
                updated.append(
                    self.ledger.add_item(
                        table.name,
                        order_number,
                        line.product_id,
                        line.quantity,
                        line.notes,
                        order_type="dine_in",
                        invoice_number=invoice,
                        cashier=cashier,
                        deplete=False,
                    )
                )
        except Exception:
            logger.warning("adding to '%s' failed while writing lines; undoing", table.name)
            for item, line in zip(updated, request):
                try:
                    self.ledger.adjust_quantity(item.id, -line.quantity, username=cashier)
                except PosError as exc:
                    logger.error("could not roll back order line %s: %s", item.id, exc.message)
            raise
        self._deplete(request)
        self._send_ticket(order_number, table.name, "dine_in", request, products)
        return updated

    def _deplete(self, request: Sequence[OrderLine]) -> None:
        for line in request:
            self.ledger.inventory.request(InventoryDeductionRequest(line.product_id, line.quantity))

    def _send_ticket(
        self,
        order_number: int,
        occupant: str,
        order_type: str,
        request: Sequence[OrderLine],
        products: dict[int, Product],
    ) -> PrepTicket:
        ticket = PrepTicket(
            order_number=order_number,
            occupant=occupant,
            order_type=order_type,
            items=[
                PrepTicketItem(
                    product_id=line.product_id,
                    name=products[line.product_id].name,
                    quantity=line.quantity,
                    prep_minutes=products[line.product_id].prep_minutes,
                    notes=line.notes,
                    station=products[line.product_id].station,
                )
                for line in request
            ],
        )
        self.outbox.submit(f"prep_ticket:{order_number}", bus.emit, "prep_ticket", ticket)
        return ticket

    def _undo(self, written: List[LineItem], table: Optional[Table], cashier: str) -> None:
        for item in written:
            try:
                self.ledger.remove_item(item.id, username=cashier)
            except PosError as exc:
                logger.error("could not roll back order line %s: %s", item.id, exc.message)
        if table is not None:
            self.tables.release(table.id, username=cashier)
