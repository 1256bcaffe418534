"""Pending/paid sale lines: add-or-merge, quantity edits, removal, tab views."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from ..core.bus import bus
from ..core.config_store import current_business_id
from ..core.db import db_transaction, get_conn, log_action, parse_stamp, stamp
from ..core.errors import LineItemNotFoundError, ValidationError
from .catalog import MenuCatalog
from .inventory import InventoryCoordinator, InventoryDeductionRequest
from .tables import TableSessionManager

logger = logging.getLogger(__name__)

ORDER_TYPES = ("dine_in", "takeout", "delivery")

_COLUMNS = (
    "id, order_number, invoice_number, occupant, order_type, product_id, product_name, "
    "quantity, unit_price_cents, total_cents, status, payment_method, notes, cashier, "
    "created_at, paid_at"
)


@dataclass(slots=True)
class LineItem:
    id: int
    order_number: int
    invoice_number: str
    occupant: str
    product_id: Optional[int]
    product_name: str
    quantity: int
    unit_price_cents: int
    total_cents: int
    status: str = "pending"
    payment_method: str = "none"
    notes: str = ""
    order_type: str = "dine_in"
    cashier: str = "system"
    created_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None

    @property
    def is_pending(self) -> bool:
        return self.status == "pending"


def row_to_line_item(row) -> LineItem:
    return LineItem(
        id=int(row["id"]),
        order_number=int(row["order_number"]),
        invoice_number=row["invoice_number"] or "",
        occupant=row["occupant"],
        product_id=None if row["product_id"] is None else int(row["product_id"]),
        product_name=row["product_name"],
        quantity=int(row["quantity"]),
        unit_price_cents=int(row["unit_price_cents"]),
        total_cents=int(row["total_cents"]),
        status=row["status"],
        payment_method=row["payment_method"],
        notes=row["notes"] or "",
        order_type=row["order_type"],
        cashier=row["cashier"],
        created_at=parse_stamp(row["created_at"]),
        paid_at=parse_stamp(row["paid_at"]),
    )


def fetch_line_items(conn, business_id: str, ids: Iterable[int]) -> dict[int, LineItem]:
    wanted = sorted({int(i) for i in ids})
    if not wanted:
        return {}
    marks = ",".join("?" for _ in wanted)
    rows = conn.execute(
        f"SELECT {_COLUMNS} FROM sale_line_items WHERE business_id=? AND id IN ({marks})",
        (business_id, *wanted),
    ).fetchall()
    return {int(r["id"]): row_to_line_item(r) for r in rows}


def _validate_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError(f"quantity must be a whole number, got {quantity!r}")
    if quantity < 1:
        raise ValidationError("quantity must be at least 1")
    return quantity


def _merge_notes(current: str, extra: str) -> str:
    current = (current or "").strip()
    extra = (extra or "").strip()
    if not extra or extra == current or extra in current.split("; "):
        return current
    return f"{current}; {extra}" if current else extra


class OrderLedger:
    __slots__ = ("business_id", "catalog", "inventory", "tables", "clock")

    def __init__(
        self,
        business_id: str | None = None,
        *,
        catalog: MenuCatalog | None = None,
        inventory: InventoryCoordinator | None = None,
        tables: TableSessionManager | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.business_id = business_id or current_business_id()
        self.catalog = catalog or MenuCatalog(self.business_id)
        self.inventory = inventory or InventoryCoordinator(self.business_id)
        self.tables = tables or TableSessionManager(self.business_id)
        self.clock = clock or datetime.now

    # ----- add / merge -----
    def add_item(
        self,
        occupant: str,
        order_number: int,
        product_id: int,
        quantity: int,
        notes: str = "",
        *,
        order_type: str = "dine_in",
        invoice_number: str = "",
        cashier: str = "system",
        deplete: bool = True,
    ) -> LineItem:
        """Add *quantity* of a product to a tab, merging into its pending line.

        The merge key is ``(occupant, order_number, product_id)``. Lines written
        before products carried ids are matched by product name instead and
        adopt the id. Only the added quantity is depleted from stock; callers
        writing several lines pass ``deplete=False`` and request it themselves
        once every line is in.

        An occupant named after a table needs that table to be occupied, and
        only dine-in lines may use a table's name.
        """
        occupant = (occupant or "").strip()
        if not occupant:
            raise ValidationError("the order needs a table or customer name")
        quantity = _validate_quantity(quantity)
        if order_type not in ORDER_TYPES:
            raise ValidationError(f"unknown order type '{order_type}'")
        product = self.catalog.get_product(product_id)
        notes = (notes or "").strip()

        with db_transaction() as conn:
            cur = conn.cursor()
            self._check_occupant(cur, occupant, order_type)
            row = cur.execute(
                f"""SELECT {_COLUMNS} FROM sale_line_items
                       WHERE business_id=? AND occupant=? AND order_number=?
                             AND status='pending' AND product_id=?""",
                (self.business_id, occupant, int(order_number), product.id),
            ).fetchone()
            if row is None:
                row = cur.execute(
                    f"""SELECT {_COLUMNS} FROM sale_line_items
                           WHERE business_id=? AND occupant=? AND order_number=?
                                 AND status='pending' AND product_id IS NULL AND product_name=?
                           ORDER BY id LIMIT 1""",
                    (self.business_id, occupant, int(order_number), product.name),
                ).fetchone()

            if row is not None:
                existing = row_to_line_item(row)
                new_qty = existing.quantity + quantity
                merged_notes = _merge_notes(existing.notes, notes)
                cur.execute(
                    """UPDATE sale_line_items
                           SET quantity=?, total_cents=?, notes=?, product_id=COALESCE(product_id, ?)
                           WHERE id=?""",
                    (new_qty, new_qty * existing.unit_price_cents, merged_notes, product.id, existing.id),
                )
                line_id = existing.id
                log_action(cashier, "item_merge", "line_item", product.name, str(existing.quantity), str(new_qty), conn=conn)
            else:
                cur.execute(
                    """INSERT INTO sale_line_items(
                           business_id, order_number, invoice_number, occupant, order_type,
                           product_id, product_name, quantity, unit_price_cents, total_cents,
                           status, payment_method, notes, cashier, created_at)
                       VALUES(?,?,?,?,?,?,?,?,?,?,'pending','none',?,?,?)""",
                    (
                        self.business_id,
                        int(order_number),
                        invoice_number or "",
                        occupant,
                        order_type,
                        product.id,
                        product.name,
                        quantity,
                        product.price_cents,
                        quantity * product.price_cents,
                        notes,
                        cashier,
                        stamp(self.clock()),
                    ),
                )
                line_id = int(cur.lastrowid)
                log_action(cashier, "item_add", "line_item", product.name, None, str(quantity), conn=conn)
            item = row_to_line_item(
                cur.execute(f"SELECT {_COLUMNS} FROM sale_line_items WHERE id=?", (line_id,)).fetchone()
            )

        if deplete:
            self.inventory.request(InventoryDeductionRequest(product.id, quantity))
        self._emit_total(occupant)
        return item

    def _check_occupant(self, cur, occupant: str, order_type: str) -> None:
        table = cur.execute(
            "SELECT available FROM tables WHERE business_id=? AND name=?",
            (self.business_id, occupant),
        ).fetchone()
        if table is None:
            return
        if order_type != "dine_in":
            raise ValidationError(f"'{occupant}' is a table; use another name for {order_type} orders")
        if table["available"]:
            raise ValidationError(f"table '{occupant}' has no open tab")

    # ----- edits -----
    def adjust_quantity(self, line_item_id: int, delta: int, *, username: str = "system") -> Optional[LineItem]:
        """Change a pending line by *delta*; reaching zero deletes the line.

        The unit price recorded on the line is kept, whatever the menu says now.
        Removing the last line of a tab leaves its table occupied.
        """
        if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
            raise ValidationError(f"quantity change must be a non-zero whole number, got {delta!r}")
        with db_transaction() as conn:
            current = fetch_line_items(conn, self.business_id, [line_item_id]).get(int(line_item_id))
            if current is None:
                raise LineItemNotFoundError([line_item_id])
            if not current.is_pending:
                raise ValidationError(f"order line {line_item_id} is {current.status} and cannot be changed")
            new_qty = current.quantity + delta
            if new_qty <= 0:
                conn.execute("DELETE FROM sale_line_items WHERE id=? AND status='pending'", (current.id,))
                log_action(username, "item_remove", "line_item", current.product_name, str(current.quantity), "0", conn=conn)
                updated = None
            else:
                conn.execute(
                    "UPDATE sale_line_items SET quantity=?, total_cents=? WHERE id=? AND status='pending'",
                    (new_qty, new_qty * current.unit_price_cents, current.id),
                )
                log_action(username, "item_adjust", "line_item", current.product_name, str(current.quantity), str(new_qty), conn=conn)
                current.quantity = new_qty
                current.total_cents = new_qty * current.unit_price_cents
                updated = current

        if delta > 0:
            product_id = current.product_id
            if product_id is None:
                legacy = self.catalog.find_by_name(current.product_name)
                product_id = legacy.id if legacy else None
            if product_id is not None:
                self.inventory.request(InventoryDeductionRequest(product_id, delta))
            else:
                logger.warning("no menu product named '%s'; stock not depleted", current.product_name)
        self._emit_total(current.occupant)
        return updated

    def remove_item(self, line_item_id: int, *, username: str = "system") -> LineItem:
        """Delete a pending line. Stock is not restored."""
        with db_transaction() as conn:
            current = fetch_line_items(conn, self.business_id, [line_item_id]).get(int(line_item_id))
            if current is None:
                raise LineItemNotFoundError([line_item_id])
            if not current.is_pending:
                raise ValidationError(f"order line {line_item_id} is {current.status} and cannot be removed")
            conn.execute("DELETE FROM sale_line_items WHERE id=?", (current.id,))
            log_action(username, "item_remove", "line_item", current.product_name, str(current.quantity), "0", conn=conn)
        self._emit_total(current.occupant)
        return current

    def cancel_tab(self, occupant: str, *, username: str = "system") -> List[LineItem]:
        """Void every pending line of *occupant* and free its table."""
        occupant = (occupant or "").strip()
        with db_transaction() as conn:
            rows = conn.execute(
                f"""SELECT {_COLUMNS} FROM sale_line_items
                       WHERE business_id=? AND occupant=? AND status='pending' ORDER BY id""",
                (self.business_id, occupant),
            ).fetchall()
            items = [row_to_line_item(r) for r in rows]
            conn.execute(
                "UPDATE sale_line_items SET status='cancelled' WHERE business_id=? AND occupant=? AND status='pending'",
                (self.business_id, occupant),
            )
            if items:
                log_action(username, "tab_cancel", "tab", occupant, str(len(items)), None, conn=conn)
        for item in items:
            item.status = "cancelled"
        table = self.tables.find_by_name(occupant)
        if table is not None:
            self.tables.release(table.id, username=username)
        self._emit_total(occupant)
        return items

    # ----- reads -----
    def get(self, line_item_id: int) -> LineItem:
        conn = get_conn()
        try:
            item = fetch_line_items(conn, self.business_id, [line_item_id]).get(int(line_item_id))
        finally:
            conn.close()
        if item is None:
            raise LineItemNotFoundError([line_item_id])
        return item

    def list_open_items(self, occupant: str) -> List[LineItem]:
        conn = get_conn()
        try:
            rows = conn.execute(
                f"""SELECT {_COLUMNS} FROM sale_line_items
                       WHERE business_id=? AND occupant=? AND status='pending'
                       ORDER BY created_at, id""",
                (self.business_id, (occupant or "").strip()),
            ).fetchall()
        finally:
            conn.close()
        return [row_to_line_item(r) for r in rows]

    def tab_subtotal_cents(self, occupant: str) -> int:
        conn = get_conn()
        try:
            row = conn.execute(
                """SELECT COALESCE(SUM(total_cents), 0) AS subtotal FROM sale_line_items
                       WHERE business_id=? AND occupant=? AND status='pending'""",
                (self.business_id, (occupant or "").strip()),
            ).fetchone()
        finally:
            conn.close()
        return int(row["subtotal"])

    def open_order_number(self, occupant: str) -> Optional[int]:
        """Order number of the tab currently open for *occupant*, if any."""
        conn = get_conn()
        try:
            row = conn.execute(
                """SELECT order_number FROM sale_line_items
                       WHERE business_id=? AND occupant=? AND status='pending'
                       ORDER BY id LIMIT 1""",
                (self.business_id, (occupant or "").strip()),
            ).fetchone()
        finally:
            conn.close()
        return None if row is None else int(row["order_number"])

    def _emit_total(self, occupant: str) -> None:
        bus.emit("table_total_changed", occupant, self.tab_subtotal_cents(occupant))
