"""Best-effort stock depletion driven by product recipes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

from ..core.bus import bus
from ..core.config_store import current_business_id
from ..core.db import db_transaction, log_action
from ..core.errors import InventoryError
from ..core.outbox import Outbox, outbox as default_outbox

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class InventoryDeductionRequest:
    product_id: int
    quantity_delta: int


@dataclass(slots=True)
class StockChange:
    inventory_item_id: int
    name: str
    previous_stock: float
    new_stock: float
    reduction: float
    min_stock: float

    @property
    def crossed_minimum(self) -> bool:
        return self.previous_stock > self.min_stock >= self.new_stock


class InventoryCoordinator:
    __slots__ = ("business_id", "outbox")

    def __init__(self, business_id: str | None = None, outbox: Outbox | None = None) -> None:
        self.business_id = business_id or current_business_id()
        self.outbox = outbox or default_outbox

    def _usage(self, cur, product_id: int) -> list[tuple[int, float]]:
        rows = cur.execute(
            "SELECT inventory_item_id, quantity FROM recipes WHERE product_id=?",
            (product_id,),
        ).fetchall()
        if rows:
            return [(int(r["inventory_item_id"]), float(r["quantity"])) for r in rows]
        # products without a recipe deplete one unit of each listed ingredient
        rows = cur.execute(
            "SELECT inventory_item_id FROM product_ingredients WHERE product_id=?",
            (product_id,),
        ).fetchall()
        return [(int(r["inventory_item_id"]), 1.0) for r in rows]

    def decrement(self, product_id: int, quantity: int) -> List[StockChange]:
        if quantity is None or quantity <= 0:
            raise InventoryError(f"cannot deplete {quantity!r} units of product {product_id}")
        changes: List[StockChange] = []
        with db_transaction() as conn:
            cur = conn.cursor()
            usage = self._usage(cur, product_id)
            if not usage:
                raise InventoryError(f"no recipe or ingredients found for product {product_id}")
            for item_id, per_unit in usage:
                before = cur.execute(
                    "SELECT name, stock_qty, min_stock FROM inventory_items WHERE id=? AND business_id=?",
                    (item_id, self.business_id),
                ).fetchone()
                if before is None:
                    logger.warning("recipe of product %s references missing inventory item %s", product_id, item_id)
                    continue
                reduction = per_unit * quantity
                cur.execute(
                    "UPDATE inventory_items SET stock_qty = MAX(0, stock_qty - ?) WHERE id=?",
                    (reduction, item_id),
                )
                after = cur.execute(
                    "SELECT stock_qty FROM inventory_items WHERE id=?",
                    (item_id,),
                ).fetchone()
                change = StockChange(
                    inventory_item_id=item_id,
                    name=before["name"],
                    previous_stock=float(before["stock_qty"]),
                    new_stock=float(after["stock_qty"]),
                    reduction=reduction,
                    min_stock=float(before["min_stock"] or 0),
                )
                changes.append(change)
                if change.crossed_minimum:
                    log_action(
                        "system",
                        "inventory_low",
                        "inventory_item",
                        change.name,
                        str(change.previous_stock),
                        str(change.new_stock),
                        conn=conn,
                    )

        for change in changes:
            if change.crossed_minimum:
                bus.emit("inventory_low", change.name, change.previous_stock, change.new_stock, change.min_stock)
        logger.debug("depleted product %s x%s: %s", product_id, quantity, changes)
        return changes

    def request(self, req: InventoryDeductionRequest) -> None:
        """Queue a deduction; failures are logged and never reach the sale."""
        if req.quantity_delta <= 0:
            return
        self.outbox.submit(
            f"inventory:{req.product_id}",
            self._apply,
            req,
        )

    def _apply(self, req: InventoryDeductionRequest) -> None:
        try:
            self.decrement(req.product_id, req.quantity_delta)
        except InventoryError as exc:
            logger.warning("inventory not depleted for product %s: %s", req.product_id, exc.message)
