"""Read-only view of the menu used to price and route order lines."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..core.config_store import current_business_id
from ..core.db import get_conn, setting_get_int
from ..core.errors import ProductNotFoundError

DEFAULT_PREP_MINUTES = 15


@dataclass(slots=True, frozen=True)
class Product:
    id: int
    name: str
    price_cents: int
    prep_minutes: int
    station: str = "kitchen"


class MenuCatalog:
    __slots__ = ("business_id",)

    def __init__(self, business_id: str | None = None) -> None:
        self.business_id = business_id or current_business_id()

    def _row_to_product(self, row) -> Product:
        prep = row["prep_minutes"]
        if prep is None:
            prep = setting_get_int("default_prep_minutes", DEFAULT_PREP_MINUTES)
        return Product(
            id=int(row["id"]),
            name=row["name"],
            price_cents=int(row["price_cents"]),
            prep_minutes=int(prep),
            station=row["station"] or "kitchen",
        )

    def get_product(self, product_id: int) -> Product:
        conn = get_conn()
        try:
            row = conn.execute(
                """SELECT id, name, price_cents, prep_minutes, station
                       FROM products WHERE id=? AND business_id=?""",
                (product_id, self.business_id),
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            raise ProductNotFoundError(product_id)
        return self._row_to_product(row)

    def find_by_name(self, name: str) -> Optional[Product]:
        """Legacy lookup for order lines recorded before products had ids."""
        cleaned = (name or "").strip()
        if not cleaned:
            return None
        conn = get_conn()
        try:
            row = conn.execute(
                """SELECT id, name, price_cents, prep_minutes, station
                       FROM products WHERE name=? AND business_id=?""",
                (cleaned, self.business_id),
            ).fetchone()
        finally:
            conn.close()
        return None if row is None else self._row_to_product(row)
