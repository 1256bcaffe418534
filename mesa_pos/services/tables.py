"""Seating and bar-slot availability: the only writer of ``tables.available``."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from ..core.bus import bus
from ..core.config_store import current_business_id
from ..core.db import db_transaction, get_conn, log_action, setting_get
from ..core.errors import NotAvailableError, TableNotFoundError, ValidationError

logger = logging.getLogger(__name__)

_DIGITS = re.compile(r"(\d+)")
_KIND_SETTINGS = {
    "table": ("table_prefix", "Mesa"),
    "bar": ("bar_prefix", "Barra"),
}


@dataclass(slots=True)
class Table:
    id: int
    name: str
    capacity: int
    available: bool


def natural_key(name: str) -> tuple:
    """Sort key putting "Mesa 2" before "Mesa 10"."""
    parts = _DIGITS.split((name or "").strip().lower())
    return tuple((0, int(p), "") if p.isdigit() else (1, 0, p) for p in parts)


def _row_to_table(row) -> Table:
    return Table(
        id=int(row["id"]),
        name=row["name"],
        capacity=int(row["capacity"]),
        available=bool(row["available"]),
    )


class TableSessionManager:
    __slots__ = ("business_id",)

    def __init__(self, business_id: str | None = None) -> None:
        self.business_id = business_id or current_business_id()

    def prefix_for(self, kind: str) -> str:
        try:
            key, default = _KIND_SETTINGS[kind]
        except KeyError:
            raise ValidationError(f"unknown seating kind '{kind}', expected 'table' or 'bar'") from None
        return (setting_get(key, default) or default).strip()

    # ----- reads -----
    def get(self, table_id: int) -> Table:
        conn = get_conn()
        try:
            row = conn.execute(
                "SELECT id, name, capacity, available FROM tables WHERE id=? AND business_id=?",
                (table_id, self.business_id),
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            raise TableNotFoundError(table_id)
        return _row_to_table(row)

    def find_by_name(self, name: str) -> Optional[Table]:
        conn = get_conn()
        try:
            row = conn.execute(
                "SELECT id, name, capacity, available FROM tables WHERE name=? AND business_id=?",
                ((name or "").strip(), self.business_id),
            ).fetchone()
        finally:
            conn.close()
        return None if row is None else _row_to_table(row)

    def list_tables(self) -> List[Table]:
        conn = get_conn()
        try:
            rows = conn.execute(
                "SELECT id, name, capacity, available FROM tables WHERE business_id=?",
                (self.business_id,),
            ).fetchall()
        finally:
            conn.close()
        return sorted((_row_to_table(r) for r in rows), key=lambda t: natural_key(t.name))

    def floor_map(self) -> List[Tuple[Table, int]]:
        """Every table with the value of its pending tab, in floor order."""
        conn = get_conn()
        try:
            rows = conn.execute(
                """SELECT t.id, t.name, t.capacity, t.available,
                          COALESCE(SUM(s.total_cents), 0) AS pending_cents
                       FROM tables t
                       LEFT JOIN sale_line_items s
                         ON s.business_id = t.business_id
                        AND s.occupant = t.name
                        AND s.status = 'pending'
                       WHERE t.business_id=?
                       GROUP BY t.id""",
                (self.business_id,),
            ).fetchall()
        finally:
            conn.close()
        out = [(_row_to_table(r), int(r["pending_cents"])) for r in rows]
        out.sort(key=lambda pair: natural_key(pair[0].name))
        return out

    # ----- transitions -----
    def reserve(self, kind: str, *, username: str = "system") -> Table:
        """Claim the lowest free table/bar seat of *kind*."""
        prefix = self.prefix_for(kind)
        pattern = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
        with db_transaction() as conn:
            rows = conn.execute(
                """SELECT id, name, capacity, available FROM tables
                       WHERE business_id=? AND available=1 AND name LIKE ? ESCAPE '\\'""",
                (self.business_id, pattern),
            ).fetchall()
            candidates = sorted(
                (_row_to_table(r) for r in rows),
                key=lambda t: natural_key(t.name),
            )
            chosen: Optional[Table] = None
            for table in candidates:
                cur = conn.execute(
                    "UPDATE tables SET available=0 WHERE id=? AND available=1",
                    (table.id,),
                )
                if cur.rowcount == 1:
                    chosen = table
                    break
            if chosen is None:
                raise NotAvailableError(kind)
            chosen.available = False
            log_action(username, "table_reserve", "table", chosen.name, "free", "occupied", conn=conn)
        logger.info("reserved %s '%s'", kind, chosen.name)
        bus.emit("table_state_changed", chosen.name, "occupied")
        return chosen

    def occupy(self, table_id: int, *, username: str = "system") -> Table:
        """Claim one specific table picked from the floor map."""
        with db_transaction() as conn:
            row = conn.execute(
                "SELECT id, name, capacity, available FROM tables WHERE id=? AND business_id=?",
                (table_id, self.business_id),
            ).fetchone()
            if row is None:
                raise TableNotFoundError(table_id)
            cur = conn.execute(
                "UPDATE tables SET available=0 WHERE id=? AND available=1",
                (table_id,),
            )
            if cur.rowcount != 1:
                raise NotAvailableError("table", f"table '{row['name']}' is already occupied")
            log_action(username, "table_reserve", "table", row["name"], "free", "occupied", conn=conn)
        table = _row_to_table(row)
        table.available = False
        bus.emit("table_state_changed", table.name, "occupied")
        return table

    def release(self, table_id: int, *, username: str = "system") -> Table:
        """Mark the table free again. Releasing a free table is a no-op."""
        with db_transaction() as conn:
            row = conn.execute(
                "SELECT id, name, capacity, available FROM tables WHERE id=? AND business_id=?",
                (table_id, self.business_id),
            ).fetchone()
            if row is None:
                raise TableNotFoundError(table_id)
            cur = conn.execute(
                "UPDATE tables SET available=1 WHERE id=? AND available=0",
                (table_id,),
            )
            changed = cur.rowcount == 1
            if changed:
                log_action(username, "table_release", "table", row["name"], "occupied", "free", conn=conn)
        table = _row_to_table(row)
        table.available = True
        if changed:
            logger.info("released table '%s'", table.name)
            bus.emit("table_state_changed", table.name, "free")
        return table
