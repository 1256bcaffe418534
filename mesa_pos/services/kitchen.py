"""Station queues fed by preparation tickets."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from ..core.config_store import current_business_id
from ..core.db import db_transaction, get_conn, parse_stamp, stamp
from ..core.errors import ValidationError
from .orders import PrepTicket

logger = logging.getLogger(__name__)

STATIONS = ("kitchen", "bar")


@dataclass(slots=True)
class StationTicket:
    id: int
    order_number: int
    occupant: str
    station: str
    items: List[dict] = field(default_factory=list)
    status: str = "pending"
    created_at: Optional[datetime] = None

    @property
    def prep_minutes(self) -> int:
        return max((int(item.get("prep_minutes") or 0) for item in self.items), default=0)


def _row_to_ticket(row) -> StationTicket:
    return StationTicket(
        id=int(row["id"]),
        order_number=int(row["order_number"]),
        occupant=row["occupant"],
        station=row["station"],
        items=json.loads(row["payload"] or "[]"),
        status=row["status"],
        created_at=parse_stamp(row["created_at"]),
    )


class KitchenQueue:
    __slots__ = ("business_id", "__weakref__")

    def __init__(self, business_id: str | None = None) -> None:
        self.business_id = business_id or current_business_id()

    def enqueue(self, ticket: PrepTicket) -> List[StationTicket]:
        """Split *ticket* by station and store one pending row per station."""
        by_station: dict[str, list[dict]] = {}
        for item in ticket.items:
            station = item.station if item.station in STATIONS else "kitchen"
            by_station.setdefault(station, []).append(
                {
                    "product_id": item.product_id,
                    "name": item.name,
                    "quantity": item.quantity,
                    "prep_minutes": item.prep_minutes,
                    "notes": item.notes,
                }
            )
        if not by_station:
            return []
        created: List[int] = []
        with db_transaction() as conn:
            for station, items in by_station.items():
                cur = conn.execute(
                    """INSERT INTO prep_tickets(business_id, order_number, occupant, station, payload, status, created_at)
                           VALUES(?,?,?,?,?,'pending',?)""",
                    (
                        self.business_id,
                        ticket.order_number,
                        ticket.occupant,
                        station,
                        json.dumps(items, ensure_ascii=False),
                        stamp(ticket.created_at),
                    ),
                )
                created.append(int(cur.lastrowid))
        logger.info("order %s queued for %s", ticket.order_number, ", ".join(by_station))
        return [self.get(ticket_id) for ticket_id in created]

    def get(self, ticket_id: int) -> StationTicket:
        conn = get_conn()
        try:
            row = conn.execute(
                """SELECT id, order_number, occupant, station, payload, status, created_at
                       FROM prep_tickets WHERE id=? AND business_id=?""",
                (ticket_id, self.business_id),
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            raise ValidationError(f"preparation ticket {ticket_id} does not exist")
        return _row_to_ticket(row)

    def pending(self, station: str | None = None) -> List[StationTicket]:
        sql = """SELECT id, order_number, occupant, station, payload, status, created_at
                     FROM prep_tickets WHERE business_id=? AND status='pending'"""
        params: list = [self.business_id]
        if station:
            sql += " AND station=?"
            params.append(station)
        sql += " ORDER BY created_at, id"
        conn = get_conn()
        try:
            rows = conn.execute(sql, params).fetchall()
        finally:
            conn.close()
        return [_row_to_ticket(r) for r in rows]

    def complete(self, ticket_id: int) -> StationTicket:
        return self._finish(ticket_id, "completed")

    def cancel(self, ticket_id: int) -> StationTicket:
        return self._finish(ticket_id, "cancelled")

    def _finish(self, ticket_id: int, status: str) -> StationTicket:
        with db_transaction() as conn:
            row = conn.execute(
                "SELECT status FROM prep_tickets WHERE id=? AND business_id=?",
                (ticket_id, self.business_id),
            ).fetchone()
            if row is None:
                raise ValidationError(f"preparation ticket {ticket_id} does not exist")
            if row["status"] != "pending":
                raise ValidationError(f"preparation ticket {ticket_id} is already {row['status']}")
            conn.execute("UPDATE prep_tickets SET status=? WHERE id=?", (status, ticket_id))
        return self.get(ticket_id)
