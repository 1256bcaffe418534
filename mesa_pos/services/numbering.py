"""Monthly order numbers and receipt invoice references."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from ..core.config_store import current_business_id
from ..core.db import db_transaction

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _period(at: datetime) -> str:
    return f"{at.year:04d}-{at.month:02d}"


def _month_bounds(at: datetime) -> tuple[str, str]:
    start = datetime(at.year, at.month, 1)
    if at.month == 12:
        end = datetime(at.year + 1, 1, 1)
    else:
        end = datetime(at.year, at.month + 1, 1)
    return start.isoformat(), end.isoformat()


def invoice_number_for(order_number: int, at: datetime) -> str:
    """``YYMMDD`` followed by the order number, e.g. ``2410197``.

    Printed on receipts only. Two days can produce the same text, so it is
    never used to look anything up.
    """
    return f"{at:%y%m%d}{int(order_number)}"


class NumberingService:
    __slots__ = ("business_id", "clock")

    def __init__(self, business_id: str | None = None, clock: Clock | None = None) -> None:
        self.business_id = business_id or current_business_id()
        self.clock = clock or datetime.now

    def next_order_number(self, business_id: str | None = None) -> int:
        business = business_id or self.business_id
        now = self.clock()
        period = _period(now)
        start, end = _month_bounds(now)
        # the write lock taken by BEGIN IMMEDIATE serialises concurrent terminals
        with db_transaction() as conn:
            cur = conn.cursor()
            row = cur.execute(
                "SELECT last_number FROM order_counters WHERE business_id=? AND period=?",
                (business, period),
            ).fetchone()
            counter = int(row["last_number"]) if row else 0
            row = cur.execute(
                """SELECT COALESCE(MAX(order_number), 0) AS top
                       FROM sale_line_items
                       WHERE business_id=? AND created_at >= ? AND created_at < ?""",
                (business, start, end),
            ).fetchone()
            recorded = int(row["top"] or 0)
            number = max(counter, recorded) + 1
            cur.execute(
                """INSERT INTO order_counters(business_id, period, last_number) VALUES(?,?,?)
                       ON CONFLICT(business_id, period) DO UPDATE SET last_number=excluded.last_number""",
                (business, period, number),
            )
        logger.debug("allocated order %s for %s/%s", number, business, period)
        return number

    def invoice_number_for(self, order_number: int, at: datetime | None = None) -> str:
        return invoice_number_for(order_number, at or self.clock())
