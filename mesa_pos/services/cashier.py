"""Cash register sessions: open, close and the shift rollup."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Optional

from ..core.bus import bus
from ..core.config_store import current_business_id
from ..core.db import db_transaction, get_conn, log_action, parse_stamp, stamp
from ..core.errors import (
    AlreadyOpenError,
    CashierNotOpenError,
    CashierSessionNotFoundError,
    ValidationError,
)
from ..utils.currency import format_amount

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, cashier, opened_at, closed_at, opening_cash_cents, closing_cash_cents, "
    "total_sales_cents, total_expenses_cents, net_utility_cents, status"
)


@dataclass(slots=True)
class CashierSession:
    id: int
    cashier: str
    opened_at: datetime
    opening_cash_cents: int
    status: str = "open"
    closed_at: Optional[datetime] = None
    closing_cash_cents: Optional[int] = None
    total_sales_cents: Optional[int] = None
    total_expenses_cents: Optional[int] = None
    net_utility_cents: Optional[int] = None

    @property
    def is_open(self) -> bool:
        return self.status == "open"


@dataclass(slots=True)
class ShiftSummary:
    session: CashierSession
    sales_by_method: Dict[str, int] = field(default_factory=dict)
    total_sales_cents: int = 0
    total_expenses_cents: int = 0
    net_utility_cents: int = 0
    expected_cash_cents: int = 0

    def as_dict(self, currency: str = "HNL") -> Dict[str, object]:
        return {
            "session": self.session.id,
            "cashier": self.session.cashier,
            "opened_at": self.session.opened_at.isoformat(sep=" ", timespec="seconds"),
            "total_sales": format_amount(self.total_sales_cents, currency),
            "total_expenses": format_amount(self.total_expenses_cents, currency),
            "net_utility": format_amount(self.net_utility_cents, currency),
            "expected_cash": format_amount(self.expected_cash_cents, currency),
            "by_method": [
                {"method": method, "amount": format_amount(cents, currency)}
                for method, cents in sorted(self.sales_by_method.items())
            ],
        }


def _row_to_session(row) -> CashierSession:
    def _opt(key):
        return None if row[key] is None else int(row[key])

    return CashierSession(
        id=int(row["id"]),
        cashier=row["cashier"],
        opened_at=parse_stamp(row["opened_at"]),
        opening_cash_cents=int(row["opening_cash_cents"]),
        status=row["status"],
        closed_at=parse_stamp(row["closed_at"]),
        closing_cash_cents=_opt("closing_cash_cents"),
        total_sales_cents=_opt("total_sales_cents"),
        total_expenses_cents=_opt("total_expenses_cents"),
        net_utility_cents=_opt("net_utility_cents"),
    )


def _cents_arg(value, label: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be a whole number of cents")
    try:
        cents = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{label} must be a whole number of cents") from exc
    if cents < 0:
        raise ValidationError(f"{label} cannot be negative")
    return cents


class CashierSessionTracker:
    __slots__ = ("business_id", "clock")

    def __init__(self, business_id: str | None = None, clock: Callable[[], datetime] | None = None) -> None:
        self.business_id = business_id or current_business_id()
        self.clock = clock or datetime.now

    # ----- reads -----
    def get(self, session_id: int) -> CashierSession:
        conn = get_conn()
        try:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM cashier_sessions WHERE id=? AND business_id=?",
                (session_id, self.business_id),
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            raise CashierSessionNotFoundError(session_id)
        return _row_to_session(row)

    def current(self) -> Optional[CashierSession]:
        conn = get_conn()
        try:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM cashier_sessions WHERE business_id=? AND status='open'",
                (self.business_id,),
            ).fetchone()
        finally:
            conn.close()
        return None if row is None else _row_to_session(row)

    def require_open(self) -> CashierSession:
        session = self.current()
        if session is None:
            raise CashierNotOpenError()
        return session

    # ----- transitions -----
    def open(self, cashier: str, opening_cash_cents: int) -> CashierSession:
        cashier = (cashier or "").strip()
        if not cashier:
            raise ValidationError("cashier name is required to open the register")
        opening = _cents_arg(opening_cash_cents, "opening cash")
        try:
            with db_transaction() as conn:
                row = conn.execute(
                    "SELECT id FROM cashier_sessions WHERE business_id=? AND status='open'",
                    (self.business_id,),
                ).fetchone()
                if row is not None:
                    raise AlreadyOpenError(int(row["id"]))
                cur = conn.execute(
                    """INSERT INTO cashier_sessions(business_id, cashier, opened_at, opening_cash_cents, status)
                           VALUES(?,?,?,?,'open')""",
                    (self.business_id, cashier, stamp(self.clock()), opening),
                )
                session_id = int(cur.lastrowid)
                log_action(cashier, "cashier_open", "cashier_session", str(session_id), None, str(opening), conn=conn)
        except sqlite3.IntegrityError as exc:
            raise AlreadyOpenError() from exc
        logger.info("cash register opened by %s (session %s)", cashier, session_id)
        session = self.get(session_id)
        bus.emit("cashier_changed", "open")
        return session

    def close(self, session_id: int, closing_cash_cents: int, *, username: str | None = None) -> CashierSession:
        """Close the session with the sales and expenses of its window.

        The window is ``[opened_at, now)``; a closed session is never reopened.
        """
        closing = _cents_arg(closing_cash_cents, "closing cash")
        closed_at = self.clock()
        with db_transaction() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM cashier_sessions WHERE id=? AND business_id=?",
                (session_id, self.business_id),
            ).fetchone()
            if row is None:
                raise CashierSessionNotFoundError(session_id)
            session = _row_to_session(row)
            if not session.is_open:
                raise CashierNotOpenError(f"cash register session {session_id} is already closed")
            by_method, expenses = self._window_totals(conn, row["opened_at"], stamp(closed_at))
            sales = sum(by_method.values())
            net = sales - expenses
            conn.execute(
                """UPDATE cashier_sessions
                       SET status='closed', closed_at=?, closing_cash_cents=?, total_sales_cents=?,
                           total_expenses_cents=?, net_utility_cents=?
                       WHERE id=? AND status='open'""",
                (stamp(closed_at), closing, sales, expenses, net, session_id),
            )
            log_action(
                username or session.cashier,
                "cashier_close",
                "cashier_session",
                str(session_id),
                str(session.opening_cash_cents),
                str(closing),
                extra=f"sales={sales};expenses={expenses};net={net}",
                conn=conn,
            )
        logger.info("cash register session %s closed: sales %s, expenses %s", session_id, sales, expenses)
        closed = self.get(session_id)
        bus.emit("cashier_changed", "closed")
        return closed

    def shift_summary(self, session_id: int) -> ShiftSummary:
        """Sales by payment method, expenses and expected drawer cash."""
        session = self.get(session_id)
        end = session.closed_at or self.clock()
        conn = get_conn()
        try:
            by_method, expenses = self._window_totals(conn, stamp(session.opened_at), stamp(end))
        finally:
            conn.close()
        sales = sum(by_method.values())
        return ShiftSummary(
            session=session,
            sales_by_method=by_method,
            total_sales_cents=sales,
            total_expenses_cents=expenses,
            net_utility_cents=sales - expenses,
            expected_cash_cents=session.opening_cash_cents + by_method.get("cash", 0) - expenses,
        )

    def _window_totals(self, conn, start: str, end: str) -> tuple[Dict[str, int], int]:
        rows = conn.execute(
            """SELECT payment_method, COALESCE(SUM(total_cents), 0) AS amt
                   FROM sale_line_items
                   WHERE business_id=? AND status='paid' AND paid_at >= ? AND paid_at < ?
                   GROUP BY payment_method
                   ORDER BY payment_method""",
            (self.business_id, start, end),
        ).fetchall()
        by_method = {row["payment_method"]: int(row["amt"]) for row in rows}
        row = conn.execute(
            """SELECT COALESCE(SUM(amount_cents), 0) AS total FROM expenses
                   WHERE business_id=? AND ts >= ? AND ts < ?""",
            (self.business_id, start, end),
        ).fetchone()
        return by_method, int(row["total"])
