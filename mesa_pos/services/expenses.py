"""Recording and reviewing cash paid out of the register."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from ..core.config_store import current_business_id
from ..core.db import db_transaction, get_conn, log_action, parse_stamp, stamp
from ..core.errors import ValidationError


@dataclass(slots=True)
class Expense:
    id: int
    ts: datetime
    description: str
    category: str
    amount_cents: int
    recorded_by: str


def _rows_to_expenses(rows: Sequence) -> list[Expense]:
    return [
        Expense(
            id=int(row["id"]),
            ts=parse_stamp(row["ts"]),
            description=row["description"],
            category=row["category"] or "general",
            amount_cents=int(row["amount_cents"]),
            recorded_by=row["recorded_by"],
        )
        for row in rows
    ]


def record_expense(
    description: str,
    amount_cents: int,
    *,
    category: str = "general",
    recorded_by: str = "system",
    at: datetime | None = None,
    business_id: str | None = None,
) -> Expense:
    """Persist an expense and return it."""

    description = (description or "").strip()
    if not description:
        raise ValidationError("expense description is required")
    try:
        amount_cents = int(amount_cents)
    except (TypeError, ValueError) as exc:
        raise ValidationError("expense amount must be a whole number of cents") from exc
    if amount_cents <= 0:
        raise ValidationError("expense amount must be positive")

    business = business_id or current_business_id()
    category = (category or "").strip() or "general"
    recorded_by = (recorded_by or "").strip() or "system"

    with db_transaction() as conn:
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO expenses(business_id, ts, description, category, amount_cents, recorded_by)
            VALUES(?,?,?,?,?,?)
            """,
            (business, stamp(at), description, category, amount_cents, recorded_by),
        )
        expense_id = int(cur.lastrowid)
        log_action(
            recorded_by,
            "expense_record",
            entity_type="expense",
            entity_name=description,
            new_value=str(amount_cents),
            extra=category,
            conn=conn,
        )
        row = cur.execute(
            "SELECT id, ts, description, category, amount_cents, recorded_by FROM expenses WHERE id=?",
            (expense_id,),
        ).fetchone()
    return _rows_to_expenses([row])[0]


def list_expenses(
    start: datetime | None = None,
    end: datetime | None = None,
    *,
    business_id: str | None = None,
) -> list[Expense]:
    """Expenses with ``start <= ts < end``, oldest first. Open bounds are unbounded."""

    sql = "SELECT id, ts, description, category, amount_cents, recorded_by FROM expenses WHERE business_id=?"
    params: list = [business_id or current_business_id()]
    if start is not None:
        sql += " AND ts >= ?"
        params.append(stamp(start))
    if end is not None:
        sql += " AND ts < ?"
        params.append(stamp(end))
    sql += " ORDER BY ts, id"
    conn = get_conn()
    try:
        rows = conn.execute(sql, params).fetchall()
    finally:
        conn.close()
    return _rows_to_expenses(rows)
