"""Closing a tab: mark lines paid, stamp the invoice, free the table."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, List, Sequence

from ..core.bus import bus
from ..core.business import BusinessConfig
from ..core.config_store import current_business_id
from ..core.db import db_transaction, log_action, stamp
from ..core.errors import (
    AlreadySettledError,
    LineItemNotFoundError,
    ReconciliationError,
    ValidationError,
)
from ..core.money import percent_of
from ..core.outbox import Outbox, outbox as default_outbox
from .ledger import LineItem, OrderLedger, fetch_line_items
from .numbering import invoice_number_for
from .tables import TableSessionManager

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("cash", "card", "online")
_PAYMENT_ALIASES = {
    "efectivo": "cash",
    "tarjeta": "card",
    "paypal": "online",
}


def normalize_payment_method(value) -> str:
    """Map operator input ("Efectivo", "CARD", ...) to a stored method."""
    cleaned = str(value or "").strip().lower()
    method = _PAYMENT_ALIASES.get(cleaned, cleaned)
    if method not in PAYMENT_METHODS:
        raise ValidationError(
            f"unknown payment method '{value}', expected one of {', '.join(PAYMENT_METHODS)}"
        )
    return method


@dataclass(slots=True)
class SettlementResult:
    occupant: str
    items: List[LineItem] = field(default_factory=list)
    invoice_number: str = ""
    payment_method: str = "none"
    subtotal_cents: int = 0
    tip_cents: int = 0
    tax_cents: int = 0
    total_cents: int = 0
    table_released: bool = False


def _totals(result: SettlementResult, config: BusinessConfig) -> SettlementResult:
    subtotal = sum(item.total_cents for item in result.items)
    result.subtotal_cents = subtotal
    result.tip_cents = percent_of(subtotal, config.tip_pct)
    result.tax_cents = percent_of(subtotal, config.tax_pct)
    result.total_cents = subtotal + result.tip_cents + result.tax_cents
    return result


class SettlementProcessor:
    __slots__ = ("business_id", "ledger", "tables", "outbox", "clock")

    def __init__(
        self,
        business_id: str | None = None,
        *,
        ledger: OrderLedger | None = None,
        tables: TableSessionManager | None = None,
        outbox: Outbox | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.business_id = business_id or current_business_id()
        self.tables = tables or TableSessionManager(self.business_id)
        self.ledger = ledger or OrderLedger(self.business_id, tables=self.tables)
        self.outbox = outbox or default_outbox
        self.clock = clock or datetime.now

    def _validate(self, occupant: str, items: dict, requested: Sequence[int]) -> None:
        missing = [i for i in requested if i not in items]
        if missing:
            raise LineItemNotFoundError(missing)
        foreign = [i for i in requested if items[i].occupant != occupant]
        if foreign:
            raise ValidationError(
                f"order line(s) {', '.join(map(str, foreign))} do not belong to '{occupant}'"
            )
        closed = [i for i in requested if not items[i].is_pending]
        if closed:
            raise AlreadySettledError(closed)

    def _mark_paid(self, conn, line_id: int, occupant: str, method: str, invoice: str, paid_at: str) -> bool:
        cur = conn.execute(
            """UPDATE sale_line_items
                   SET status='paid', payment_method=?, invoice_number=?, paid_at=?
                   WHERE id=? AND business_id=? AND occupant=? AND status='pending'""",
            (method, invoice, paid_at, line_id, self.business_id, occupant),
        )
        return cur.rowcount == 1

    def settle(
        self,
        occupant: str,
        line_item_ids: Iterable[int],
        payment_method: str,
        *,
        cashier: str = "system",
    ) -> SettlementResult:
        """Pay the given lines of *occupant*'s tab in one transaction.

        Nothing is written when validation fails. If fewer lines than requested
        could be marked paid, the paid subset stays committed and
        :class:`ReconciliationError` reports both halves; the table is then
        left occupied.
        """
        occupant = (occupant or "").strip()
        requested: List[int] = []
        for raw in line_item_ids or ():
            line_id = int(raw)
            if line_id not in requested:
                requested.append(line_id)
        if not requested:
            raise ValidationError("select at least one order line to settle")
        method = normalize_payment_method(payment_method)
        now = self.clock()
        paid_at = stamp(now)

        with db_transaction() as conn:
            items = fetch_line_items(conn, self.business_id, requested)
            self._validate(occupant, items, requested)
            first = items[requested[0]]
            invoice = first.invoice_number or invoice_number_for(first.order_number, now)

            settled: List[int] = []
            unsettled: List[int] = []
            for line_id in requested:
                marked = self._mark_paid(conn, line_id, occupant, method, invoice, paid_at)
                (settled if marked else unsettled).append(line_id)
            if settled:
                log_action(
                    cashier,
                    "tab_settle",
                    "tab",
                    occupant,
                    None,
                    invoice,
                    extra=f"{method}:{','.join(map(str, settled))}",
                    conn=conn,
                )
            remaining = conn.execute(
                """SELECT COUNT(*) AS n FROM sale_line_items
                       WHERE business_id=? AND occupant=? AND status='pending'""",
                (self.business_id, occupant),
            ).fetchone()["n"]

        if unsettled:
            logger.error("partial settlement of '%s': paid %s, pending %s", occupant, settled, unsettled)
            raise ReconciliationError(occupant, settled, unsettled, invoice)

        released = False
        if not remaining:
            table = self.tables.find_by_name(occupant)
            if table is not None:
                self.tables.release(table.id, username=cashier)
                released = True

        paid_items = []
        for line_id in requested:
            item = items[line_id]
            item.status = "paid"
            item.payment_method = method
            item.invoice_number = invoice
            item.paid_at = datetime.fromisoformat(paid_at)
            paid_items.append(item)
        result = _totals(
            SettlementResult(
                occupant=occupant,
                items=paid_items,
                invoice_number=invoice,
                payment_method=method,
                table_released=released,
            ),
            BusinessConfig.load(),
        )
        logger.info("settled '%s' invoice %s (%s lines, %s cents)", occupant, invoice, len(paid_items), result.total_cents)
        self.outbox.submit(f"receipt:{invoice}", bus.emit, "tab_settled", result)
        bus.emit("table_total_changed", occupant, self.ledger.tab_subtotal_cents(occupant))
        return result

    def settle_tab(self, occupant: str, payment_method: str, *, cashier: str = "system") -> SettlementResult:
        """Pay every pending line currently on *occupant*'s tab."""
        items = self.ledger.list_open_items(occupant)
        if not items:
            raise ValidationError(f"'{occupant}' has nothing pending to settle")
        return self.settle(occupant, [item.id for item in items], payment_method, cashier=cashier)

    def preview(self, occupant: str) -> SettlementResult:
        result = SettlementResult(occupant=(occupant or "").strip(), items=self.ledger.list_open_items(occupant))
        return _totals(result, BusinessConfig.load())
