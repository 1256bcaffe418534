"""Application bootstrap wiring for Mesa POS terminals."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .core.bus import bus
from .core.config_store import current_business_id, get_config_flag
from .core.db import close_engine, init_db, maybe_run_integrity_check
from .core.log import configure_logging
from .core.outbox import outbox
from .services.cashier import CashierSessionTracker
from .services.catalog import MenuCatalog
from .services.inventory import InventoryCoordinator
from .services.kitchen import KitchenQueue
from .services.ledger import OrderLedger
from .services.numbering import NumberingService
from .services.orders import OrderService
from .services.printer import TicketPrinter
from .services.settlement import SettlementProcessor
from .services.tables import TableSessionManager

logger = logging.getLogger(__name__)


@dataclass(slots=True, weakref_slot=True)
class PosApp:
    business_id: str
    catalog: MenuCatalog
    tables: TableSessionManager
    numbering: NumberingService
    inventory: InventoryCoordinator
    ledger: OrderLedger
    settlement: SettlementProcessor
    cashier: CashierSessionTracker
    orders: OrderService
    kitchen: KitchenQueue
    printer: Optional[TicketPrinter] = None

    def on_settled(self, result) -> None:
        if self.printer is not None:
            self.printer.print_receipt(result)


def build_app(business_id: str | None = None, *, print_tickets: bool | None = None) -> PosApp:
    """Construct the services over the current database and subscribe the consumers."""
    business = business_id or current_business_id()
    catalog = MenuCatalog(business)
    tables = TableSessionManager(business)
    numbering = NumberingService(business)
    inventory = InventoryCoordinator(business, outbox=outbox)
    ledger = OrderLedger(business, catalog=catalog, inventory=inventory, tables=tables)
    settlement = SettlementProcessor(business, ledger=ledger, tables=tables, outbox=outbox)
    cashier = CashierSessionTracker(business)
    orders = OrderService(
        business,
        catalog=catalog,
        tables=tables,
        numbering=numbering,
        ledger=ledger,
        settlement=settlement,
        cashier=cashier,
        outbox=outbox,
    )
    app = PosApp(
        business_id=business,
        catalog=catalog,
        tables=tables,
        numbering=numbering,
        inventory=inventory,
        ledger=ledger,
        settlement=settlement,
        cashier=cashier,
        orders=orders,
        kitchen=KitchenQueue(business),
    )
    if print_tickets is None:
        print_tickets = get_config_flag("print_tickets", False)
    if print_tickets:
        app.printer = TicketPrinter()
        bus.subscribe("prep_ticket", app.printer.print_ticket)
        bus.subscribe("tab_settled", app.on_settled)
    bus.subscribe("prep_ticket", app.kitchen.enqueue)
    return app


def bootstrap(business_id: str | None = None, *, print_tickets: bool | None = None) -> PosApp:
    configure_logging()
    init_db()
    ok, result = maybe_run_integrity_check()
    if not ok:
        logger.error("database integrity check failed: %s", result)
    app = build_app(business_id, print_tickets=print_tickets)
    logger.info("Mesa POS ready for business '%s'", app.business_id)
    return app


def shutdown(timeout: float = 10.0) -> None:
    if not outbox.drain(timeout):
        logger.warning("outbound jobs still pending at shutdown")
    outbox.shutdown()
    close_engine()
