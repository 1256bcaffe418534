"""SQLite helpers wired for durable multi-terminal storage."""
from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from threading import RLock
from typing import Optional, Tuple

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine

from .config_store import get_config_value, set_config_value
from .paths import DB_PATH, ensure_storage_dirs

_VALID_SYNC = {"OFF", "NORMAL", "FULL", "EXTRA"}
_DEFAULT_SYNC = "FULL"
_BUSY_TIMEOUT_SECONDS = 30

_ENGINE_LOCK = RLock()
_ENGINE: Optional[Engine] = None
_DB_PATH: Path = DB_PATH


def _current_sync() -> str:
    value = str(get_config_value("sqlite_synchronous", _DEFAULT_SYNC)).upper()
    if value not in _VALID_SYNC:
        value = _DEFAULT_SYNC
        set_config_value("sqlite_synchronous", value)
    return value


def _apply_pragmas(dbapi_conn, _):  # pragma: no cover - exercised via runtime
    dbapi_conn.row_factory = sqlite3.Row
    # explicit transactions via BEGIN
    dbapi_conn.isolation_level = None
    cursor = dbapi_conn.cursor()
    try:
        cursor.execute("PRAGMA foreign_keys = ON;")
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute(f"PRAGMA synchronous={_current_sync()};")
        cursor.execute(f"PRAGMA busy_timeout={_BUSY_TIMEOUT_SECONDS * 1000};")
        cursor.execute("PRAGMA temp_store=MEMORY;")
    finally:
        cursor.close()


def _build_engine(path: Path) -> Engine:
    path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(
        f"sqlite:///{path.as_posix()}",
        connect_args={"check_same_thread": False, "timeout": _BUSY_TIMEOUT_SECONDS},
    )
    event.listen(engine, "connect", _apply_pragmas)
    return engine


def get_engine() -> Engine:
    global _ENGINE
    with _ENGINE_LOCK:
        if _ENGINE is None:
            ensure_storage_dirs()
            _ENGINE = _build_engine(_DB_PATH)
        return _ENGINE


def use_database(path: Path | str) -> Path:
    """Point every subsequent connection at *path* (tests and tooling)."""
    global _DB_PATH
    with _ENGINE_LOCK:
        close_engine()
        _DB_PATH = Path(path)
    return _DB_PATH


def close_engine() -> None:
    global _ENGINE
    with _ENGINE_LOCK:
        if _ENGINE is not None:
            _ENGINE.dispose()
            _ENGINE = None


def get_conn():
    return get_engine().raw_connection()


@contextmanager
def db_transaction(begin_stmt: str = "BEGIN IMMEDIATE"):
    conn = get_conn()
    try:
        conn.execute(begin_stmt)
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def stamp(value: datetime | None = None) -> str:
    """ISO timestamp used for every persisted point in time."""
    return (value or datetime.now()).isoformat(timespec="microseconds")


def parse_stamp(raw: str | None) -> datetime | None:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        return datetime.strptime(raw, "%Y-%m-%d %H:%M:%S")


def init_db() -> None:
    conn = get_conn()
    try:
        cur = conn.cursor()
        cur.executescript(_SCHEMA)
        _ensure_line_item_columns(cur)
        _ensure_default_settings(cur)
    finally:
        conn.close()


_SCHEMA = """
CREATE TABLE IF NOT EXISTS settings(
    key TEXT PRIMARY KEY,
    value TEXT
);

CREATE TABLE IF NOT EXISTS products(
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    business_id TEXT NOT NULL,
    name TEXT NOT NULL,
    price_cents INTEGER NOT NULL CHECK(price_cents >= 0),
    prep_minutes INTEGER,
    station TEXT NOT NULL DEFAULT 'kitchen' CHECK(station in ('kitchen','bar')),
    product_type TEXT NOT NULL DEFAULT 'individual',
    UNIQUE(business_id, name)
);

CREATE TABLE IF NOT EXISTS inventory_items(
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    business_id TEXT NOT NULL,
    name TEXT NOT NULL,
    stock_qty REAL NOT NULL DEFAULT 0,
    min_stock REAL NOT NULL DEFAULT 0,
    UNIQUE(business_id, name)
);

CREATE TABLE IF NOT EXISTS recipes(
    product_id INTEGER NOT NULL,
    inventory_item_id INTEGER NOT NULL,
    quantity REAL NOT NULL CHECK(quantity > 0),
    PRIMARY KEY(product_id, inventory_item_id),
    FOREIGN KEY(product_id) REFERENCES products(id) ON DELETE CASCADE,
    FOREIGN KEY(inventory_item_id) REFERENCES inventory_items(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS product_ingredients(
    product_id INTEGER NOT NULL,
    inventory_item_id INTEGER NOT NULL,
    PRIMARY KEY(product_id, inventory_item_id),
    FOREIGN KEY(product_id) REFERENCES products(id) ON DELETE CASCADE,
    FOREIGN KEY(inventory_item_id) REFERENCES inventory_items(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS tables(
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    business_id TEXT NOT NULL,
    name TEXT NOT NULL,
    capacity INTEGER NOT NULL DEFAULT 4,
    available INTEGER NOT NULL DEFAULT 1 CHECK(available in (0,1)),
    UNIQUE(business_id, name)
);

CREATE TABLE IF NOT EXISTS sale_line_items(
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    business_id TEXT NOT NULL,
    order_number INTEGER NOT NULL,
    invoice_number TEXT NOT NULL DEFAULT '',
    occupant TEXT NOT NULL,
    order_type TEXT NOT NULL DEFAULT 'dine_in'
        CHECK(order_type in ('dine_in','takeout','delivery')),
    product_id INTEGER,
    product_name TEXT NOT NULL,
    quantity INTEGER NOT NULL CHECK(quantity >= 1),
    unit_price_cents INTEGER NOT NULL CHECK(unit_price_cents >= 0),
    total_cents INTEGER NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending' CHECK(status in ('pending','paid','cancelled')),
    payment_method TEXT NOT NULL DEFAULT 'none'
        CHECK(payment_method in ('none','cash','card','online')),
    notes TEXT NOT NULL DEFAULT '',
    cashier TEXT NOT NULL DEFAULT 'system',
    created_at TEXT NOT NULL,
    paid_at TEXT,
    CHECK(total_cents = quantity * unit_price_cents)
);

CREATE UNIQUE INDEX IF NOT EXISTS uq_line_items_pending_product
    ON sale_line_items(business_id, occupant, order_number, product_id)
    WHERE status='pending' AND product_id IS NOT NULL;

CREATE INDEX IF NOT EXISTS idx_line_items_occupant
    ON sale_line_items(business_id, occupant, status);

CREATE INDEX IF NOT EXISTS idx_line_items_paid_at
    ON sale_line_items(business_id, status, paid_at);

CREATE TABLE IF NOT EXISTS order_counters(
    business_id TEXT NOT NULL,
    period TEXT NOT NULL,
    last_number INTEGER NOT NULL,
    PRIMARY KEY(business_id, period)
);

CREATE TABLE IF NOT EXISTS cashier_sessions(
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    business_id TEXT NOT NULL,
    cashier TEXT NOT NULL,
    opened_at TEXT NOT NULL,
    closed_at TEXT,
    opening_cash_cents INTEGER NOT NULL DEFAULT 0,
    closing_cash_cents INTEGER,
    total_sales_cents INTEGER,
    total_expenses_cents INTEGER,
    net_utility_cents INTEGER,
    status TEXT NOT NULL CHECK(status in ('open','closed'))
);

CREATE UNIQUE INDEX IF NOT EXISTS uq_cashier_sessions_open
    ON cashier_sessions(business_id) WHERE status='open';

CREATE TABLE IF NOT EXISTS expenses(
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    business_id TEXT NOT NULL,
    ts TEXT NOT NULL,
    description TEXT NOT NULL,
    category TEXT NOT NULL DEFAULT 'general',
    amount_cents INTEGER NOT NULL CHECK(amount_cents > 0),
    recorded_by TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_expenses_ts ON expenses(business_id, ts);

CREATE TABLE IF NOT EXISTS prep_tickets(
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    business_id TEXT NOT NULL,
    order_number INTEGER NOT NULL,
    occupant TEXT NOT NULL,
    station TEXT NOT NULL,
    payload TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending' CHECK(status in ('pending','completed','cancelled')),
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS audit_log(
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    ts TEXT NOT NULL,
    username TEXT NOT NULL,
    action TEXT NOT NULL,
    entity_type TEXT,
    entity_name TEXT,
    old_value TEXT,
    new_value TEXT,
    extra TEXT
);
"""


def _ensure_line_item_columns(cur) -> None:
    cur.execute("PRAGMA table_info(sale_line_items)")
    cols = {row[1] for row in cur.fetchall()}
    if "paid_at" not in cols:
        cur.execute("ALTER TABLE sale_line_items ADD COLUMN paid_at TEXT")
    if "cashier" not in cols:
        cur.execute("ALTER TABLE sale_line_items ADD COLUMN cashier TEXT NOT NULL DEFAULT 'system'")


def _ensure_default_settings(cur) -> None:
    defaults = {
        "company_name": "Mesa POS",
        "currency": "HNL",
        "tip_pct": "0",
        "tax_pct": "0",
        "table_prefix": "Mesa",
        "bar_prefix": "Barra",
        "default_prep_minutes": "15",
    }
    for key, value in defaults.items():
        cur.execute(
            "INSERT OR IGNORE INTO settings(key,value) VALUES(?,?)",
            (key, value),
        )


def log_action(username, action, entity_type=None, entity_name=None, old_value=None, new_value=None, extra=None, conn=None):
    params = (
        stamp(),
        username,
        action,
        entity_type,
        entity_name,
        old_value,
        new_value,
        extra,
    )
    sql = """INSERT INTO audit_log(ts,username,action,entity_type,entity_name,old_value,new_value,extra)
                 VALUES(?,?,?,?,?,?,?,?)"""
    if conn is not None:
        conn.execute(sql, params)
        return
    with db_transaction() as own:
        own.execute(sql, params)


def setting_get(key: str, default: str = "") -> str:
    conn = get_conn()
    try:
        cur = conn.cursor()
        cur.execute("SELECT value FROM settings WHERE key=?", (key,))
        row = cur.fetchone()
        return row["value"] if row else default
    finally:
        conn.close()


def setting_get_int(key: str, default: int = 0) -> int:
    value = setting_get(key, None)  # type: ignore[arg-type]
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def setting_set(key: str, value: str) -> None:
    with db_transaction() as conn:
        conn.execute(
            "INSERT OR REPLACE INTO settings(key,value) VALUES(?,?)",
            (key, value),
        )


def run_integrity_check() -> str:
    conn = get_conn()
    try:
        row = conn.execute("PRAGMA integrity_check;").fetchone()
        return row[0] if row else "error"
    finally:
        conn.close()


def maybe_run_integrity_check(force: bool = False) -> Tuple[bool, str]:
    """Run ``PRAGMA integrity_check`` at most once a week unless *force*."""
    today = date.today()
    if not force:
        last = str(get_config_value("last_integrity_check", ""))
        if last:
            try:
                if (today - date.fromisoformat(last)).days < 7:
                    return True, ""
            except ValueError:
                pass
    result = run_integrity_check()
    set_config_value("last_integrity_check", today.isoformat())
    return result.strip().lower() == "ok", result
