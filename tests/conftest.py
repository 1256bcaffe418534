"""Pytest configuration and fixtures."""

import os
import tempfile

# storage paths are resolved at import time
os.environ["MESA_POS_DATA_ROOT"] = tempfile.mkdtemp(prefix="mesa-pos-tests-")

import pytest

from mesa_pos.app import build_app
from mesa_pos.core.bus import bus
from mesa_pos.core.config_store import save_config
from mesa_pos.core.db import close_engine, db_transaction, get_conn, init_db, use_database
from mesa_pos.core.outbox import outbox

TABLE_NAMES = ["Mesa 1", "Mesa 2", "Mesa 10", "Barra 1"]


def seed_menu() -> dict:
    """Small menu with one recipe product, one ingredient-only product and one untracked product."""
    ids: dict = {}
    with db_transaction() as conn:
        cur = conn.cursor()
        for name, stock, minimum in (("Tortilla", 100, 10), ("Queso", 10, 2), ("Azucar", 5, 0)):
            cur.execute(
                "INSERT INTO inventory_items(business_id, name, stock_qty, min_stock) VALUES('default',?,?,?)",
                (name, stock, minimum),
            )
            ids[name] = cur.lastrowid
        for name, price, prep, station in (
            ("Baleada", 2500, 5, "kitchen"),
            ("Cafe", 3000, None, "bar"),
            ("Cerveza", 5000, 1, "bar"),
        ):
            cur.execute(
                "INSERT INTO products(business_id, name, price_cents, prep_minutes, station) VALUES('default',?,?,?,?)",
                (name, price, prep, station),
            )
            ids[name] = cur.lastrowid
        cur.execute(
            "INSERT INTO recipes(product_id, inventory_item_id, quantity) VALUES(?,?,1)",
            (ids["Baleada"], ids["Tortilla"]),
        )
        cur.execute(
            "INSERT INTO recipes(product_id, inventory_item_id, quantity) VALUES(?,?,0.5)",
            (ids["Baleada"], ids["Queso"]),
        )
        cur.execute(
            "INSERT INTO product_ingredients(product_id, inventory_item_id) VALUES(?,?)",
            (ids["Cafe"], ids["Azucar"]),
        )
        for name in TABLE_NAMES:
            cur.execute("INSERT INTO tables(business_id, name, capacity, available) VALUES('default',?,4,1)", (name,))
            ids[name] = cur.lastrowid
    return ids


def stock_of(item_id: int) -> float:
    conn = get_conn()
    try:
        return float(conn.execute("SELECT stock_qty FROM inventory_items WHERE id=?", (item_id,)).fetchone()[0])
    finally:
        conn.close()


def count_rows(table: str, where: str = "1=1", params: tuple = ()) -> int:
    conn = get_conn()
    try:
        return int(conn.execute(f"SELECT COUNT(*) FROM {table} WHERE {where}", params).fetchone()[0])
    finally:
        conn.close()


@pytest.fixture(scope="function")
def db(tmp_path):
    """Fresh database file per test."""
    save_config({})
    path = use_database(tmp_path / "pos.db")
    init_db()
    yield path
    assert outbox.drain(10.0)
    bus.clear()
    close_engine()


@pytest.fixture
def menu(db) -> dict:
    return seed_menu()


@pytest.fixture
def pos(menu):
    return build_app(print_tickets=False)


@pytest.fixture
def register(pos):
    """An open cash register session."""
    return pos.cashier.open("ana", 50000)
