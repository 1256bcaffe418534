"""Seed a demo menu, inventory, recipes and floor plan into a Mesa POS database."""

from __future__ import annotations

import argparse
from pathlib import Path

from mesa_pos.core.config_store import current_business_id
from mesa_pos.core.db import db_transaction, init_db, use_database

# name, price (cents), prep minutes, station, recipe {inventory item: qty per unit}
MENU = [
    ("Baleada sencilla", 2500, 5, "kitchen", {"Tortilla de harina": 1, "Frijoles": 0.1, "Queso": 0.05}),
    ("Baleada especial", 4500, 8, "kitchen", {"Tortilla de harina": 1, "Frijoles": 0.1, "Queso": 0.05, "Huevo": 1}),
    ("Pollo con tajadas", 12000, 20, "kitchen", {"Pollo": 0.25, "Platano": 1}),
    ("Sopa de caracol", 18000, 25, "kitchen", {}),
    ("Cafe", 3000, 3, "bar", {"Cafe molido": 0.02}),
    ("Horchata", 3500, 2, "bar", {}),
    ("Cerveza", 5000, 1, "bar", {"Cerveza": 1}),
]

INVENTORY = [
    ("Tortilla de harina", 200, 40),
    ("Frijoles", 20, 5),
    ("Queso", 10, 2),
    ("Huevo", 120, 24),
    ("Pollo", 30, 5),
    ("Platano", 80, 20),
    ("Cafe molido", 5, 1),
    ("Cerveza", 96, 24),
    ("Arroz", 25, 5),
]

# products priced without a recipe deplete one unit of each ingredient
INGREDIENTS = {"Horchata": ["Arroz"]}


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Seed demo data for Mesa POS.")
    p.add_argument("--db", type=Path, default=None, help="database file (default: configured data root)")
    p.add_argument("--business", default=None, help="business id (default: from config)")
    p.add_argument("--tables", type=int, default=8, help="number of dining tables")
    p.add_argument("--bar-seats", type=int, default=4, help="number of bar seats")
    return p


def seed(business_id: str, tables: int, bar_seats: int) -> None:
    with db_transaction() as conn:
        cur = conn.cursor()
        items: dict[str, int] = {}
        for name, stock, minimum in INVENTORY:
            cur.execute(
                """INSERT INTO inventory_items(business_id, name, stock_qty, min_stock) VALUES(?,?,?,?)
                       ON CONFLICT(business_id, name) DO UPDATE SET stock_qty=excluded.stock_qty""",
                (business_id, name, stock, minimum),
            )
            items[name] = cur.execute(
                "SELECT id FROM inventory_items WHERE business_id=? AND name=?", (business_id, name)
            ).fetchone()["id"]

        for name, price, prep, station, recipe in MENU:
            cur.execute(
                """INSERT INTO products(business_id, name, price_cents, prep_minutes, station) VALUES(?,?,?,?,?)
                       ON CONFLICT(business_id, name) DO UPDATE SET price_cents=excluded.price_cents""",
                (business_id, name, price, prep, station),
            )
            product_id = cur.execute(
                "SELECT id FROM products WHERE business_id=? AND name=?", (business_id, name)
            ).fetchone()["id"]
            for item_name, qty in recipe.items():
                cur.execute(
                    "INSERT OR REPLACE INTO recipes(product_id, inventory_item_id, quantity) VALUES(?,?,?)",
                    (product_id, items[item_name], qty),
                )
            for item_name in INGREDIENTS.get(name, []):
                cur.execute(
                    "INSERT OR IGNORE INTO product_ingredients(product_id, inventory_item_id) VALUES(?,?)",
                    (product_id, items[item_name]),
                )

        seats = [(f"Mesa {n}", 4) for n in range(1, tables + 1)]
        seats += [(f"Barra {n}", 1) for n in range(1, bar_seats + 1)]
        for name, capacity in seats:
            cur.execute(
                "INSERT OR IGNORE INTO tables(business_id, name, capacity, available) VALUES(?,?,?,1)",
                (business_id, name, capacity),
            )


def main() -> None:
    args = build_parser().parse_args()
    if args.db is not None:
        use_database(args.db.expanduser().resolve())
    init_db()
    business = args.business or current_business_id()
    seed(business, max(0, args.tables), max(0, args.bar_seats))
    print(f"Seeded {len(MENU)} products, {len(INVENTORY)} inventory items, "
          f"{args.tables} tables and {args.bar_seats} bar seats for '{business}'")


if __name__ == "__main__":
    main()
