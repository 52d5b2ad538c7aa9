# tests/conftest.py
# ---------------------------------------------------------------------
# Ground rules:
# - Every test gets its own file-backed SQLite DB under tmp_path
# - The DB is opened through LedgerApp (schema + seed data applied)
# - Handy fixtures: a category, two stock items, a client
# ---------------------------------------------------------------------

from __future__ import annotations

import pytest

from wholesale_ledger.app import LedgerApp


@pytest.fixture()
def app(tmp_path):
    with LedgerApp(tmp_path / "ledger.db") as a:
        yield a


@pytest.fixture()
def count(app):
    """count("table", "where ...", params) -> int"""
    def _count(table: str, where: str = "", params=()) -> int:
        sql = f"SELECT COUNT(*) AS n FROM {table}"
        if where:
            sql += f" WHERE {where}"
        return int(app.db.query_one(sql, params)["n"])
    return _count


@pytest.fixture()
def category(app):
    return app.categories.create("Grocery")


@pytest.fixture()
def rice(app, category):
    return app.stock.create(
        category.id, "Basmati Rice", "RICE-01",
        purchase_price=50.0, sale_price=70.0,
        current_quantity=100, min_stock_level=10, unit="kg",
    )


@pytest.fixture()
def oil(app, category):
    return app.stock.create(
        category.id, "Sunflower Oil", "OIL-01",
        barcode="8901234567890",
        purchase_price=100.0, sale_price=120.0,
        current_quantity=20, min_stock_level=5, unit="ltr", items_in_pack=12,
    )


@pytest.fixture()
def client(app):
    return app.clients.create("Ravi Kumar", "9000000001", "Kumar Stores", area="Market Road")
