# tests/test_database.py
import sqlite3
import threading
import time

import pytest

from wholesale_ledger.app import LedgerApp
from wholesale_ledger.constants import SCHEMA_VERSION
from wholesale_ledger.database import Database, DatabaseNotReadyError
from wholesale_ledger.database import schema, versioning


def _add_category(conn, cat_id, name):
    conn.execute(
        "INSERT INTO categories(id, name, parent_id, level, created_at, updated_at) "
        "VALUES (?, ?, NULL, 0, '2025-01-01', '2025-01-01')",
        (cat_id, name),
    )


# ---------------------------------------------------------------------
# D1. Ready barrier
# ---------------------------------------------------------------------
def test_d1_access_before_open_times_out(tmp_path):
    db = Database(tmp_path / "ledger.db", ready_timeout=0.05)
    assert not db.is_ready
    with pytest.raises(DatabaseNotReadyError):
        db.query_one("SELECT 1")


def test_d2_waiting_thread_released_by_open(tmp_path):
    db = Database(tmp_path / "ledger.db")
    released = threading.Event()

    def waiter():
        db.wait_until_ready(timeout=5)
        released.set()

    t = threading.Thread(target=waiter)
    t.start()
    assert not released.is_set()
    db.open()
    t.join(timeout=5)
    try:
        assert released.is_set()
        assert db.query_one("SELECT 1 AS one")["one"] == 1
    finally:
        db.close()


def test_d3_close_clears_the_barrier(tmp_path):
    db = Database(tmp_path / "ledger.db", ready_timeout=0.01).open()
    assert db.is_ready
    db.close()
    assert not db.is_ready
    with pytest.raises(DatabaseNotReadyError):
        _ = db.conn


# ---------------------------------------------------------------------
# D4. Reopen: data kept, seeds not duplicated, version recorded
# ---------------------------------------------------------------------
def test_d4_reopen_is_idempotent(tmp_path):
    path = tmp_path / "ledger.db"
    with LedgerApp(path) as app:
        client = app.clients.create("Ravi Kumar", "9000000001", "Kumar Stores")
        app.settings.update(business_name="Kumar Wholesale")

    with LedgerApp(path) as app:
        assert app.clients.get(client.id).shop_name == "Kumar Stores"
        assert app.settings.get().business_name == "Kumar Wholesale"
        assert len(app.expenses.list_categories()) == 4
        assert app.db.query_one("SELECT COUNT(*) AS n FROM settings")["n"] == 1
        assert versioning.get_current_version(app.db.conn) == SCHEMA_VERSION


def test_d5_in_memory_database():
    with LedgerApp(":memory:") as app:
        assert app.db.is_memory
        cat = app.categories.create("Grocery")
        assert app.categories.get(cat.id).name == "Grocery"


# ---------------------------------------------------------------------
# D6. Transactions and savepoints
# ---------------------------------------------------------------------
def test_d6_inner_failure_rolls_back_only_the_savepoint(app):
    with app.db.transaction() as conn:
        _add_category(conn, "c-outer", "Outer")
        with pytest.raises(RuntimeError):
            with app.db.transaction() as inner:
                assert app.db.in_transaction
                _add_category(inner, "c-inner", "Inner")
                raise RuntimeError("inner failed")

    assert not app.db.in_transaction
    assert app.categories.get("c-outer") is not None
    assert app.categories.get("c-inner") is None


def test_d7_outer_failure_rolls_back_everything(app):
    with pytest.raises(RuntimeError):
        with app.db.transaction() as conn:
            _add_category(conn, "c-outer", "Outer")
            with app.db.transaction() as inner:
                _add_category(inner, "c-inner", "Inner")
            raise RuntimeError("outer failed")

    assert app.categories.get("c-outer") is None
    assert app.categories.get("c-inner") is None


# ---------------------------------------------------------------------
# D8. Schema guards and migrations
# ---------------------------------------------------------------------
def test_d8_history_tables_are_append_only(app, client, rice):
    app.clients.append_entry(client.id, entry_type="SALE", description="Sale", debit=100)

    with pytest.raises(sqlite3.DatabaseError):
        app.db.execute("UPDATE ledger_entries SET debit = 1")
    with pytest.raises(sqlite3.DatabaseError):
        app.db.execute("DELETE FROM ledger_entries")
    with pytest.raises(sqlite3.DatabaseError):
        app.db.execute("UPDATE stock_movements SET quantity = 1")
    with pytest.raises(sqlite3.DatabaseError):
        app.db.execute("DELETE FROM stock_movements")


def test_d9_items_in_pack_migration(tmp_path):
    conn = sqlite3.connect(tmp_path / "old.db")
    try:
        conn.execute("CREATE TABLE stock_items (id TEXT PRIMARY KEY, name TEXT NOT NULL)")
        schema._ensure_stock_items_in_pack(conn)
        cols = {row[1] for row in conn.execute("PRAGMA table_info(stock_items)")}
        assert "items_in_pack" in cols

        # second run is a no-op
        schema._ensure_stock_items_in_pack(conn)
    finally:
        conn.close()


def test_d10_concurrent_open_connects_once(tmp_path, monkeypatch):
    db = Database(tmp_path / "ledger.db")
    calls = []
    real_connect = Database._connect

    def slow_connect(self):
        calls.append(threading.current_thread().name)
        time.sleep(0.05)
        return real_connect(self)

    monkeypatch.setattr(Database, "_connect", slow_connect)
    threads = [threading.Thread(target=db.open) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)
    try:
        assert len(calls) == 1
        assert db.is_ready
    finally:
        db.close()


def test_d11_settlement_columns_migration(tmp_path):
    conn = sqlite3.connect(tmp_path / "old.db")
    try:
        conn.execute("CREATE TABLE invoices (id TEXT PRIMARY KEY, amount_paid REAL NOT NULL DEFAULT 0)")
        conn.execute("CREATE TABLE ledger_entries (id TEXT PRIMARY KEY, credit REAL NOT NULL DEFAULT 0)")
        conn.execute("INSERT INTO invoices(id, amount_paid) VALUES ('i1', 40)")
        schema._ensure_settlement_columns(conn)
        schema._ensure_settlement_columns(conn)

        assert "paid_at_creation" in {row[1] for row in conn.execute("PRAGMA table_info(invoices)")}
        assert "is_receipt" in {row[1] for row in conn.execute("PRAGMA table_info(ledger_entries)")}
        assert conn.execute("SELECT paid_at_creation FROM invoices").fetchone()[0] == 0
    finally:
        conn.close()
