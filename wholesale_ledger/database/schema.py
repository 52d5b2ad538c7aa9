from __future__ import annotations

from pathlib import Path
import sqlite3
import sys

SQL = r"""
PRAGMA foreign_keys = ON;

/* ======================== CATALOGUE ======================== */

/* -------- product taxonomy -------- */
CREATE TABLE IF NOT EXISTS categories (
    id          TEXT PRIMARY KEY,
    name        TEXT NOT NULL,
    parent_id   TEXT,
    level       INTEGER NOT NULL DEFAULT 0 CHECK (level >= 0),
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL,
    FOREIGN KEY (parent_id) REFERENCES categories(id) ON DELETE RESTRICT
);
CREATE INDEX IF NOT EXISTS idx_categories_parent ON categories(parent_id);

/* -------- stock -------- */
CREATE TABLE IF NOT EXISTS stock_items (
    id                  TEXT PRIMARY KEY,
    category_id         TEXT NOT NULL,
    name                TEXT NOT NULL,
    sku                 TEXT NOT NULL UNIQUE,
    barcode             TEXT UNIQUE,
    purchase_price      REAL NOT NULL DEFAULT 0 CHECK (purchase_price >= 0),
    discountable_price  REAL NOT NULL DEFAULT 0 CHECK (discountable_price >= 0),
    sale_price          REAL NOT NULL DEFAULT 0 CHECK (sale_price >= 0),
    current_quantity    REAL NOT NULL DEFAULT 0 CHECK (current_quantity >= 0),
    min_stock_level     REAL NOT NULL DEFAULT 0 CHECK (min_stock_level >= 0),
    unit                TEXT NOT NULL DEFAULT 'pcs',
    /* added via migration for old DBs; present by default for new DBs */
    items_in_pack       INTEGER CHECK (items_in_pack IS NULL OR items_in_pack > 0),
    supplier_id         TEXT,
    description         TEXT,
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL,
    deleted_at          TEXT,
    FOREIGN KEY (category_id) REFERENCES categories(id) ON DELETE RESTRICT
);
CREATE INDEX IF NOT EXISTS idx_stock_items_category ON stock_items(category_id);
CREATE INDEX IF NOT EXISTS idx_stock_items_deleted ON stock_items(deleted_at);

CREATE TABLE IF NOT EXISTS stock_movements (
    id             TEXT PRIMARY KEY,
    stock_item_id  TEXT NOT NULL,
    type           TEXT NOT NULL CHECK (type IN ('IN','OUT','ADJUSTMENT')),
    quantity       REAL NOT NULL CHECK (quantity >= 0),
    reason         TEXT NOT NULL,
    reference      TEXT,
    performed_by   TEXT NOT NULL,
    created_at     TEXT NOT NULL,
    FOREIGN KEY (stock_item_id) REFERENCES stock_items(id) ON DELETE RESTRICT
);
CREATE INDEX IF NOT EXISTS idx_stock_movements_item ON stock_movements(stock_item_id, created_at);
CREATE INDEX IF NOT EXISTS idx_stock_movements_reference ON stock_movements(reference);

/* ======================== PARTIES & LEDGER ======================== */

CREATE TABLE IF NOT EXISTS clients (
    id                    TEXT PRIMARY KEY,
    name                  TEXT NOT NULL,
    phone                 TEXT NOT NULL UNIQUE,
    shop_name             TEXT NOT NULL,
    whatsapp              TEXT,
    email                 TEXT,
    dob                   TEXT,
    address               TEXT,
    area                  TEXT,
    balance               REAL NOT NULL DEFAULT 0,
    total_business_value  REAL NOT NULL DEFAULT 0 CHECK (total_business_value >= 0),
    created_at            TEXT NOT NULL,
    updated_at            TEXT NOT NULL,
    deleted_at            TEXT
);
CREATE INDEX IF NOT EXISTS idx_clients_deleted ON clients(deleted_at);

CREATE TABLE IF NOT EXISTS invoices (
    id              TEXT PRIMARY KEY,
    invoice_number  TEXT NOT NULL UNIQUE,
    client_id       TEXT NOT NULL,
    subtotal        REAL NOT NULL CHECK (subtotal >= 0),
    discount        REAL NOT NULL DEFAULT 0 CHECK (discount >= 0),
    tax             REAL NOT NULL DEFAULT 0 CHECK (tax >= 0),
    total           REAL NOT NULL CHECK (total >= 0),
    amount_paid     REAL NOT NULL DEFAULT 0 CHECK (amount_paid >= 0),
    paid_at_creation REAL NOT NULL DEFAULT 0 CHECK (paid_at_creation >= 0),
    amount_due      REAL NOT NULL,
    status          TEXT NOT NULL CHECK (status IN ('UNPAID','PARTIAL','PAID')),
    notes           TEXT,
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL,
    FOREIGN KEY (client_id) REFERENCES clients(id) ON DELETE RESTRICT
);
CREATE INDEX IF NOT EXISTS idx_invoices_client ON invoices(client_id, created_at);
CREATE INDEX IF NOT EXISTS idx_invoices_status ON invoices(status);

CREATE TABLE IF NOT EXISTS invoice_items (
    id               TEXT PRIMARY KEY,
    invoice_id       TEXT NOT NULL,
    stock_item_id    TEXT NOT NULL,
    stock_item_name  TEXT NOT NULL,
    quantity         REAL NOT NULL CHECK (quantity > 0),
    unit_price       REAL NOT NULL CHECK (unit_price >= 0),
    total            REAL NOT NULL,
    FOREIGN KEY (invoice_id) REFERENCES invoices(id) ON DELETE CASCADE,
    FOREIGN KEY (stock_item_id) REFERENCES stock_items(id) ON DELETE RESTRICT
);
CREATE INDEX IF NOT EXISTS idx_invoice_items_invoice ON invoice_items(invoice_id);

CREATE TABLE IF NOT EXISTS ledger_entries (
    id           TEXT PRIMARY KEY,
    client_id    TEXT NOT NULL,
    date         TEXT NOT NULL,
    type         TEXT NOT NULL CHECK (type IN ('SALE','PAYMENT','ADJUSTMENT','RETURN')),
    description  TEXT NOT NULL,
    debit        REAL NOT NULL DEFAULT 0 CHECK (debit >= 0),
    credit       REAL NOT NULL DEFAULT 0 CHECK (credit >= 0),
    balance      REAL NOT NULL,
    invoice_id   TEXT,
    notes        TEXT,
    is_receipt   INTEGER NOT NULL DEFAULT 0 CHECK (is_receipt IN (0,1)),  -- money received via record_payment
    created_at   TEXT NOT NULL,
    FOREIGN KEY (client_id) REFERENCES clients(id) ON DELETE RESTRICT,
    FOREIGN KEY (invoice_id) REFERENCES invoices(id) ON DELETE RESTRICT
);
CREATE INDEX IF NOT EXISTS idx_ledger_entries_client ON ledger_entries(client_id, date, created_at);
CREATE INDEX IF NOT EXISTS idx_ledger_entries_invoice ON ledger_entries(invoice_id);

CREATE TABLE IF NOT EXISTS ledger_items (
    id               TEXT PRIMARY KEY,
    ledger_entry_id  TEXT NOT NULL,
    stock_item_id    TEXT NOT NULL,
    stock_item_name  TEXT NOT NULL,
    quantity         REAL NOT NULL CHECK (quantity > 0),
    unit_price       REAL NOT NULL CHECK (unit_price >= 0),
    total            REAL NOT NULL,
    FOREIGN KEY (ledger_entry_id) REFERENCES ledger_entries(id) ON DELETE CASCADE,
    FOREIGN KEY (stock_item_id) REFERENCES stock_items(id) ON DELETE RESTRICT
);
CREATE INDEX IF NOT EXISTS idx_ledger_items_entry ON ledger_items(ledger_entry_id);

/* ======================== EXPENSES & SETTINGS ======================== */

CREATE TABLE IF NOT EXISTS expense_categories (
    id          TEXT PRIMARY KEY,
    name        TEXT NOT NULL UNIQUE,
    icon        TEXT,
    color       TEXT,
    created_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS expenses (
    id                   TEXT PRIMARY KEY,
    category_id          TEXT NOT NULL,
    amount               REAL NOT NULL CHECK (amount >= 0),
    description          TEXT NOT NULL,
    date                 TEXT NOT NULL,
    is_recurring         INTEGER NOT NULL DEFAULT 0 CHECK (is_recurring IN (0,1)),
    recurring_frequency  TEXT CHECK (recurring_frequency IS NULL OR recurring_frequency IN ('DAILY','WEEKLY','MONTHLY')),
    notes                TEXT,
    created_at           TEXT NOT NULL,
    updated_at           TEXT NOT NULL,
    FOREIGN KEY (category_id) REFERENCES expense_categories(id) ON DELETE RESTRICT
);
CREATE INDEX IF NOT EXISTS idx_expenses_date ON expenses(date);
CREATE INDEX IF NOT EXISTS idx_expenses_category ON expenses(category_id);

CREATE TABLE IF NOT EXISTS settings (
    id             INTEGER PRIMARY KEY CHECK (id = 1),
    business_name  TEXT NOT NULL,
    owner_name     TEXT,
    phone          TEXT,
    address        TEXT,
    gst_number     TEXT,
    currency       TEXT NOT NULL DEFAULT 'INR',
    date_format    TEXT NOT NULL DEFAULT 'DD/MM/YYYY',
    updated_at     TEXT
);

/* ======================== APPEND-ONLY GUARDS ======================== */
DROP TRIGGER IF EXISTS trg_ledger_entries_no_update;
CREATE TRIGGER trg_ledger_entries_no_update
BEFORE UPDATE ON ledger_entries
FOR EACH ROW
BEGIN
  SELECT RAISE(ABORT, 'ledger entries are append-only');
END;

DROP TRIGGER IF EXISTS trg_ledger_entries_no_delete;
CREATE TRIGGER trg_ledger_entries_no_delete
BEFORE DELETE ON ledger_entries
FOR EACH ROW
BEGIN
  SELECT RAISE(ABORT, 'ledger entries are append-only');
END;

DROP TRIGGER IF EXISTS trg_stock_movements_no_update;
CREATE TRIGGER trg_stock_movements_no_update
BEFORE UPDATE ON stock_movements
FOR EACH ROW
BEGIN
  SELECT RAISE(ABORT, 'stock movements are append-only');
END;

DROP TRIGGER IF EXISTS trg_stock_movements_no_delete;
CREATE TRIGGER trg_stock_movements_no_delete
BEFORE DELETE ON stock_movements
FOR EACH ROW
BEGIN
  SELECT RAISE(ABORT, 'stock movements are append-only');
END;

/* amount_paid never decreases and PAID is terminal */
DROP TRIGGER IF EXISTS trg_invoices_paid_monotonic;
CREATE TRIGGER trg_invoices_paid_monotonic
BEFORE UPDATE OF amount_paid, status ON invoices
FOR EACH ROW
BEGIN
  SELECT CASE
    WHEN NEW.amount_paid < OLD.amount_paid THEN RAISE(ABORT, 'amount_paid cannot decrease')
    WHEN OLD.status = 'PAID' AND NEW.status <> 'PAID' THEN RAISE(ABORT, 'PAID invoices cannot be reopened')
    ELSE 1
  END;
END;
"""


def _ensure_stock_items_in_pack(conn: sqlite3.Connection) -> None:
    """
    Safe migration for older DBs that created `stock_items` before `items_in_pack` existed.
    Adds the column if missing. No-op if already present.
    """
    cur = conn.execute("PRAGMA table_info(stock_items);")
    cols = {row[1] for row in cur.fetchall()}  # row[1] = name
    if "items_in_pack" not in cols:
        conn.execute(
            "ALTER TABLE stock_items "
            "ADD COLUMN items_in_pack INTEGER CHECK (items_in_pack IS NULL OR items_in_pack > 0);"
        )


def _ensure_settlement_columns(conn: sqlite3.Connection) -> None:
    """
    Safe migration for DBs created before cash receipts were tracked:
    `invoices.paid_at_creation` and `ledger_entries.is_receipt`.
    Existing rows keep the defaults (0); no-op once the columns exist.
    """
    invoice_cols = {row[1] for row in conn.execute("PRAGMA table_info(invoices);").fetchall()}
    if "paid_at_creation" not in invoice_cols:
        conn.execute(
            "ALTER TABLE invoices "
            "ADD COLUMN paid_at_creation REAL NOT NULL DEFAULT 0 CHECK (paid_at_creation >= 0);"
        )
    entry_cols = {row[1] for row in conn.execute("PRAGMA table_info(ledger_entries);").fetchall()}
    if "is_receipt" not in entry_cols:
        conn.execute(
            "ALTER TABLE ledger_entries "
            "ADD COLUMN is_receipt INTEGER NOT NULL DEFAULT 0 CHECK (is_receipt IN (0,1));"
        )


def apply_schema(conn: sqlite3.Connection) -> None:
    """Apply the (idempotent) schema and backfill migrations on an open connection."""
    conn.executescript(SQL)
    _ensure_stock_items_in_pack(conn)
    _ensure_settlement_columns(conn)


def init_schema(db_path: Path | str) -> None:
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    try:
        conn.execute("PRAGMA journal_mode=WAL;")
        apply_schema(conn)
        conn.commit()
    finally:
        conn.close()


if __name__ == "__main__":
    from ..config import DB_PATH

    target = sys.argv[1] if len(sys.argv) > 1 else DB_PATH
    init_schema(target)
    print(f"DB applied to {target}")
