from __future__ import annotations

import sqlite3

from ...utils.helpers import now_str
from ...utils.id_generator import generate_uuid

DEFAULT_SETTINGS = {
    "business_name": "Dream Traders",
    "owner_name": None,
    "phone": None,
    "address": None,
    "gst_number": None,
    "currency": "INR",
    "date_format": "DD/MM/YYYY",
}

# (name, icon, color)
DEFAULT_EXPENSE_CATEGORIES = [
    ("Food & Dining", "restaurant", "#FF6B6B"),
    ("Petrol & Transport", "car", "#4ECDC4"),
    ("Bills & Utilities", "receipt", "#45B7D1"),
    ("Miscellaneous", "ellipsis-horizontal", "#96CEB4"),
]


def seed(conn: sqlite3.Connection) -> None:
    # single settings row
    row = conn.execute("SELECT COUNT(*) AS n FROM settings").fetchone()
    if row and row["n"] == 0:
        conn.execute(
            """
            INSERT INTO settings(id, business_name, owner_name, phone, address,
                                 gst_number, currency, date_format, updated_at)
            VALUES (1, :business_name, :owner_name, :phone, :address,
                    :gst_number, :currency, :date_format, NULL)
            """,
            DEFAULT_SETTINGS,
        )

    # expense categories only on an empty table, so user deletions stick
    row = conn.execute("SELECT COUNT(*) AS n FROM expense_categories").fetchone()
    if row and row["n"] == 0:
        ts = now_str()
        conn.executemany(
            "INSERT INTO expense_categories(id, name, icon, color, created_at) VALUES (?, ?, ?, ?, ?)",
            [(generate_uuid(), name, icon, color, ts) for name, icon, color in DEFAULT_EXPENSE_CATEGORIES],
        )
