from __future__ import annotations

import logging
import sqlite3

from ..constants import TABLE_SCHEMA_VERSION
from ..utils.helpers import now_str

_log = logging.getLogger(__name__)

_DDL = f"""
CREATE TABLE IF NOT EXISTS {TABLE_SCHEMA_VERSION} (
    id          INTEGER PRIMARY KEY CHECK (id = 1),
    version     TEXT NOT NULL,
    applied_at  TEXT
);
"""


def get_current_version(conn: sqlite3.Connection) -> str | None:
    conn.execute(_DDL)
    row = conn.execute(f"SELECT version FROM {TABLE_SCHEMA_VERSION} WHERE id = 1").fetchone()
    return row[0] if row else None


def needs_upgrade(conn: sqlite3.Connection, target: str) -> bool:
    return get_current_version(conn) != target


def set_current_version(conn: sqlite3.Connection, version: str) -> None:
    """Record `version`; the caller owns the surrounding transaction."""
    previous = get_current_version(conn)
    conn.execute(
        f"INSERT INTO {TABLE_SCHEMA_VERSION}(id, version, applied_at) VALUES (1, ?, ?) "
        "ON CONFLICT(id) DO UPDATE SET version = excluded.version, applied_at = excluded.applied_at",
        (version, now_str()),
    )
    _log.info("Schema version %s -> %s", previous or "(none)", version)
