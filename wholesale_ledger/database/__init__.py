# database/__init__.py
from __future__ import annotations

from contextlib import contextmanager
import logging
from pathlib import Path
import sqlite3
import threading
from typing import Iterator

from ..config import DB_PATH, READY_TIMEOUT
from ..constants import SCHEMA_VERSION
from . import schema as schema_module
from . import versioning
from .repositories.errors import DatabaseNotReadyError
from .seeders.default_data import seed as seed_default_data

_log = logging.getLogger(__name__)

MEMORY = ":memory:"


class Database:
    """
    Owns the single sqlite3 connection the repositories share.

      - isolation_level=None: transactions are explicit (see `transaction()`)
      - foreign_keys ON, WAL for file databases
      - row_factory = sqlite3.Row (rows behave like dicts and tuples)

    Callers that reach for `conn` before `open()` has finished block on a
    ready barrier instead of polling; after `ready_timeout` seconds they get
    DatabaseNotReadyError.
    """

    def __init__(self, db_path: Path | str | None = None, *, ready_timeout: float | None = None):
        self.db_path = db_path if db_path is not None else DB_PATH
        self.ready_timeout = READY_TIMEOUT if ready_timeout is None else ready_timeout
        self._conn: sqlite3.Connection | None = None
        self._ready = threading.Event()
        self._lock = threading.RLock()
        self._depth = 0
        self._savepoint_seq = 0

    # ---- lifecycle --------------------------------------------------------

    @property
    def is_memory(self) -> bool:
        return str(self.db_path) == MEMORY

    def open(self) -> "Database":
        """
        Connect, apply schema/version/seed data idempotently, then release
        everyone waiting on the ready barrier.
        """
        with self._lock:
            if self._ready.is_set():
                return self
            self._conn = self._connect()
            self._ready.set()
        _log.info("Database ready at %s (schema %s)", self.db_path, SCHEMA_VERSION)
        return self

    def _connect(self) -> sqlite3.Connection:
        if not self.is_memory:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(str(self.db_path), isolation_level=None, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        if not self.is_memory:
            conn.execute("PRAGMA journal_mode = WAL;")
        try:
            schema_module.apply_schema(conn)
            conn.execute("BEGIN IMMEDIATE")
            try:
                if versioning.needs_upgrade(conn, SCHEMA_VERSION):
                    versioning.set_current_version(conn, SCHEMA_VERSION)
                # Seeders should be safe to run repeatedly (idempotent).
                seed_default_data(conn)
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
        except Exception:
            conn.close()
            _log.exception("Failed to initialise database at %s", self.db_path)
            raise
        return conn

    def close(self) -> None:
        with self._lock:
            self._ready.clear()
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                _log.info("Database closed")

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    def wait_until_ready(self, timeout: float | None = None) -> None:
        """Block until `open()` completes; raise DatabaseNotReadyError on timeout."""
        wait_for = self.ready_timeout if timeout is None else timeout
        if not self._ready.wait(wait_for):
            raise DatabaseNotReadyError(
                f"Database at {self.db_path} not ready after {wait_for:g}s."
            )

    @property
    def conn(self) -> sqlite3.Connection:
        self.wait_until_ready()
        conn = self._conn
        if conn is None:
            raise DatabaseNotReadyError("Database connection is closed.")
        return conn

    # ---- statements -------------------------------------------------------

    def execute(self, sql: str, params=()) -> sqlite3.Cursor:
        conn = self.conn
        with self._lock:
            return conn.execute(sql, params)

    def query_all(self, sql: str, params=()) -> list[sqlite3.Row]:
        return self.execute(sql, params).fetchall()

    def query_one(self, sql: str, params=()) -> sqlite3.Row | None:
        return self.execute(sql, params).fetchone()

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        BEGIN IMMEDIATE ... COMMIT/ROLLBACK at the outermost level; nested
        calls become SAVEPOINTs so a failing inner block rolls back only
        itself unless the exception keeps propagating.
        """
        conn = self.conn
        with self._lock:
            savepoint = None
            if self._depth == 0:
                conn.execute("BEGIN IMMEDIATE")
            else:
                self._savepoint_seq += 1
                savepoint = f"sp_{self._savepoint_seq}"
                conn.execute(f"SAVEPOINT {savepoint}")
            self._depth += 1
            try:
                yield conn
            except BaseException:
                self._depth -= 1
                if savepoint is None:
                    conn.execute("ROLLBACK")
                else:
                    conn.execute(f"ROLLBACK TO SAVEPOINT {savepoint}")
                    conn.execute(f"RELEASE SAVEPOINT {savepoint}")
                raise
            else:
                self._depth -= 1
                if savepoint is None:
                    conn.execute("COMMIT")
                else:
                    conn.execute(f"RELEASE SAVEPOINT {savepoint}")

    def __enter__(self) -> "Database":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = [
    "Database",
    "DatabaseNotReadyError",
]
