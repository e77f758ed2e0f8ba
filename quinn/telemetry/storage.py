"""Durable key-value media for the telemetry store.

The store only needs ``get(key)`` / ``set(key, value)`` with string values.
``SQLiteStorage`` keeps everything in a single ``kv`` table; ``MemoryStorage``
is the in-process fallback used when no database path is configured (and in
tests). All SQL uses parameterized queries.
"""

import logging
import sqlite3
from typing import Protocol

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS kv (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


class KeyValueStorage(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


class MemoryStorage:
    """Dict-backed medium. Contents live as long as the process."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


class SQLiteStorage:
    """SQLite-backed medium with WAL mode.

    A single connection is held for the lifetime of the object, opened with
    check_same_thread=False so the API's worker threads and the scheduler's
    event loop can share it. Each ``set`` commits immediately.
    """

    def __init__(self, db_path: str) -> None:
        if not db_path:
            msg = "SQLite storage needs a database path (STORE_DB_PATH is empty)"
            raise ValueError(msg)
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA_SQL)

    def get(self, key: str) -> str | None:
        row = self._conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        value: str = row[0]
        return value

    def set(self, key: str, value: str) -> None:
        self._conn.execute(
            "INSERT INTO kv (key, value) VALUES (?, ?) ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, value),
        )
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()


def open_storage(db_path: str | None = None) -> KeyValueStorage:
    """Open SQLite storage when a path is given, otherwise an in-memory medium."""
    if not db_path:
        logger.info("No store database configured — telemetry history is in-memory only")
        return MemoryStorage()
    logger.info("Opening telemetry store at %s", db_path)
    return SQLiteStorage(db_path)
