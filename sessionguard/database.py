"""
Durable Key-Value Storage.

The session core needs exactly three storage operations: ``get``,
``set`` and ``remove`` on string keys.  This module provides the
protocol and two implementations:

- **SQLiteStorage**: a single ``kv_store`` table in a local SQLite
  file.  Used by the desktop entry point.
- **MemoryStorage**: a dict.  Used by tests and by embedders that
  bring their own persistence.

The module only manages the raw storage; what is written (and whether
it is encrypted) is decided by ``SessionCacheService``.

Usage (dependency injection at app startup)::

    from sessionguard.database import SQLiteStorage
    from sessionguard.logger import StructuredLogger

    storage = SQLiteStorage(
        sqlite_path=Path("sessionguard_local.db"),
        logger=StructuredLogger(name="sessionguard.storage"),
    )
"""

from __future__ import annotations

import sqlite3
import threading
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from sessionguard.logger import StructuredLogger


@runtime_checkable
class KeyValueStorage(Protocol):
    """Durable string key-value storage."""

    def get(self, key: str) -> Optional[str]: ...  # noqa: E704

    def set(self, key: str, value: str) -> None: ...  # noqa: E704

    def remove(self, key: str) -> None: ...  # noqa: E704


class MemoryStorage:
    """In-process ``KeyValueStorage``; contents vanish with the process."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def __contains__(self, key: object) -> bool:
        return key in self._data


class SQLiteStorage:
    """``KeyValueStorage`` backed by one SQLite table.

    Parameters
    ----------
    sqlite_path:
        Filesystem path for the SQLite database file.  ``":memory:"``
        is accepted for throwaway stores.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    """

    _DDL: str = """
        CREATE TABLE IF NOT EXISTS kv_store (
            key        TEXT PRIMARY KEY,
            value      TEXT NOT NULL,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
    """

    def __init__(self, sqlite_path: Path, logger: StructuredLogger) -> None:
        self._logger: StructuredLogger = logger
        self._write_lock: threading.RLock = threading.RLock()
        self._conn: Optional[sqlite3.Connection] = self._connect_sqlite(sqlite_path)
        self._conn.execute(self._DDL)
        self._conn.commit()

    # ------------------------------------------------------------------
    # KeyValueStorage
    # ------------------------------------------------------------------

    def get(self, key: str) -> Optional[str]:
        row = self._connection.execute(
            "SELECT value FROM kv_store WHERE key = ?", (key,),
        ).fetchone()
        return None if row is None else str(row["value"])

    def set(self, key: str, value: str) -> None:
        with self._write_lock:
            self._connection.execute(
                """
                INSERT INTO kv_store (key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET
                    value      = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, value),
            )
            self._connection.commit()

    def remove(self, key: str) -> None:
        with self._write_lock:
            self._connection.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            self._connection.commit()

    # ------------------------------------------------------------------
    # Lifecycle helpers
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the SQLite connection.

        Safe to call multiple times; subsequent calls are no-ops.
        """
        with self._write_lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                self._logger.info("SQLite storage closed.")

    @property
    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("SQLite storage has been closed.")
        return self._conn

    def _connect_sqlite(self, path: Path) -> sqlite3.Connection:
        """Open (or create) the SQLite database.

        Raises
        ------
        PermissionError
            If the OS denies access to the database file or its directory.
        """
        try:
            conn = sqlite3.connect(str(path), check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL;")
            self._logger.info("SQLite storage opened at %s", path)
            return conn
        except PermissionError as exc:
            msg = (
                f"Cannot open the session storage at '{path}'. "
                "The file or its directory may be read-only or locked by "
                "another process."
            )
            self._logger.error(msg)
            raise PermissionError(msg) from exc
