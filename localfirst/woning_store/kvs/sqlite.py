"""
SQLite-backed persistent store.

A single-file key/value table with a fixed logical capacity, giving the
desktop install the same quota semantics as the browser storage the
application started on.

Table schema:
    kv_items:
        - key TEXT PRIMARY KEY
        - value TEXT NOT NULL
        - size_bytes INTEGER NOT NULL (UTF-8 bytes of key + value)
        - updated_at INTEGER (Unix ms)

Invariants:
    - Each set_item runs in its own transaction
    - Capacity is checked inside the transaction before the write
    - size_bytes is always consistent with the stored key and value

How to change safely:
    - Keep size accounting identical to InMemoryPersistentStore
    - Schema changes must keep existing files readable
"""

from __future__ import annotations

import logging
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable

from .base import QuotaExceededError, StoreUnavailableError

logger = logging.getLogger(__name__)


class SqlitePersistentStore:
    """Persistent store on a local SQLite file.

    Thread safety:
        A connection is created per operation; the store is meant to be
        used from a single event loop thread.

    Example:
        >>> store = SqlitePersistentStore("/tmp/woning.db", capacity_bytes=5 * 1024 * 1024)
        >>> store.set_item("agency_a_crm_owners", "[]")
    """

    def __init__(
        self,
        path: str,
        capacity_bytes: int = 5 * 1024 * 1024,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the store and create the schema.

        Args:
            path: Database file path
            capacity_bytes: Total logical capacity
            busy_timeout_ms: SQLite busy timeout
        """
        self.path = Path(path)
        self.capacity_bytes = capacity_bytes
        self.busy_timeout_ms = busy_timeout_ms
        try:
            with self._get_connection() as conn:
                self._create_schema(conn)
        except (sqlite3.Error, OSError) as e:
            raise StoreUnavailableError(f"Cannot open store at {self.path}: {e}") from e

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a connection configured for short transactions."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            str(self.path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            conn.execute("PRAGMA synchronous = NORMAL")
            yield conn
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS kv_items (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                size_bytes INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            );
        """)

    @staticmethod
    def _entry_size(key: str, value: str) -> int:
        return len(key.encode("utf-8")) + len(value.encode("utf-8"))

    def used_bytes(self) -> int:
        with self._get_connection() as conn:
            row = conn.execute("SELECT COALESCE(SUM(size_bytes), 0) FROM kv_items").fetchone()
            return int(row[0])

    def get_item(self, key: str) -> str | None:
        try:
            with self._get_connection() as conn:
                row = conn.execute("SELECT value FROM kv_items WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Read failed for {key}: {e}") from e
        return row[0] if row else None

    def set_item(self, key: str, value: str) -> None:
        size = self._entry_size(key, value)
        try:
            with self._get_connection() as conn:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    used = conn.execute(
                        "SELECT COALESCE(SUM(size_bytes), 0) FROM kv_items WHERE key != ?",
                        (key,),
                    ).fetchone()[0]
                    if used + size > self.capacity_bytes:
                        raise QuotaExceededError(
                            f"Quota exceeded: {used} + {size} > {self.capacity_bytes}"
                        )
                    conn.execute(
                        """
                        INSERT INTO kv_items (key, value, size_bytes, updated_at)
                        VALUES (?, ?, ?, ?)
                        ON CONFLICT(key) DO UPDATE SET
                            value = excluded.value,
                            size_bytes = excluded.size_bytes,
                            updated_at = excluded.updated_at
                        """,
                        (key, value, size, int(time.time() * 1000)),
                    )
                    conn.execute("COMMIT")
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise
        except sqlite3.OperationalError as e:
            if "full" in str(e).lower():
                raise QuotaExceededError(str(e)) from e
            raise StoreUnavailableError(f"Write failed for {key}: {e}") from e
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Write failed for {key}: {e}") from e

    def remove_item(self, key: str) -> None:
        try:
            with self._get_connection() as conn:
                conn.execute("DELETE FROM kv_items WHERE key = ?", (key,))
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Delete failed for {key}: {e}") from e

    def keys(self) -> Iterable[str]:
        with self._get_connection() as conn:
            return [row[0] for row in conn.execute("SELECT key FROM kv_items ORDER BY key")]
