from __future__ import annotations

import asyncio
import os
import sqlite3
import threading
from datetime import datetime, timezone
from typing import Protocol

from app.pipeline.errors import StoreUnavailable

_DEFAULT_OWNER = ""


class KeyValueStore(Protocol):
    async def set(self, key: str, value: str, owner: str | None = None) -> None: ...

    async def get(self, key: str, owner: str | None = None) -> str | None: ...


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SqliteKeyValueStore:
    """String key/value store on a single WAL-mode sqlite connection.

    Rows are keyed by ``(owner, key)`` so one owner can never read another
    owner's keys. Queries run in a worker thread behind a process-wide lock.
    """

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    def _get_connection(self) -> sqlite3.Connection:
        if self._conn is not None:
            return self._conn

        if self._db_path != ":memory:":
            directory = os.path.dirname(self._db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)

        conn = sqlite3.connect(
            self._db_path,
            check_same_thread=False,
            timeout=5,
            isolation_level=None,
        )
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.execute("PRAGMA busy_timeout=5000;")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS kv_entries (
                owner TEXT NOT NULL,
                key TEXT NOT NULL,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (owner, key)
            );
            """
        )
        self._conn = conn
        return conn

    def _set_sync(self, key: str, value: str, owner: str) -> None:
        with self._lock:
            try:
                conn = self._get_connection()
                conn.execute(
                    """
                    INSERT INTO kv_entries (owner, key, value, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(owner, key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (owner, key, value, _utc_now().isoformat()),
                )
            except sqlite3.Error as exc:
                raise StoreUnavailable(f"Failed to write key '{key}': {exc}") from exc

    def _get_sync(self, key: str, owner: str) -> str | None:
        with self._lock:
            try:
                conn = self._get_connection()
                cur = conn.execute(
                    "SELECT value FROM kv_entries WHERE owner = ? AND key = ?",
                    (owner, key),
                )
                row = cur.fetchone()
            except sqlite3.Error as exc:
                raise StoreUnavailable(f"Failed to read key '{key}': {exc}") from exc
        return row[0] if row else None

    async def set(self, key: str, value: str, owner: str | None = None) -> None:
        await asyncio.to_thread(self._set_sync, key, value, owner or _DEFAULT_OWNER)

    async def get(self, key: str, owner: str | None = None) -> str | None:
        return await asyncio.to_thread(self._get_sync, key, owner or _DEFAULT_OWNER)

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
