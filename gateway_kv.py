"""Key-value persistence for cross-request gateway state.

Three backends share one async interface:

- ``SQLiteKVStore``: durable per-deployment store (WAL mode, JSON values,
  optional expiry).  Blocking SQLite calls run in a worker thread.
- ``MemoryKVStore``: process-local dict, lost on restart.
- ``NullKVStore``: no backend at all; callers fall back to their own
  in-process state.

Backend failures are logged and degrade to ``None`` / ``False`` so that a
broken store never fails the request that touched it.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import threading
import time
from pathlib import Path
from typing import Any, Optional

LOG = logging.getLogger("chat-gateway.kv")


class KVStore:
    """Uniform get / set-with-ttl interface."""

    name = "abstract"

    @property
    def available(self) -> bool:
        return True

    async def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        raise NotImplementedError

    def close(self) -> None:
        pass


class NullKVStore(KVStore):
    name = "none"

    @property
    def available(self) -> bool:
        return False

    async def get(self, key: str) -> Optional[Any]:
        return None

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        return False


class MemoryKVStore(KVStore):
    name = "memory"

    def __init__(self) -> None:
        self._data: dict[str, tuple[Optional[float], Any]] = {}

    async def get(self, key: str) -> Optional[Any]:
        entry = self._data.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at is not None and expires_at <= time.time():
            del self._data[key]
            return None
        return json.loads(value)

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        expires_at = time.time() + ttl if ttl else None
        # stored serialized so callers never share mutable state with the store
        self._data[key] = (expires_at, json.dumps(value))
        return True


class SQLiteKVStore(KVStore):
    """Persistent KV table.

    Uses WAL mode for better concurrent read performance and
    thread-safe access via a threading lock.
    """

    name = "sqlite"

    def __init__(self, db_path: str) -> None:
        p = Path(db_path)
        p.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(p, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        with self._lock:
            self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.execute("PRAGMA synchronous = NORMAL")
            self._conn.execute("PRAGMA busy_timeout = 5000")
        self._init_schema()

    def _init_schema(self) -> None:
        with self._lock:
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key        TEXT PRIMARY KEY,
                    value      TEXT NOT NULL,
                    expires_at REAL,
                    updated_at REAL NOT NULL
                );
                """
            )
            self._conn.commit()

    def close(self) -> None:
        """Close the database connection and run optimize."""
        with self._lock:
            try:
                self._conn.execute("PRAGMA optimize")
            except sqlite3.Error:
                LOG.debug("PRAGMA optimize failed", exc_info=True)
            self._conn.close()

    def _get(self, key: str) -> Optional[Any]:
        now = time.time()
        with self._lock:
            r = self._conn.execute(
                "SELECT value, expires_at FROM kv WHERE key=?", (key,)
            ).fetchone()
            if r is None:
                return None
            if r["expires_at"] is not None and float(r["expires_at"]) <= now:
                self._conn.execute("DELETE FROM kv WHERE key=?", (key,))
                self._conn.commit()
                return None
        return json.loads(r["value"])

    def _set(self, key: str, value: Any, ttl: Optional[float]) -> None:
        now = time.time()
        expires_at = now + ttl if ttl else None
        with self._lock:
            self._conn.execute(
                "INSERT INTO kv(key,value,expires_at,updated_at) VALUES(?,?,?,?) "
                "ON CONFLICT(key) DO UPDATE SET value=excluded.value, "
                "expires_at=excluded.expires_at, updated_at=excluded.updated_at",
                (key, json.dumps(value), expires_at, now),
            )
            self._conn.commit()

    async def get(self, key: str) -> Optional[Any]:
        try:
            return await asyncio.to_thread(self._get, key)
        except (sqlite3.Error, ValueError) as exc:
            LOG.error("KV get error for %s: %s", key, exc)
            return None

    async def set(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        try:
            await asyncio.to_thread(self._set, key, value, ttl)
            return True
        except (sqlite3.Error, TypeError, ValueError) as exc:
            LOG.error("KV set error for %s: %s", key, exc)
            return False


def open_kv_store(backend: str, db_path: str) -> KVStore:
    """Build the configured backend, falling back to no store on failure."""
    backend = (backend or "none").strip().lower()
    if backend == "sqlite":
        try:
            return SQLiteKVStore(db_path)
        except (sqlite3.Error, OSError) as exc:
            LOG.error("Failed to open SQLite KV at %s: %s", db_path, exc)
            LOG.warning("KV storage not available, using in-memory fallback")
            return NullKVStore()
    if backend == "memory":
        return MemoryKVStore()
    if backend != "none":
        LOG.warning("Unknown KV backend '%s'; running without a KV store", backend)
    return NullKVStore()
