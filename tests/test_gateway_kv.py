"""Tests for the KV store backends."""

import asyncio
import time
from pathlib import Path

from gateway_kv import MemoryKVStore, NullKVStore, SQLiteKVStore, open_kv_store


def test_sqlite_roundtrip_and_persistence(tmp_path: Path) -> None:
    db = tmp_path / "kv" / "gw.db"

    async def _write():
        kv = SQLiteKVStore(str(db))
        assert await kv.set("demo_counter", {"hour": 1, "times": 2.5, "maxTimes": 15})
        kv.close()

    async def _read():
        kv = SQLiteKVStore(str(db))
        try:
            return await kv.get("demo_counter")
        finally:
            kv.close()

    asyncio.run(_write())
    assert asyncio.run(_read()) == {"hour": 1, "times": 2.5, "maxTimes": 15}


def test_sqlite_expiry(tmp_path: Path) -> None:
    kv = SQLiteKVStore(str(tmp_path / "gw.db"))

    async def _test():
        await kv.set("short", "v", ttl=0.01)
        await kv.set("long", "v", ttl=60)
        time.sleep(0.05)
        assert await kv.get("short") is None
        assert await kv.get("long") == "v"
        assert await kv.get("missing") is None

    try:
        asyncio.run(_test())
    finally:
        kv.close()


def test_sqlite_unserializable_value(tmp_path: Path) -> None:
    kv = SQLiteKVStore(str(tmp_path / "gw.db"))
    try:
        assert asyncio.run(kv.set("bad", object())) is False
    finally:
        kv.close()


def test_memory_store_copies_values() -> None:
    kv = MemoryKVStore()

    async def _test():
        value = {"times": 1}
        await kv.set("k", value)
        value["times"] = 99
        assert await kv.get("k") == {"times": 1}

    asyncio.run(_test())


def test_null_store() -> None:
    kv = NullKVStore()
    assert not kv.available
    assert asyncio.run(kv.set("k", 1)) is False
    assert asyncio.run(kv.get("k")) is None


def test_open_kv_store(tmp_path: Path) -> None:
    kv = open_kv_store("sqlite", str(tmp_path / "gw.db"))
    assert kv.name == "sqlite"
    kv.close()
    assert open_kv_store("memory", "").name == "memory"
    assert open_kv_store("none", "").name == "none"
    assert open_kv_store("redis", "").name == "none"
