import asyncio
import sqlite3

import pytest

from core.errors import RecordDecodeError
from core.store import KeyedRecordStore, record_key


def _rows(conn):
    return {row["id"]: row["data"] for row in conn.execute("SELECT id, data FROM session")}


def test_record_key():
    assert record_key("creds") == "creds"
    assert record_key("app-state-sync-key", "AAA") == "app-state-sync-key:AAA"


def test_get_sees_set_before_flush(make_store, conn):
    async def scenario():
        store = make_store(flush_delay=10)
        await store.set("pre-key:1", {"public": b"\x01\x02"})
        value = await store.get("pre-key:1")
        assert value == {"public": b"\x01\x02"}
        assert _rows(conn) == {}
        assert store.pending == 1

    asyncio.run(scenario())


def test_burst_is_coalesced_into_last_value(make_store, conn):
    async def scenario():
        store = make_store()
        for i in range(5):
            await store.set("creds", {"counter": i})
            await store.set(f"session:{i}", {"n": i})
        await asyncio.sleep(0.1)
        rows = _rows(conn)
        assert rows["creds"] == '{"counter": 4}'
        assert sorted(rows) == ["creds"] + [f"session:{i}" for i in range(5)]
        assert store.pending == 0

    asyncio.run(scenario())


def test_eviction_is_insertion_ordered(make_store):
    async def scenario():
        store = make_store(max_cache=3)
        await store.set("k:1", 1)
        await store.set("k:2", 2)
        await store.set("k:3", 3)
        # reading the oldest key does not protect it from eviction
        assert await store.get("k:1") == 1
        await store.set("k:4", 4)
        assert not store.cached("k:1")
        assert store.cached("k:2") and store.cached("k:4")
        await store.flush_now()
        assert await store.get("k:1") == 1

    asyncio.run(scenario())


def test_evicted_key_reads_queued_value(make_store, conn):
    async def scenario():
        store = make_store(max_cache=1, flush_delay=10)
        await store.set("k:1", "old")
        await store.flush_now()
        await store.set("k:1", "new")
        await store.set("k:2", "other")
        assert not store.cached("k:1")
        assert await store.get("k:1") == "new"

    asyncio.run(scenario())


def test_delete_bypasses_queue(make_store, conn):
    async def scenario():
        store = make_store(flush_delay=0.01)
        await store.set("sender-key:a", {"v": 1})
        await store.flush_now()
        await store.set("sender-key:a", {"v": 2})
        await store.delete("sender-key:a")
        assert await store.get("sender-key:a") is None
        assert "sender-key:a" not in _rows(conn)
        await asyncio.sleep(0.05)
        assert "sender-key:a" not in _rows(conn)

    asyncio.run(scenario())


def test_get_many_mixes_cache_and_storage(make_store, conn):
    async def scenario():
        store = make_store()
        await store.set("pre-key:1", {"id": 1})
        await store.set("pre-key:2", {"id": 2})
        await store.flush_now()
        fresh = KeyedRecordStore(conn)
        await fresh.set("pre-key:3", {"id": 3})
        found = await fresh.get_many({"pre-key:1", "pre-key:2", "pre-key:3", "pre-key:9"})
        assert found == {
            "pre-key:1": {"id": 1},
            "pre-key:2": {"id": 2},
            "pre-key:3": {"id": 3},
            "pre-key:9": None,
        }
        assert fresh.cached("pre-key:1")

    asyncio.run(scenario())


def test_set_many_writes_and_deletes(make_store, conn):
    async def scenario():
        store = make_store()
        await store.set_many({"pre-key": {"1": {"a": 1}, "2": {"a": 2}}})
        await store.flush_now()
        await store.set_many({"pre-key": {"1": None, "3": {"a": 3}}})
        assert await store.get("pre-key:1") is None
        await store.flush_now()
        assert sorted(_rows(conn)) == ["pre-key:2", "pre-key:3"]

    asyncio.run(scenario())


def test_failed_flush_is_requeued(make_store, conn, monkeypatch):
    async def scenario():
        store = make_store()
        original = store._write_batch
        calls = []

        def flaky(batch):
            calls.append(list(batch))
            if len(calls) == 1:
                raise sqlite3.OperationalError("database is locked")
            original(batch)

        monkeypatch.setattr(store, "_write_batch", flaky)
        await store.set("creds", {"v": 1})
        await asyncio.sleep(0.03)
        await store.set("pre-key:1", {"v": 2})
        await asyncio.sleep(0.1)
        assert len(calls) >= 2
        assert calls[1][0] == ("creds", '{"v": 1}')
        assert sorted(_rows(conn)) == ["creds", "pre-key:1"]

    asyncio.run(scenario())


def test_corrupt_record_raises(make_store, conn):
    with conn:
        conn.execute("INSERT INTO session(id, data) VALUES('creds', '{broken')")

    async def scenario():
        store = make_store()
        with pytest.raises(RecordDecodeError):
            await store.get("creds")

    asyncio.run(scenario())


def test_buffers_round_trip_through_storage(make_store, conn):
    async def scenario():
        store = make_store()
        await store.set("creds", {"noiseKey": {"private": b"\x00\xff"}})
        await store.flush_now()
        fresh = KeyedRecordStore(conn)
        assert await fresh.get("creds") == {"noiseKey": {"private": b"\x00\xff"}}

    asyncio.run(scenario())


def test_meta_values(make_store):
    async def scenario():
        store = make_store()
        assert store.get_meta("current-session") is None
        store.set_meta("current-session", "abc")
        store.set_meta("current-session", "def")
        assert store.get_meta("current-session") == "def"

    asyncio.run(scenario())


def test_mutating_a_read_value_does_not_touch_the_cache(make_store, conn):
    async def scenario():
        store = make_store()
        original = {"v": 1, "nested": {"ids": [1]}}
        await store.set("pre-key:1", original)
        original["v"] = 99
        original["nested"]["ids"].append(2)

        value = await store.get("pre-key:1")
        value["v"] = 2
        value["nested"]["ids"].append(3)
        many = await store.get_many(["pre-key:1"])
        many["pre-key:1"]["v"] = 3

        await store.flush_now()
        assert await store.get("pre-key:1") == {"v": 1, "nested": {"ids": [1]}}
        fresh = KeyedRecordStore(conn)
        assert await fresh.get("pre-key:1") == {"v": 1, "nested": {"ids": [1]}}

    asyncio.run(scenario())


def test_set_many_burst_is_written_in_one_batch(make_store, conn, monkeypatch):
    batches = []

    async def scenario():
        store = make_store(flush_delay=0.02)
        real_write = store._write_batch

        def spy(batch):
            batches.append(list(batch))
            real_write(batch)

        monkeypatch.setattr(store, "_write_batch", spy)
        await store.set_many(
            {
                "pre-key": {"1": {"a": 1}, "2": {"a": 2}},
                "session": {"alice.0": {"s": 1}},
                "sender-key": {"g1": {"k": 1}},
            }
        )
        await asyncio.sleep(0.1)

    asyncio.run(scenario())
    assert len(batches) == 1
    assert sorted(key for key, _ in batches[0]) == ["pre-key:1", "pre-key:2", "sender-key:g1", "session:alice.0"]
    assert set(_rows(conn)) == {"pre-key:1", "pre-key:2", "sender-key:g1", "session:alice.0"}
