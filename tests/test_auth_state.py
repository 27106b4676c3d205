import asyncio

from core.auth_state import CredentialStateManager, init_auth_creds
from core.store import KeyedRecordStore


def test_init_auth_creds_shape():
    creds = init_auth_creds()
    assert len(creds["noiseKey"]["private"]) == 32
    assert len(creds["signedIdentityKey"]["public"]) == 32
    assert creds["signedPreKey"]["keyId"] == 1
    assert 0 <= creds["registrationId"] < 2 ** 14
    assert creds["registered"] is False
    assert init_auth_creds()["noiseKey"] != creds["noiseKey"]


def test_first_load_persists_creds_immediately(make_store, conn):
    async def scenario():
        store = make_store(flush_delay=10)
        manager = CredentialStateManager(store)
        state = await manager.load()
        row = conn.execute("SELECT data FROM session WHERE id='creds'").fetchone()
        assert row is not None
        reloaded = await CredentialStateManager(KeyedRecordStore(conn)).load()
        assert reloaded.creds["noiseKey"] == state.creds["noiseKey"]

    asyncio.run(scenario())


def test_save_creds_queues_the_current_object(make_store, conn):
    async def scenario():
        store = make_store()
        manager = CredentialStateManager(store)
        state = await manager.load()
        state.creds["registered"] = True
        state.creds["me"] = {"id": "15550001111@s.whatsapp.net"}
        await manager.save_creds()
        await store.flush_now()
        fresh = await CredentialStateManager(KeyedRecordStore(conn)).load()
        assert fresh.creds["registered"] is True
        assert fresh.creds["me"]["id"] == "15550001111@s.whatsapp.net"

    asyncio.run(scenario())


def test_signal_keys_get_set_delete(make_store):
    async def scenario():
        store = make_store()
        state = await CredentialStateManager(store).load()
        await state.keys.set({"pre-key": {"1": {"public": b"\x01"}, "2": {"public": b"\x02"}}})
        found = await state.keys.get("pre-key", ["1", "2", "3"])
        assert found == {"1": {"public": b"\x01"}, "2": {"public": b"\x02"}, "3": None}
        await state.keys.delete("pre-key", ["1"])
        assert (await state.keys.get("pre-key", ["1"]))["1"] is None

    asyncio.run(scenario())


def test_clear_removes_session(make_store, conn):
    async def scenario():
        store = make_store()
        manager = CredentialStateManager(store)
        await manager.load()
        await manager.clear()
        assert conn.execute("SELECT COUNT(*) FROM session").fetchone()[0] == 0

    asyncio.run(scenario())
