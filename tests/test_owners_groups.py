import asyncio

from conftest import FakeSocket

from core.groups import GroupMetadataStore, refresh_group_metadata
from core.owners import OwnerRegistry, parse_jid


def test_parse_jid():
    assert parse_jid("15550001111:12@s.whatsapp.net") == "15550001111@s.whatsapp.net"
    assert parse_jid("+1 555 000 1111") == "15550001111@s.whatsapp.net"
    assert parse_jid("120363000000000000@g.us") == "120363000000000000@g.us"
    assert parse_jid(None) == ""


def test_owner_registry(conn):
    owners = OwnerRegistry(conn, seed=["15550001111"])
    assert owners.is_owner("15550001111:4@s.whatsapp.net")
    assert owners.add("15550002222") is True
    assert owners.add("15550002222@s.whatsapp.net") is False
    assert owners.list() == ["15550001111@s.whatsapp.net", "15550002222@s.whatsapp.net"]
    assert owners.remove("15550001111") is True
    assert not owners.is_owner("15550001111@s.whatsapp.net")
    assert not owners.is_owner(None)


def test_group_metadata_refresh(conn):
    store = GroupMetadataStore(conn)
    socket = FakeSocket(groups={"1@g.us": {"subject": "one"}, "2@g.us": {"subject": "two"}})
    assert asyncio.run(refresh_group_metadata(socket, store)) == 2
    socket.groups = {"1@g.us": {"subject": "renamed"}}
    asyncio.run(refresh_group_metadata(socket, store))
    assert store.get("1@g.us") == {"subject": "renamed"}
    assert store.get("2@g.us") == {"subject": "two"}
    assert store.get("3@g.us") is None
