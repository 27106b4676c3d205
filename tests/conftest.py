import asyncio
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from core.db import connect, initialize_schema
from core.store import KeyedRecordStore


class FakeSocket:
    def __init__(self, events=None, *, user_id: Optional[str] = "15550001111:3@s.whatsapp.net", groups=None):
        self.user_id = user_id
        self._events = list(events or [])
        self.sent: List[Dict[str, Any]] = []
        self.groups = groups if groups is not None else {}
        self.flushed = False
        self.closed = False
        self.group_fetches = 0

    async def events(self):
        for event in self._events:
            yield event
            await asyncio.sleep(0)

    async def send_message(self, jid, content, *, quoted=None):
        self.sent.append({"jid": jid, "content": content, "quoted": quoted})
        return {"key": {"id": f"out-{len(self.sent)}"}}

    async def group_fetch_all_participating(self):
        self.group_fetches += 1
        return self.groups

    def flush_events(self):
        self.flushed = True

    async def close(self):
        self.closed = True

    def texts(self) -> List[str]:
        return [item["content"]["text"] for item in self.sent if "text" in item["content"]]


@pytest.fixture
def fake_socket_cls():
    return FakeSocket


@pytest.fixture
def conn(tmp_path: Path):
    connection = connect(tmp_path / "session.db")
    initialize_schema(connection)
    yield connection
    try:
        connection.close()
    except Exception:
        pass


@pytest.fixture
def make_store(conn):
    def factory(**kwargs) -> KeyedRecordStore:
        kwargs.setdefault("flush_delay", 0.01)
        return KeyedRecordStore(conn, **kwargs)

    return factory


def raw_message(text: str, *, chat: str = "15552223333@s.whatsapp.net", sender: Optional[str] = None, from_me: bool = False, msg_id: str = "ABC") -> Dict[str, Any]:
    key: Dict[str, Any] = {"remoteJid": chat, "fromMe": from_me, "id": msg_id}
    if sender:
        key["participant"] = sender
    return {"key": key, "message": {"conversation": text}}
