"""Contract between the connection lifecycle and a protocol socket.

The socket implementation owns the wire protocol. It hands the lifecycle a
stream of typed events and exposes the few outbound calls the bot needs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Protocol, Union

# status code the server uses when the linked device was logged out
LOGGED_OUT = 401


class EventKind(str, Enum):
    CREDS_UPDATE = "creds.update"
    CONNECTION_UPDATE = "connection.update"
    MESSAGES_UPSERT = "messages.upsert"


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass(frozen=True)
class DisconnectCause:
    status_code: Optional[int] = None
    message: str = ""

    @property
    def terminal(self) -> bool:
        return self.status_code == LOGGED_OUT


@dataclass(frozen=True)
class CredsUpdate:
    update: Dict[str, Any] = field(default_factory=dict)
    kind: EventKind = field(default=EventKind.CREDS_UPDATE, init=False)


@dataclass(frozen=True)
class ConnectionUpdate:
    connection: Optional[str] = None
    last_disconnect: Optional[DisconnectCause] = None
    kind: EventKind = field(default=EventKind.CONNECTION_UPDATE, init=False)


@dataclass(frozen=True)
class MessagesUpsert:
    messages: List[Dict[str, Any]] = field(default_factory=list)
    type: str = "notify"
    kind: EventKind = field(default=EventKind.MESSAGES_UPSERT, init=False)


ProtocolEvent = Union[CredsUpdate, ConnectionUpdate, MessagesUpsert]


def event_from_payload(name: str, payload: Dict[str, Any]) -> ProtocolEvent:
    """Build a typed event from a socket's raw ``(name, payload)`` pair."""

    kind = EventKind(name)
    if kind is EventKind.CREDS_UPDATE:
        return CredsUpdate(update=dict(payload or {}))
    if kind is EventKind.CONNECTION_UPDATE:
        cause = None
        last = payload.get("lastDisconnect") or payload.get("last_disconnect")
        if last:
            error = last.get("error") or {}
            status = last.get("statusCode")
            if status is None and isinstance(error, dict):
                status = (error.get("output") or {}).get("statusCode")
            cause = DisconnectCause(
                status_code=int(status) if status is not None else None,
                message=str(error.get("message", "")) if isinstance(error, dict) else str(error),
            )
        return ConnectionUpdate(connection=payload.get("connection"), last_disconnect=cause)
    return MessagesUpsert(messages=list(payload.get("messages") or []), type=str(payload.get("type", "")))


class ProtocolSocket(Protocol):
    user_id: Optional[str]

    def events(self) -> AsyncIterator[ProtocolEvent]:
        ...

    async def send_message(self, jid: str, content: Dict[str, Any], *, quoted: Optional[Dict[str, Any]] = None) -> Any:
        ...

    async def group_fetch_all_participating(self) -> Dict[str, Any]:
        ...

    def flush_events(self) -> None:
        ...

    async def close(self) -> None:
        ...


SocketFactory = Callable[[Any], Awaitable[ProtocolSocket]]
