"""Lifecycle of one protocol connection.

A lifecycle instance lives for exactly one socket. It consumes the socket's
events in order and ends either with a recoverable close (the caller builds
a fresh socket and a fresh lifecycle) or with a logout, after which the
credentials must not be reused.
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Type

from core.auth_state import CredentialStateManager
from core.dispatcher import CommandDispatcher
from core.groups import DEFAULT_REFRESH_SECONDS, GroupMetadataStore, group_refresh_loop
from core.message import Message
from core.owners import OwnerRegistry, parse_jid

from .protocol import (
    ConnectionState,
    ConnectionUpdate,
    CredsUpdate,
    MessagesUpsert,
    ProtocolEvent,
    ProtocolSocket,
)

log = logging.getLogger(__name__)

LIVENESS_TEXT = "Hello World"


class CloseOutcome(str, Enum):
    RECONNECT = "reconnect"
    LOGGED_OUT = "logged_out"


class ConnectionLifecycle:
    def __init__(
        self,
        socket: ProtocolSocket,
        *,
        auth: CredentialStateManager,
        dispatcher: CommandDispatcher,
        owners: OwnerRegistry,
        groups: GroupMetadataStore,
        prefixes: Optional[List[str]] = None,
        private_mode: bool = True,
        group_refresh_seconds: float = DEFAULT_REFRESH_SECONDS,
    ) -> None:
        self.socket = socket
        self.auth = auth
        self.dispatcher = dispatcher
        self.owners = owners
        self.groups = groups
        self.prefixes = list(prefixes or ["."])
        self.private_mode = private_mode
        self.group_refresh_seconds = group_refresh_seconds
        self.state = ConnectionState.CONNECTING
        self._greeted = False
        self._refresh_task: Optional[asyncio.Task] = None
        self._handlers: Dict[Type, Callable[..., Awaitable[Optional[CloseOutcome]]]] = {
            CredsUpdate: self._on_creds_update,
            ConnectionUpdate: self._on_connection_update,
            MessagesUpsert: self._on_messages_upsert,
        }

    async def run(self) -> CloseOutcome:
        try:
            async for event in self.socket.events():
                outcome = await self.handle(event)
                if outcome is not None:
                    return outcome
        finally:
            await self._stop_refresh()
        log.warning("event stream ended without a close event")
        self.state = ConnectionState.CLOSED
        return CloseOutcome.RECONNECT

    async def handle(self, event: ProtocolEvent) -> Optional[CloseOutcome]:
        handler = self._handlers.get(type(event))
        if handler is None:
            raise TypeError(f"unhandled protocol event {type(event).__name__}")
        return await handler(event)

    # ----- event handlers -----
    async def _on_creds_update(self, event: CredsUpdate) -> None:
        if event.update:
            self.auth.state.creds.update(event.update)
        await self.auth.save_creds()

    async def _on_connection_update(self, event: ConnectionUpdate) -> Optional[CloseOutcome]:
        if event.connection == "connecting":
            await self._handle_connecting()
        elif event.connection == "open":
            await self._handle_open()
        elif event.connection == "close":
            return await self._handle_close(event)
        return None

    async def _handle_connecting(self) -> None:
        self.state = ConnectionState.CONNECTING
        log.info("connecting...")
        user_id = parse_jid(self.socket.user_id)
        if user_id:
            self.owners.add(user_id)

    async def _handle_open(self) -> None:
        self.state = ConnectionState.OPEN
        log.info("connection successful")
        if self._refresh_task is None:
            self._refresh_task = asyncio.ensure_future(
                group_refresh_loop(self.socket, self.groups, self.group_refresh_seconds)
            )
        if self._greeted or not self.socket.user_id:
            return
        self._greeted = True
        try:
            await self.socket.send_message(self.socket.user_id, {"text": LIVENESS_TEXT})
        except Exception as exc:
            log.warning("failed to send liveness notification: %s", exc)

    async def _handle_close(self, event: ConnectionUpdate) -> CloseOutcome:
        self.state = ConnectionState.CLOSING
        await self._stop_refresh()
        cause = event.last_disconnect
        if cause is not None and cause.terminal:
            log.error("logged out (status %s), credentials are no longer valid", cause.status_code)
            self.socket.flush_events()
            await self.socket.close()
            self.state = ConnectionState.CLOSED
            return CloseOutcome.LOGGED_OUT
        status = cause.status_code if cause else None
        log.warning("connection closed (status %s), reconnecting", status)
        self.state = ConnectionState.CLOSED
        return CloseOutcome.RECONNECT

    async def _on_messages_upsert(self, event: MessagesUpsert) -> None:
        if event.type != "notify":
            return
        if self.state is not ConnectionState.OPEN:
            log.debug("ignoring %d messages while %s", len(event.messages), self.state.value)
            return
        for raw in event.messages:
            message = Message.from_raw(
                self.socket,
                raw,
                owners=self.owners,
                prefixes=self.prefixes,
                private_mode=self.private_mode,
            )
            await self.dispatcher.dispatch(message)

    async def _stop_refresh(self) -> None:
        task, self._refresh_task = self._refresh_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
