import asyncio
import importlib
import logging
from typing import Optional

from core.auth_state import CredentialStateManager
from core.commands import register_builtins
from core.db import connect, initialize_schema
from core.dispatcher import CommandDispatcher
from core.groups import GroupMetadataStore
from core.migrate import SessionMigrator
from core.owners import OwnerRegistry
from core.plugins import load_plugins
from core.session_fetch import init_session
from core.settings import Settings
from core.store import KeyedRecordStore

from .connection import CloseOutcome, ConnectionLifecycle
from .protocol import SocketFactory

log = logging.getLogger(__name__)


def resolve_factory(path: str) -> SocketFactory:
    """Load ``module:callable`` naming the protocol socket factory."""

    if not path or ":" not in path:
        raise SystemExit("SOCKET_FACTORY must be set as 'module:callable'")
    module_name, _, attr = path.partition(":")
    try:
        module = importlib.import_module(module_name)
        factory = getattr(module, attr)
    except (ImportError, AttributeError) as exc:
        raise SystemExit(f"cannot load socket factory {path}: {exc}") from exc
    return factory


async def run_client(settings: Settings, socket_factory: Optional[SocketFactory] = None) -> None:
    factory = socket_factory or resolve_factory(settings.socket_factory)
    conn = connect(settings.database)
    initialize_schema(conn)
    store = KeyedRecordStore(conn, max_cache=settings.cache_size, flush_delay=settings.flush_delay)
    try:
        migrator = SessionMigrator(store)
        if migrator.current_session() != settings.session_id:
            downloaded = await init_session(settings.session_uri, settings.session_id, settings.session_dir)
            if downloaded is not None:
                await migrator.migrate(downloaded, None, settings.session_id)
        if settings.migrate:
            await migrator.migrate(
                settings.old_session_folder,
                settings.old_session_db or None,
                settings.session_id,
            )

        auth = CredentialStateManager(store)
        await auth.load()
        owners = OwnerRegistry(conn, seed=settings.sudo)
        groups = GroupMetadataStore(conn)
        dispatcher = CommandDispatcher(react=settings.command_react)
        register_builtins(dispatcher, owners)
        load_plugins(dispatcher, settings.plugins_dir)

        while True:
            socket = await factory(auth.state)
            lifecycle = ConnectionLifecycle(
                socket,
                auth=auth,
                dispatcher=dispatcher,
                owners=owners,
                groups=groups,
                prefixes=settings.prefixes,
                private_mode=settings.private_mode,
                group_refresh_seconds=settings.group_refresh_seconds,
            )
            outcome = await lifecycle.run()
            if outcome is CloseOutcome.LOGGED_OUT:
                raise SystemExit(1)
            await asyncio.sleep(settings.reconnect_delay)
    finally:
        await store.close()
