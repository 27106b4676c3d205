import asyncio
import json
import logging
import sqlite3
import time
from typing import Any, Dict, Mapping, Optional

log = logging.getLogger(__name__)

DEFAULT_REFRESH_SECONDS = 300.0


class GroupMetadataStore:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def save_many(self, groups: Mapping[str, Any]) -> int:
        now = time.time()
        rows = [
            (jid, json.dumps(meta, ensure_ascii=False, default=str), now)
            for jid, meta in groups.items()
        ]
        with self.conn:
            self.conn.executemany(
                """
                INSERT INTO group_metadata(jid, data, updated) VALUES(?,?,?)
                ON CONFLICT(jid) DO UPDATE SET data=excluded.data, updated=excluded.updated
                """,
                rows,
            )
        return len(rows)

    def get(self, jid: str) -> Optional[Dict[str, Any]]:
        row = self.conn.execute("SELECT data FROM group_metadata WHERE jid=?", (jid,)).fetchone()
        if not row:
            return None
        try:
            return json.loads(row["data"])
        except json.JSONDecodeError:
            log.warning("discarding corrupt metadata for group %s", jid)
            return None


async def refresh_group_metadata(socket, store: GroupMetadataStore) -> int:
    groups = await socket.group_fetch_all_participating()
    count = store.save_many(groups or {})
    log.debug("refreshed metadata for %d groups", count)
    return count


async def group_refresh_loop(socket, store: GroupMetadataStore, interval: float = DEFAULT_REFRESH_SECONDS) -> None:
    while True:
        try:
            await refresh_group_metadata(socket, store)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.warning("group metadata refresh failed: %s", exc)
        await asyncio.sleep(interval)
