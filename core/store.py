"""Keyed JSON record storage with a write-behind cache.

Reads are served from an in-memory cache and fall back to sqlite. Writes
land in the cache immediately and are queued; a short debounce timer
drains the queue into a single transaction so bursts of small per-key
writes cost one commit.
"""

import asyncio
import copy
import json
import logging
import sqlite3
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from . import codec
from .errors import RecordDecodeError

log = logging.getLogger(__name__)

DEFAULT_CACHE_SIZE = 1000
DEFAULT_FLUSH_DELAY = 0.02
_SELECT_CHUNK = 500

QueueItem = Tuple[str, Optional[str]]


def record_key(category: str, item_id: Optional[str] = None) -> str:
    if item_id is None or item_id == "":
        return category
    return f"{category}:{item_id}"


class KeyedRecordStore:
    def __init__(
        self,
        conn: sqlite3.Connection,
        *,
        max_cache: int = DEFAULT_CACHE_SIZE,
        flush_delay: float = DEFAULT_FLUSH_DELAY,
    ) -> None:
        self.conn = conn
        self.max_cache = max(1, int(max_cache))
        self.flush_delay = flush_delay
        # dict keeps insertion order; eviction drops the oldest inserted key,
        # reads do not refresh a key's position.
        self._cache: Dict[str, Any] = {}
        self._queue: List[QueueItem] = []
        self._timer: Optional[asyncio.TimerHandle] = None
        self._flush_task: Optional[asyncio.Task] = None
        self._flush_lock = asyncio.Lock()

    # ----- cache -----
    def _remember(self, key: str, value: Any) -> None:
        # the cache owns its values; callers only ever see copies
        if key not in self._cache and len(self._cache) >= self.max_cache:
            oldest = next(iter(self._cache))
            del self._cache[oldest]
        self._cache[key] = value

    def _forget(self, key: str) -> None:
        self._cache.pop(key, None)

    def cached(self, key: str) -> bool:
        return key in self._cache

    @property
    def pending(self) -> int:
        return len(self._queue)

    def _queued(self, key: str) -> Tuple[bool, Optional[str]]:
        for queued_key, payload in reversed(self._queue):
            if queued_key == key:
                return True, payload
        return False, None

    @staticmethod
    def _decode(key: str, payload: Optional[str]) -> Any:
        if payload is None:
            return None
        try:
            return codec.loads(payload)
        except (json.JSONDecodeError, ValueError) as exc:
            raise RecordDecodeError(key, str(exc)) from exc

    # ----- reads -----
    async def get(self, key: str) -> Any:
        if key in self._cache:
            return copy.deepcopy(self._cache[key])
        found, payload = self._queued(key)
        if not found:
            row = self.conn.execute("SELECT data FROM session WHERE id=?", (key,)).fetchone()
            if not row:
                return None
            payload = row["data"]
        value = self._decode(key, payload)
        if value is not None:
            self._remember(key, value)
        return copy.deepcopy(value)

    async def get_many(self, keys: Iterable[str]) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        misses: List[str] = []
        for key in set(keys):
            if key in self._cache:
                result[key] = copy.deepcopy(self._cache[key])
                continue
            found, payload = self._queued(key)
            if found:
                result[key] = self._decode(key, payload)
            else:
                misses.append(key)
        for start in range(0, len(misses), _SELECT_CHUNK):
            chunk = misses[start : start + _SELECT_CHUNK]
            marks = ",".join("?" for _ in chunk)
            rows = self.conn.execute(
                f"SELECT id, data FROM session WHERE id IN ({marks})", chunk
            ).fetchall()
            for row in rows:
                result[row["id"]] = self._decode(row["id"], row["data"])
        for key in misses:
            result.setdefault(key, None)
        for key, value in result.items():
            if value is not None and key not in self._cache:
                self._remember(key, value)
                result[key] = copy.deepcopy(value)
        return result

    # ----- writes -----
    async def set(self, key: str, value: Any) -> None:
        payload = codec.dumps(value)
        self._remember(key, codec.loads(payload))
        self._queue.append((key, payload))
        self._schedule_flush()

    async def set_many(self, data: Mapping[str, Mapping[str, Any]]) -> None:
        batch: List[QueueItem] = []
        for category, entries in data.items():
            for item_id, value in entries.items():
                key = record_key(category, item_id)
                if value is None:
                    self._forget(key)
                    batch.append((key, None))
                else:
                    payload = codec.dumps(value)
                    self._remember(key, codec.loads(payload))
                    batch.append((key, payload))
        if not batch:
            return
        self._queue.extend(batch)
        self._schedule_flush()

    async def delete(self, key: str) -> None:
        self._forget(key)
        # a queued write for this key must not resurrect it on the next flush
        self._queue = [item for item in self._queue if item[0] != key]
        with self.conn:
            self.conn.execute("DELETE FROM session WHERE id=?", (key,))

    async def write_now(self, key: str, value: Any, *, replace: bool = False) -> None:
        """Persist one record immediately, bypassing the write queue."""

        payload = codec.dumps(value)
        self._remember(key, codec.loads(payload))
        self._queue = [item for item in self._queue if item[0] != key]
        with self.conn:
            if replace:
                self.conn.execute("DELETE FROM session WHERE id=?", (key,))
            self.conn.execute(
                """
                INSERT INTO session(id, data) VALUES(?, ?)
                ON CONFLICT(id) DO UPDATE SET data=excluded.data
                """,
                (key, payload),
            )

    async def clear(self) -> None:
        self._cache.clear()
        self._queue.clear()
        with self.conn:
            self.conn.execute("DELETE FROM session")

    # ----- flushing -----
    def _schedule_flush(self) -> None:
        if self._timer is not None:
            return
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.flush_delay, self._start_flush)

    def _start_flush(self) -> None:
        self._timer = None
        self._flush_task = asyncio.ensure_future(self._flush())

    def _write_batch(self, batch: List[QueueItem]) -> None:
        with self.conn:
            for key, payload in batch:
                if payload is None:
                    self.conn.execute("DELETE FROM session WHERE id=?", (key,))
                else:
                    self.conn.execute(
                        """
                        INSERT INTO session(id, data) VALUES(?, ?)
                        ON CONFLICT(id) DO UPDATE SET data=excluded.data
                        """,
                        (key, payload),
                    )

    async def _flush(self) -> None:
        async with self._flush_lock:
            if not self._queue:
                return
            batch, self._queue = self._queue, []
            try:
                self._write_batch(batch)
            except sqlite3.Error as exc:
                # retried forever; a dead disk keeps rescheduling every flush_delay
                log.warning("session flush failed, requeueing %d records: %s", len(batch), exc)
                self._queue = batch + self._queue
                self._schedule_flush()
                return
            log.debug("flushed %d session records", len(batch))

    async def flush_now(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._flush_task is not None and not self._flush_task.done():
            await self._flush_task
        await self._flush()

    async def close(self) -> None:
        await self.flush_now()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._queue:
            log.warning("closing store with %d unflushed records", len(self._queue))
        self.conn.close()

    # ----- metadata -----
    def get_meta(self, name: str) -> Optional[str]:
        row = self.conn.execute("SELECT value FROM session_meta WHERE name=?", (name,)).fetchone()
        return row["value"] if row else None

    def set_meta(self, name: str, value: str) -> None:
        with self.conn:
            self.conn.execute(
                """
                INSERT INTO session_meta(name, value) VALUES(?, ?)
                ON CONFLICT(name) DO UPDATE SET value=excluded.value
                """,
                (name, value),
            )
