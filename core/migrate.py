"""One-shot import of a file based session into the record store."""

import logging
import re
import sqlite3
from pathlib import Path
from typing import Any, Dict, Optional, Union

from . import codec
from .errors import MigrationError
from .store import KeyedRecordStore, record_key

log = logging.getLogger(__name__)

CURRENT_SESSION_META = "current-session"
SYNC_KEY_FILE = re.compile(r"^app-state-sync-key-(?P<id>.+?)(?:\.json)?$")

PathLike = Union[str, Path]


def legacy_key(filename: str) -> Optional[str]:
    if filename == "creds.json":
        return "creds"
    match = SYNC_KEY_FILE.match(filename)
    if match:
        return record_key("app-state-sync-key", match.group("id"))
    return None


def _parse(text: str) -> Any:
    try:
        return codec.loads(text)
    except ValueError:
        return text


class SessionMigrator:
    def __init__(self, store: KeyedRecordStore) -> None:
        self.store = store

    def current_session(self) -> Optional[str]:
        return self.store.get_meta(CURRENT_SESSION_META)

    def _read_folder(self, folder: Path, *, required: bool = True) -> Dict[str, Any]:
        if not folder.is_dir():
            if required:
                raise MigrationError(f"legacy session folder not found: {folder}")
            return {}
        records: Dict[str, Any] = {}
        for path in sorted(folder.iterdir()):
            if not path.is_file():
                continue
            key = legacy_key(path.name)
            if key is None:
                continue
            records[key] = _parse(path.read_text(encoding="utf-8"))
        return records

    def _read_database(self, db_path: Path) -> Dict[str, Any]:
        if not db_path.is_file():
            return {}
        conn = sqlite3.connect(str(db_path))
        try:
            rows = conn.execute("SELECT id, data FROM session").fetchall()
        finally:
            conn.close()
        return {str(row[0]): _parse(row[1]) for row in rows if row[1] is not None}

    async def migrate(
        self,
        folder: PathLike,
        legacy_db: Optional[PathLike],
        session_id: str,
    ) -> bool:
        """Import ``folder`` (and rows from ``legacy_db``) as ``session_id``.

        Returns ``True`` when records were imported. A session that is
        already current is skipped, and any failure is logged and treated
        as a skipped migration; records written before the failure stay.
        """

        source_id = self.current_session()
        if source_id == session_id:
            log.info("session %s already migrated, skipping", session_id)
            return False
        try:
            records: Dict[str, Any] = {}
            if legacy_db:
                records.update(self._read_database(Path(legacy_db)))
            records.update(self._read_folder(Path(folder), required=not legacy_db))
            if "creds" not in records:
                raise MigrationError(f"no creds found in {folder} or {legacy_db}")
            creds = records.pop("creds")
            await self.store.write_now("creds", creds, replace=True)
            for key, value in records.items():
                await self.store.write_now(key, value, replace=True)
            self.store.set_meta(CURRENT_SESSION_META, session_id)
        except (OSError, UnicodeDecodeError, sqlite3.Error, MigrationError) as exc:
            log.warning("session migration skipped: %s", exc)
            return False
        log.info("migrated %d session records into %s", len(records) + 1, session_id)
        return True
