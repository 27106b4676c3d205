import logging
import re
import sqlite3
from typing import Iterable, List, Optional

log = logging.getLogger(__name__)

_DEVICE_SUFFIX = re.compile(r":\d+(?=@)")


def parse_jid(jid: Optional[str]) -> str:
    """Normalise an identifier: drop the device suffix, default the server."""

    value = str(jid or "").strip()
    if not value:
        return ""
    value = _DEVICE_SUFFIX.sub("", value)
    if "@" not in value:
        digits = re.sub(r"\D", "", value)
        return f"{digits}@s.whatsapp.net" if digits else ""
    return value


class OwnerRegistry:
    """Privileged identifiers allowed to run owner-only commands."""

    def __init__(self, conn: sqlite3.Connection, seed: Iterable[str] = ()) -> None:
        self.conn = conn
        for jid in seed:
            self.add(jid)

    def add(self, jid: str) -> bool:
        normalized = parse_jid(jid)
        if not normalized:
            return False
        with self.conn:
            cur = self.conn.execute("INSERT OR IGNORE INTO sudo(jid) VALUES(?)", (normalized,))
        if cur.rowcount:
            log.info("owner added: %s", normalized)
        return bool(cur.rowcount)

    def remove(self, jid: str) -> bool:
        normalized = parse_jid(jid)
        with self.conn:
            cur = self.conn.execute("DELETE FROM sudo WHERE jid=?", (normalized,))
        if cur.rowcount:
            log.info("owner removed: %s", normalized)
        return bool(cur.rowcount)

    def is_owner(self, jid: Optional[str]) -> bool:
        normalized = parse_jid(jid)
        if not normalized:
            return False
        row = self.conn.execute("SELECT 1 FROM sudo WHERE jid=?", (normalized,)).fetchone()
        return row is not None

    def list(self) -> List[str]:
        rows = self.conn.execute("SELECT jid FROM sudo ORDER BY jid").fetchall()
        return [row["jid"] for row in rows]
