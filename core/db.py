import sqlite3
from pathlib import Path
from typing import Union


def connect(db_path: Union[Path, str]) -> sqlite3.Connection:
    target = str(db_path)
    if target != ":memory:":
        path = Path(db_path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        target = str(path)
    conn = sqlite3.connect(target, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    try:
        conn.execute("PRAGMA journal_mode = WAL")
    except sqlite3.OperationalError:
        conn.execute("PRAGMA journal_mode = DELETE")
    conn.execute("PRAGMA synchronous = NORMAL")
    conn.execute("PRAGMA temp_store = MEMORY")
    return conn


def initialize_schema(conn: sqlite3.Connection) -> None:
    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS session (
              id TEXT PRIMARY KEY,
              data TEXT
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS session_meta (
              name TEXT PRIMARY KEY,
              value TEXT
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS sudo (
              jid TEXT PRIMARY KEY
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS group_metadata (
              jid TEXT PRIMARY KEY,
              data TEXT NOT NULL,
              updated REAL NOT NULL DEFAULT 0
            )
            """
        )
