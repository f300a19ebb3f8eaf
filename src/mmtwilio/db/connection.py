"""SQLite access for the binding key-value table."""

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from mmtwilio.config import get_settings

BUSY_TIMEOUT_SECONDS = 30.0


def connect(db_path: str | None = None) -> sqlite3.Connection:
    path = Path(db_path or get_settings().app_db)
    path.parent.mkdir(parents=True, exist_ok=True)
    # autocommit: every binding write is its own short transaction
    conn = sqlite3.connect(path, timeout=BUSY_TIMEOUT_SECONDS, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA synchronous = NORMAL")
    conn.execute(f"PRAGMA busy_timeout = {int(BUSY_TIMEOUT_SECONDS * 1000)}")
    return conn


@contextmanager
def get_conn(db_path: str | None = None) -> Iterator[sqlite3.Connection]:
    conn = connect(db_path)
    try:
        yield conn
    finally:
        conn.close()
