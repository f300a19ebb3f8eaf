"""Applies the ``NNNN_*.sql`` files next to this module.

Applied names are recorded in ``schema_migrations``. A single-row
``schema_migration_lock`` keeps two relay processes starting against the
same database from applying the same file twice.
"""

import logging
import os
import socket
import sqlite3
from pathlib import Path

from mmtwilio.db.connection import get_conn
from mmtwilio.errors import StoreError

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent

_BOOTSTRAP = (
    "CREATE TABLE IF NOT EXISTS schema_migrations(name TEXT PRIMARY KEY, applied_at TEXT NOT NULL)",
    "CREATE TABLE IF NOT EXISTS schema_migration_lock("
    "id INTEGER PRIMARY KEY CHECK(id=1), holder TEXT, acquired_at TEXT)",
    "INSERT OR IGNORE INTO schema_migration_lock(id, holder, acquired_at) VALUES(1, NULL, NULL)",
)


def _statements(sql: str) -> list[str]:
    return [part.strip() for part in sql.split(";") if part.strip()]


def _pending(conn: sqlite3.Connection) -> list[Path]:
    done = {row["name"] for row in conn.execute("SELECT name FROM schema_migrations")}
    return [path for path in sorted(MIGRATIONS_DIR.glob("*.sql")) if path.name not in done]


def run_migrations(db_path: str | None = None) -> list[str]:
    """Apply pending migrations in name order; returns the file names applied."""
    me = f"{socket.gethostname()}:{os.getpid()}"
    applied: list[str] = []
    with get_conn(db_path) as conn:
        conn.execute("BEGIN IMMEDIATE")
        try:
            for statement in _BOOTSTRAP:
                conn.execute(statement)
            row = conn.execute("SELECT holder FROM schema_migration_lock WHERE id=1").fetchone()
            holder = row["holder"] if row is not None else None
            if holder and holder != me:
                raise StoreError(f"schema migration lock held by {holder}")
            conn.execute(
                "UPDATE schema_migration_lock SET holder=?, acquired_at=datetime('now') WHERE id=1",
                (me,),
            )
            for path in _pending(conn):
                # executescript() commits implicitly, so statements run one at a time
                for statement in _statements(path.read_text()):
                    conn.execute(statement)
                conn.execute(
                    "INSERT INTO schema_migrations(name, applied_at) VALUES(?, datetime('now'))",
                    (path.name,),
                )
                applied.append(path.name)
            conn.execute("UPDATE schema_migration_lock SET holder=NULL, acquired_at=NULL WHERE id=1")
            conn.execute("COMMIT")
        except (sqlite3.Error, StoreError):
            conn.execute("ROLLBACK")
            raise
    if applied:
        logger.debug("Applied schema migrations: %s", ", ".join(applied))
    return applied
