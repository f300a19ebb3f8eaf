"""Key-value store used for persisted bindings."""

from __future__ import annotations

import sqlite3
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable

from mmtwilio.db.connection import get_conn
from mmtwilio.errors import StoreError


@runtime_checkable
class KVStore(Protocol):
    """Point reads and writes plus paged key listing. No cross-key transactions."""

    def get(self, key: str) -> bytes | None: ...

    def set(self, key: str, value: bytes) -> None: ...

    def delete(self, key: str) -> None: ...

    def list_keys(self, page: int, per_page: int) -> list[str]:
        """Return one page of keys in key order; an empty list ends the listing."""
        ...


class SqliteKVStore:
    """KV store backed by the ``kv_store`` table of the application database."""

    def get(self, key: str) -> bytes | None:
        try:
            with get_conn() as conn:
                row = conn.execute("SELECT value FROM kv_store WHERE key=?", (key,)).fetchone()
        except sqlite3.Error as exc:
            raise StoreError(f"could not read key {key}: {exc}") from exc
        if row is None:
            return None
        value = row["value"]
        return value.encode() if isinstance(value, str) else bytes(value)

    def set(self, key: str, value: bytes) -> None:
        try:
            with get_conn() as conn:
                conn.execute(
                    "INSERT INTO kv_store(key, value, updated_at) VALUES(?,?,?) "
                    "ON CONFLICT(key) DO UPDATE SET value=excluded.value, "
                    "updated_at=excluded.updated_at",
                    (key, value, datetime.now(UTC).isoformat()),
                )
        except sqlite3.Error as exc:
            raise StoreError(f"could not write key {key}: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            with get_conn() as conn:
                conn.execute("DELETE FROM kv_store WHERE key=?", (key,))
        except sqlite3.Error as exc:
            raise StoreError(f"could not delete key {key}: {exc}") from exc

    def list_keys(self, page: int, per_page: int) -> list[str]:
        if page < 0 or per_page <= 0:
            return []
        try:
            with get_conn() as conn:
                rows = conn.execute(
                    "SELECT key FROM kv_store ORDER BY key LIMIT ? OFFSET ?",
                    (per_page, page * per_page),
                ).fetchall()
        except sqlite3.Error as exc:
            raise StoreError(f"could not list keys: {exc}") from exc
        return [str(row["key"]) for row in rows]
