"""SQLite implementation of the cache snapshot key/value store."""
from __future__ import annotations

from datetime import datetime, timezone

import aiosqlite

from reviewsync.errors import PersistenceError


class SqliteSnapshotRepository:
    """One JSON payload per namespace in ``cache_snapshots``."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def get(self, namespace: str) -> dict | None:
        try:
            async with self.db.execute(
                "SELECT * FROM cache_snapshots WHERE namespace = ?", (namespace,)
            ) as cur:
                row = await cur.fetchone()
        except aiosqlite.Error as exc:
            raise PersistenceError(f"read failed: {exc}", namespace) from exc
        return dict(row) if row else None

    async def set(self, namespace: str, payload_json: str, format_version: int) -> None:
        now = datetime.now(timezone.utc).isoformat()
        try:
            await self.db.execute(
                """INSERT INTO cache_snapshots (namespace, payload_json, format_version, updated_at)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(namespace) DO UPDATE SET
                     payload_json=excluded.payload_json,
                     format_version=excluded.format_version,
                     updated_at=excluded.updated_at""",
                (namespace, payload_json, format_version, now),
            )
            await self.db.commit()
        except aiosqlite.Error as exc:
            raise PersistenceError(f"write failed: {exc}", namespace) from exc

    async def delete(self, namespace: str) -> None:
        try:
            await self.db.execute("DELETE FROM cache_snapshots WHERE namespace = ?", (namespace,))
            await self.db.commit()
        except aiosqlite.Error as exc:
            raise PersistenceError(f"delete failed: {exc}", namespace) from exc

    async def list_all(self) -> list[dict]:
        """Namespace metadata without payloads."""
        try:
            async with self.db.execute(
                """SELECT namespace, format_version, updated_at, LENGTH(payload_json) AS size_bytes
                   FROM cache_snapshots ORDER BY namespace"""
            ) as cur:
                return [dict(r) for r in await cur.fetchall()]
        except aiosqlite.Error as exc:
            raise PersistenceError(f"list failed: {exc}") from exc
