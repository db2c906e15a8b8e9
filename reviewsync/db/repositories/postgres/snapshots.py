"""PostgreSQL implementation of the cache snapshot key/value store."""
from __future__ import annotations

from datetime import datetime, timezone

import asyncpg

from reviewsync.errors import PersistenceError

# Connection loss surfaces as InterfaceError or a socket-level OSError.
_DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


class PostgresSnapshotRepository:
    def __init__(self, db: asyncpg.Pool):
        self.db = db

    async def get(self, namespace: str) -> dict | None:
        try:
            row = await self.db.fetchrow("SELECT * FROM cache_snapshots WHERE namespace = $1", namespace)
        except _DRIVER_ERRORS as exc:
            raise PersistenceError(f"read failed: {exc}", namespace) from exc
        return dict(row) if row else None

    async def set(self, namespace: str, payload_json: str, format_version: int) -> None:
        now = datetime.now(timezone.utc).isoformat()
        try:
            await self.db.execute(
                """INSERT INTO cache_snapshots (namespace, payload_json, format_version, updated_at)
                   VALUES ($1, $2, $3, $4)
                   ON CONFLICT(namespace) DO UPDATE SET
                     payload_json=EXCLUDED.payload_json,
                     format_version=EXCLUDED.format_version,
                     updated_at=EXCLUDED.updated_at""",
                namespace, payload_json, format_version, now,
            )
        except _DRIVER_ERRORS as exc:
            raise PersistenceError(f"write failed: {exc}", namespace) from exc

    async def delete(self, namespace: str) -> None:
        try:
            await self.db.execute("DELETE FROM cache_snapshots WHERE namespace = $1", namespace)
        except _DRIVER_ERRORS as exc:
            raise PersistenceError(f"delete failed: {exc}", namespace) from exc

    async def list_all(self) -> list[dict]:
        try:
            rows = await self.db.fetch(
                """SELECT namespace, format_version, updated_at, LENGTH(payload_json) AS size_bytes
                   FROM cache_snapshots ORDER BY namespace"""
            )
        except _DRIVER_ERRORS as exc:
            raise PersistenceError(f"list failed: {exc}") from exc
        return [dict(r) for r in rows]
