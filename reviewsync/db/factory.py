"""Repository factory to abstract DB backend (SQLite vs Postgres)."""
from __future__ import annotations

from typing import Any

import aiosqlite

from reviewsync.db.repositories.snapshots import SqliteSnapshotRepository


def get_snapshot_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteSnapshotRepository(db)
    from reviewsync.db.repositories.postgres.snapshots import PostgresSnapshotRepository
    return PostgresSnapshotRepository(db)
