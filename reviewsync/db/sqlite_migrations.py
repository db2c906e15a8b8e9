"""SQLite schema for the durable snapshot store. Idempotent."""
from __future__ import annotations

import logging

import aiosqlite

logger = logging.getLogger("reviewsync.db")

SCHEMA_VERSION = 1

_TABLES = """
-- ── Schema version tracking ────────────────────────────────────────
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied   TEXT NOT NULL DEFAULT (datetime('now'))
);

-- ── Cache snapshots (one row per namespace) ────────────────────────
CREATE TABLE IF NOT EXISTS cache_snapshots (
    namespace       TEXT PRIMARY KEY,
    payload_json    TEXT NOT NULL,
    format_version  INTEGER NOT NULL DEFAULT 1,
    updated_at      TEXT NOT NULL
);
"""


async def run_migrations(db: aiosqlite.Connection) -> None:
    """Create all tables. Idempotent."""
    try:
        async with db.execute("SELECT MAX(version) FROM schema_version") as cur:
            row = await cur.fetchone()
            current_version = row[0] if row and row[0] else 0
    except aiosqlite.OperationalError:
        current_version = 0

    if current_version >= SCHEMA_VERSION:
        logger.info(f"Schema is up to date (version {current_version})")
        return

    logger.info(f"Running migrations: {current_version} → {SCHEMA_VERSION}")
    await db.executescript(_TABLES)
    await db.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
    await db.commit()
    logger.info(f"Migrations complete, schema version {SCHEMA_VERSION}")
