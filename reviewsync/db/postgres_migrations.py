"""PostgreSQL schema for the durable snapshot store."""
from __future__ import annotations

import logging

import asyncpg

logger = logging.getLogger("reviewsync.db")

SCHEMA_VERSION = 1

_TABLES = """
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied   TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS cache_snapshots (
    namespace       TEXT PRIMARY KEY,
    payload_json    TEXT NOT NULL,
    format_version  INTEGER NOT NULL DEFAULT 1,
    updated_at      TEXT NOT NULL
);
"""


async def run_migrations(db: asyncpg.Pool) -> None:
    async with db.acquire() as conn:
        await conn.execute(_TABLES)
        current_version = await conn.fetchval("SELECT MAX(version) FROM schema_version") or 0
        if current_version >= SCHEMA_VERSION:
            logger.info(f"Schema is up to date (version {current_version})")
            return
        await conn.execute("INSERT INTO schema_version (version) VALUES ($1)", SCHEMA_VERSION)
    logger.info(f"Postgres migrations complete, schema version {SCHEMA_VERSION}")
