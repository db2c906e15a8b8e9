"""Repository package for database access."""

from .snapshots import SqliteSnapshotRepository

__all__ = ["SqliteSnapshotRepository"]
