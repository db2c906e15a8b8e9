"""Observability helpers."""

from reviewsync.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_scope_fetch,
    record_sync_run,
    record_persist_write,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_scope_fetch",
    "record_sync_run",
    "record_persist_write",
]
