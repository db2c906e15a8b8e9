"""Debounced snapshot persistence and startup hydration.

Each cache namespace (``pulls``, ``issues``, ``labels``, ``workspace``,
``sync``) is stored as one JSON envelope. Writes are coalesced: a burst of
``persist`` calls inside the debounce window produces a single physical write
carrying the last snapshot.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any

from reviewsync import config
from reviewsync.errors import PersistenceError
from reviewsync.observability import otel

logger = logging.getLogger("reviewsync.durability")


def encode_snapshot(namespace: str, snapshot: dict[str, Any], format_version: int) -> str:
    envelope = {"namespace": namespace, "version": format_version, "data": snapshot}
    return json.dumps(envelope, separators=(",", ":"), sort_keys=True)


def decode_snapshot(payload_json: str, format_version: int) -> dict[str, Any] | None:
    """Return the snapshot body, or ``None`` when the payload is unusable."""
    try:
        envelope = json.loads(payload_json)
    except (TypeError, ValueError):
        return None
    if not isinstance(envelope, dict) or envelope.get("version") != format_version:
        return None
    data = envelope.get("data")
    return data if isinstance(data, dict) else None


class CacheDurability:
    """Owns the pending-write timers for every namespace.

    At most one pending write per namespace and at most one physical write in
    flight. ``clear`` bypasses the debounce and deletes immediately.
    """

    def __init__(
        self,
        repository: Any,
        *,
        debounce_seconds: float = config.PERSIST_DEBOUNCE_SECONDS,
        format_version: int = config.SNAPSHOT_FORMAT_VERSION,
    ):
        self.repository = repository
        self.debounce_seconds = debounce_seconds
        self.format_version = format_version
        self._pending: dict[str, dict[str, Any]] = {}
        self._timers: dict[str, asyncio.Task] = {}
        self._generations: dict[str, int] = {}
        self._write_lock = asyncio.Lock()
        self.write_count = 0
        self.last_error = ""

    async def hydrate(self, namespace: str) -> dict[str, Any]:
        try:
            row = await self.repository.get(namespace)
        except (PersistenceError, OSError) as exc:
            message = getattr(exc, "message", str(exc))
            logger.warning("Hydrate failed for %s: %s", namespace, message)
            self.last_error = message
            return {}
        if not row:
            return {}
        data = decode_snapshot(row.get("payload_json") or "", self.format_version)
        if data is None:
            logger.warning(
                "Discarding unreadable snapshot for %s (format_version=%s)",
                namespace,
                row.get("format_version"),
            )
            return {}
        return data

    def persist(self, namespace: str, snapshot: dict[str, Any]) -> None:
        """Schedule a write of ``snapshot``, superseding any pending one."""
        self._pending[namespace] = snapshot
        timer = self._timers.pop(namespace, None)
        if timer is not None and not timer.done():
            timer.cancel()
        self._timers[namespace] = asyncio.get_running_loop().create_task(self._delayed_write(namespace))

    def has_pending(self, namespace: str | None = None) -> bool:
        if namespace is None:
            return bool(self._pending)
        return namespace in self._pending

    async def _delayed_write(self, namespace: str) -> None:
        await asyncio.sleep(self.debounce_seconds)
        # Past this point the timer is no longer cancellable by persist().
        if self._timers.get(namespace) is asyncio.current_task():
            self._timers.pop(namespace, None)
        snapshot = self._pending.pop(namespace, None)
        if snapshot is None:
            return
        await self._write(namespace, snapshot, self._generations.get(namespace, 0))

    async def _write(self, namespace: str, snapshot: dict[str, Any], generation: int) -> bool:
        async with self._write_lock:
            if self._generations.get(namespace, 0) != generation:
                # Cleared while this write was waiting.
                return False
            started = time.monotonic()
            try:
                payload = encode_snapshot(namespace, snapshot, self.format_version)
                await self.repository.set(namespace, payload, self.format_version)
            except (PersistenceError, OSError, TypeError, ValueError) as exc:
                message = getattr(exc, "message", str(exc))
                logger.warning("Persist failed for %s: %s", namespace, message, exc_info=True)
                self.last_error = message
                otel.record_persist_write(namespace, "failed", (time.monotonic() - started) * 1000)
                return False
            self.write_count += 1
            otel.record_persist_write(namespace, "ok", (time.monotonic() - started) * 1000)
            return True

    async def clear(self, namespace: str) -> None:
        self._generations[namespace] = self._generations.get(namespace, 0) + 1
        self._pending.pop(namespace, None)
        timer = self._timers.pop(namespace, None)
        if timer is not None and not timer.done():
            timer.cancel()
        async with self._write_lock:
            try:
                await self.repository.delete(namespace)
            except (PersistenceError, OSError) as exc:
                message = getattr(exc, "message", str(exc))
                logger.warning("Clear failed for %s: %s", namespace, message)
                self.last_error = message
                return
        logger.info("Cleared persisted snapshot: %s", namespace)

    async def flush(self) -> int:
        """Write every pending snapshot now. Returns the number written."""
        written = 0
        for namespace in list(self._pending):
            timer = self._timers.pop(namespace, None)
            if timer is not None and not timer.done():
                timer.cancel()
            snapshot = self._pending.pop(namespace, None)
            if snapshot is None:
                continue
            if await self._write(namespace, snapshot, self._generations.get(namespace, 0)):
                written += 1
        return written

    async def status(self) -> dict[str, Any]:
        try:
            namespaces = await self.repository.list_all()
        except PersistenceError as exc:
            namespaces = []
            self.last_error = exc.message
        return {
            "namespaces": namespaces,
            "pending": sorted(self._pending),
            "writeCount": self.write_count,
            "lastError": self.last_error,
            "debounceSeconds": self.debounce_seconds,
            "formatVersion": self.format_version,
        }

    async def shutdown(self) -> None:
        await self.flush()
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
