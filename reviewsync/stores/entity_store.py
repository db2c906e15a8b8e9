"""Two-level cache shared by every entity kind.

``active_index`` holds the records of the scope the user is looking at;
``archive`` holds every scope fetched so far. Both are updated together under
one lock so readers never observe them disagreeing.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from reviewsync.errors import AuthError, ConcurrentOperationRejected, RemoteAPIError
from reviewsync.models import merge_augmentation
from reviewsync.observability import otel
from reviewsync.scope_keys import composite_key, parse_scope

logger = logging.getLogger("reviewsync.stores")

RecordT = TypeVar("RecordT", bound=BaseModel)


@dataclass
class FetchResult:
    scope: str
    status: str  # fetched | cached | skipped | failed
    records: list[Any] = field(default_factory=list)
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.status != "failed"


@dataclass
class MutationResult:
    ok: bool
    error: str = ""
    records: list[Any] = field(default_factory=list)


class EntityStore(Generic[RecordT]):
    namespace = ""
    entity = ""
    model: type[BaseModel] = BaseModel

    def __init__(self, remote: Any, durability: Any | None = None):
        self.remote = remote
        self.durability = durability
        self.active_scope = ""
        self.active_index: dict[str, RecordT] = {}
        self.archive: dict[str, dict[str, RecordT]] = {}
        self.loaded_scopes: set[str] = set()
        self.fetched_at: dict[str, float] = {}
        self.loading = False
        self.error = ""
        self._in_flight: set[str] = set()
        self._lock = asyncio.Lock()

    # ── Hooks for subclasses ───────────────────────────────────────

    def key_for(self, record: RecordT) -> str:
        return composite_key(record.scope, record.number)

    async def _list_remote(self, client: Any, owner: str, name: str) -> list[RecordT]:
        raise NotImplementedError

    def _merge(self, prior: RecordT | None, record: RecordT) -> RecordT:
        augmentation = merge_augmentation(
            prior.augmentation if prior is not None else None,
            record.augmentation,
        )
        return record.model_copy(update={"augmentation": augmentation})

    def _is_fresh(self, scope: str) -> bool:
        return scope in self.loaded_scopes

    # ── Reads ──────────────────────────────────────────────────────

    def get(self, scope: str, ident: Any) -> RecordT | None:
        key = composite_key(scope, ident)
        if scope == self.active_scope and key in self.active_index:
            return self.active_index[key]
        return self.archive.get(scope, {}).get(key)

    def list_scope(self, scope: str) -> list[RecordT]:
        return list(self.archive.get(scope, {}).values())

    def active_records(self) -> list[RecordT]:
        return list(self.active_index.values())

    def is_loaded(self, scope: str) -> bool:
        return scope in self.loaded_scopes

    def summary(self) -> dict[str, Any]:
        return {
            "entity": self.entity,
            "activeScope": self.active_scope,
            "activeCount": len(self.active_index),
            "scopes": {scope: len(bucket) for scope, bucket in self.archive.items()},
            "loadedScopes": sorted(self.loaded_scopes),
            "loading": self.loading,
            "fetching": sorted(self._in_flight),
            "error": self.error,
        }

    # ── Scope selection + fetch ────────────────────────────────────

    def _activate(self, scope: str) -> None:
        self.active_scope = scope
        self.active_index = dict(self.archive.get(scope, {}))

    async def select_scope(self, scope: str) -> list[RecordT]:
        """Switch the active scope using archived data only."""
        parse_scope(scope)
        async with self._lock:
            self._activate(scope)
            return list(self.active_index.values())

    async def _claim(self, scope: str, force: bool, activate: bool) -> FetchResult | None:
        async with self._lock:
            if activate:
                self._activate(scope)
            if not force and self._is_fresh(scope):
                return FetchResult(scope, "cached", records=self.list_scope(scope))
            if scope in self._in_flight:
                raise ConcurrentOperationRejected(f"{self.entity} fetch already running for {scope}")
            self._in_flight.add(scope)
            self.loading = True
            self.error = ""
        return None

    async def fetch_scope(self, scope: str, force: bool = False, activate: bool = False) -> FetchResult:
        owner, name = parse_scope(scope)
        try:
            cached = await self._claim(scope, force, activate)
        except ConcurrentOperationRejected as exc:
            logger.info(exc.message)
            return FetchResult(scope, "skipped")
        if cached is not None:
            return cached

        started = time.monotonic()
        fetched: list[RecordT] | None = None
        error = ""
        try:
            with otel.start_span(f"reviewsync.fetch.{self.entity}", {"scope": scope}):
                client = self.remote.client()
                fetched = await self._list_remote(client, owner, name)
        except (RemoteAPIError, AuthError) as exc:
            error = exc.message
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected failure fetching %s for %s", self.entity, scope)
            error = str(exc) or type(exc).__name__
        finally:
            # The claim is released on every exit path, cancellation included.
            if fetched is None:
                async with self._lock:
                    self._in_flight.discard(scope)
                    self.loading = bool(self._in_flight)
                    if error:
                        self.error = error

        if fetched is None:
            logger.error("Failed to fetch %s for %s: %s", self.entity, scope, error)
            otel.record_scope_fetch(self.entity, "failed", (time.monotonic() - started) * 1000, scope=scope)
            return FetchResult(scope, "failed", error=error)

        async with self._lock:
            previous = self.archive.get(scope, {})
            merged: dict[str, RecordT] = {}
            for record in fetched:
                key = self.key_for(record)
                merged[key] = self._merge(previous.get(key), record)
            self.archive[scope] = merged
            if self.active_scope == scope:
                self.active_index = dict(merged)
            self.loaded_scopes.add(scope)
            self.fetched_at[scope] = time.time()
            self._in_flight.discard(scope)
            self.loading = bool(self._in_flight)
            records = list(merged.values())

        otel.record_scope_fetch(self.entity, "fetched", (time.monotonic() - started) * 1000, scope=scope)
        logger.info("Fetched %d %s record(s) for %s", len(records), self.entity, scope)
        self._schedule_persist()
        return FetchResult(scope, "fetched", records=records)

    # ── Local mutation ─────────────────────────────────────────────

    def _apply(self, record: RecordT, merge: bool = True) -> RecordT:
        scope = record.scope
        parse_scope(scope)
        key = self.key_for(record)
        bucket = self.archive.setdefault(scope, {})
        if merge:
            prior = bucket.get(key)
            if prior is None and scope == self.active_scope:
                prior = self.active_index.get(key)
            record = self._merge(prior, record)
        bucket[key] = record
        if scope == self.active_scope:
            self.active_index[key] = record
        return record

    async def mutate(self, record: RecordT) -> RecordT:
        """Write one record into the active index and its archive bucket."""
        applied = await self.bulk_mutate([record])
        return applied[0]

    async def bulk_mutate(self, records: list[RecordT]) -> list[RecordT]:
        async with self._lock:
            applied = [self._apply(record) for record in records]
        if applied:
            self._schedule_persist()
        return applied

    async def _replace(self, records: list[RecordT]) -> None:
        """Restore records exactly as given (rollback path)."""
        async with self._lock:
            for record in records:
                self._apply(record, merge=False)
        if records:
            self._schedule_persist()

    async def clear(self, scope: str | None = None) -> None:
        async with self._lock:
            if scope is None:
                self.archive.clear()
                self.active_index.clear()
                self.loaded_scopes.clear()
                self.fetched_at.clear()
            else:
                self.archive.pop(scope, None)
                self.loaded_scopes.discard(scope)
                self.fetched_at.pop(scope, None)
                if scope == self.active_scope:
                    self.active_index.clear()
            self.error = ""
        if self.durability is None:
            return
        if scope is None:
            await self.durability.clear(self.namespace)
        else:
            self.durability.persist(self.namespace, self.snapshot())
            await self.durability.flush()

    # ── Durability ─────────────────────────────────────────────────

    def _schedule_persist(self) -> None:
        if self.durability is not None:
            self.durability.persist(self.namespace, self.snapshot())

    def snapshot(self) -> dict[str, Any]:
        return {
            "activeScope": self.active_scope,
            "archive": {
                scope: [record.model_dump(mode="json") for record in bucket.values()]
                for scope, bucket in self.archive.items()
            },
            "fetchedAt": dict(self.fetched_at),
        }

    def restore(self, snapshot: dict[str, Any]) -> int:
        """Load a snapshot produced by ``snapshot()``. Returns records restored."""
        archive: dict[str, dict[str, RecordT]] = {}
        restored = 0
        for scope, rows in (snapshot.get("archive") or {}).items():
            bucket: dict[str, RecordT] = {}
            for row in rows or []:
                try:
                    record = self.model.model_validate(row)
                except ValidationError as exc:
                    logger.warning("Skipping unreadable %s record in %s: %s", self.entity, scope, exc)
                    continue
                bucket[self.key_for(record)] = record
                restored += 1
            archive[scope] = bucket
        self.archive = archive
        self.fetched_at = {
            scope: float(value)
            for scope, value in (snapshot.get("fetchedAt") or {}).items()
            if isinstance(value, (int, float))
        }
        active = snapshot.get("activeScope") or ""
        if active and not self.active_scope:
            self.active_scope = active
        self.active_index = dict(self.archive.get(self.active_scope, {}))
        return restored

    async def hydrate(self) -> int:
        if self.durability is None:
            return 0
        data = await self.durability.hydrate(self.namespace)
        async with self._lock:
            count = self.restore(data) if data else 0
        if count:
            logger.info("Hydrated %d %s record(s) from snapshot", count, self.entity)
        return count
