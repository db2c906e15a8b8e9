"""Label cache with a freshness window on top of the loaded check."""
from __future__ import annotations

import logging
import time
from typing import Any

from reviewsync import config
from reviewsync.errors import AuthError, RemoteAPIError
from reviewsync.models import Label
from reviewsync.scope_keys import composite_key, parse_scope
from reviewsync.stores.entity_store import EntityStore, MutationResult

logger = logging.getLogger("reviewsync.stores")


class LabelStore(EntityStore[Label]):
    namespace = "labels"
    entity = "label"
    model = Label

    def __init__(self, remote: Any, durability: Any | None = None, ttl_seconds: float = config.LABEL_CACHE_TTL_SECONDS):
        super().__init__(remote, durability)
        self.ttl_seconds = ttl_seconds

    def key_for(self, record: Label) -> str:
        return composite_key(record.scope, record.name)

    def _merge(self, prior: Label | None, record: Label) -> Label:
        return record

    def _is_fresh(self, scope: str) -> bool:
        # Timestamps survive restarts, so hydrated labels count while fresh.
        fetched = self.fetched_at.get(scope)
        return fetched is not None and (time.time() - fetched) < self.ttl_seconds

    async def _list_remote(self, client: Any, owner: str, name: str) -> list[Label]:
        return await client.list_labels(owner, name)

    def get_cached_labels(self, scope: str) -> list[Label] | None:
        if not self._is_fresh(scope):
            return None
        return self.list_scope(scope)

    async def create_label(
        self,
        scope: str,
        name: str,
        color: str,
        description: str | None = None,
    ) -> MutationResult:
        owner, repo = parse_scope(scope)
        try:
            label = await self.remote.client().create_label(owner, repo, name, color, description)
        except (RemoteAPIError, AuthError) as exc:
            self.error = exc.message
            logger.error("Failed to create label %s in %s: %s", name, scope, exc.message)
            return MutationResult(False, exc.message)
        return MutationResult(True, records=[await self.mutate(label)])
