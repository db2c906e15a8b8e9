"""Pull request cache."""
from __future__ import annotations

import logging
from typing import Any

from reviewsync.errors import AuthError, RemoteAPIError
from reviewsync.models import PullRequest, ReviewThread
from reviewsync.scope_keys import parse_scope
from reviewsync.stores.entity_store import EntityStore, FetchResult

logger = logging.getLogger("reviewsync.stores")


class PullRequestStore(EntityStore[PullRequest]):
    namespace = "pulls"
    entity = "pull_request"
    model = PullRequest

    async def _list_remote(self, client: Any, owner: str, name: str) -> list[PullRequest]:
        return await client.list_pull_requests(owner, name, state="all")

    async def refresh_pull_request(self, scope: str, number: int) -> FetchResult:
        """Fetch one pull request and merge it into the cache."""
        owner, name = parse_scope(scope)
        try:
            client = self.remote.client()
            pr = await client.get_pull_request(owner, name, int(number))
        except (RemoteAPIError, AuthError) as exc:
            self.error = exc.message
            logger.error("Failed to refresh %s#%s: %s", scope, number, exc.message)
            return FetchResult(scope, "failed", error=exc.message)
        return FetchResult(scope, "fetched", records=[await self.mutate(pr)])

    async def review_threads(self, scope: str, number: int) -> list[ReviewThread]:
        """Review threads are read through, never cached."""
        owner, name = parse_scope(scope)
        return await self.remote.client().get_review_threads(owner, name, int(number))
