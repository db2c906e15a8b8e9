"""Issue <-> pull request link resolution.

Two read modes: the cache path derives links from the locally cached pull
requests and never touches the network; the forced path asks the remote
graph once and replaces the stored list outright. Link and unlink edit the
pull request's closing reference remotely and then recompute locally.
"""
from __future__ import annotations

import logging
from typing import Any

from reviewsync.date_utils import utc_now
from reviewsync.errors import AuthError, RemoteAPIError
from reviewsync.issue_linking import (
    build_linear_issue_map,
    extract_linear_issue_ids,
    linked_references_from_cache,
    placeholder_reference,
    to_linked_reference,
)
from reviewsync.models import Issue, LinkedReference, RecordAugmentation
from reviewsync.scope_keys import parse_scope
from reviewsync.stores.entity_store import MutationResult

logger = logging.getLogger("reviewsync.links")


class LinkResolver:
    def __init__(self, remote: Any, pull_requests: Any, issues: Any):
        self.remote = remote
        self.pull_requests = pull_requests
        self.issues = issues
        self.error = ""

    def _current_links(self, scope: str, number: int) -> list[LinkedReference]:
        issue = self.issues.get(scope, number)
        if issue is None or issue.augmentation is None:
            return []
        return list(issue.augmentation.linkedPRs)

    async def _write_augmentation(self, scope: str, number: int, **fields: Any) -> Issue | None:
        """Mutate only the given augmentation fields of a cached issue."""
        issue = self.issues.get(scope, number)
        if issue is None:
            return None
        return await self.issues.mutate(issue.model_copy(update={"augmentation": RecordAugmentation(**fields)}))

    async def _store_links(
        self, scope: str, number: int, refs: list[LinkedReference], source: str, **extra: Any
    ) -> Issue | None:
        return await self._write_augmentation(
            scope,
            number,
            linkedPRs=refs,
            linksSource=source,
            linksRefreshedAt=utc_now(),
            **extra,
        )

    async def get_linked_entities(self, scope: str, number: int, force_remote: bool = False) -> list[LinkedReference]:
        owner, name = parse_scope(scope)
        if not force_remote:
            refs = linked_references_from_cache(self.pull_requests.list_scope(scope), scope, number)
            await self._store_links(scope, number, refs, "cache")
            return refs

        try:
            refs = await self.remote.client().get_issue_development(owner, name, int(number))
        except (RemoteAPIError, AuthError) as exc:
            self.error = exc.message
            logger.error("Failed to refresh links for %s#%s: %s", scope, number, exc.message)
            return self._current_links(scope, number)
        self.error = ""
        await self._store_links(scope, number, refs, "remote")
        return refs

    async def link_pull_requests(self, scope: str, issue_number: int, pr_numbers: list[int]) -> MutationResult:
        owner, name = parse_scope(scope)
        await self._write_augmentation(scope, issue_number, isUpdatingLinks=True)
        try:
            client = self.remote.client()
            for pr_number in pr_numbers:
                pr = await client.link_pull_request_to_issue(owner, name, int(issue_number), int(pr_number))
                if pr is not None:
                    await self.pull_requests.mutate(pr)
        except (RemoteAPIError, AuthError) as exc:
            self.error = exc.message
            logger.error("Failed to link PRs %s to %s#%s: %s", pr_numbers, scope, issue_number, exc.message)
            await self._write_augmentation(scope, issue_number, isUpdatingLinks=False)
            return MutationResult(False, exc.message)

        refs = {ref.number: ref for ref in self._current_links(scope, issue_number)}
        for pr_number in pr_numbers:
            pr = self.pull_requests.get(scope, pr_number)
            refs[int(pr_number)] = to_linked_reference(pr) if pr is not None else placeholder_reference(pr_number)
        ordered = sorted(refs.values(), key=lambda ref: ref.number)
        updated = await self._store_links(scope, issue_number, ordered, "local", isUpdatingLinks=False)
        self.error = ""
        return MutationResult(True, records=[updated] if updated is not None else [])

    async def unlink_pull_request(self, scope: str, issue_number: int, pr_number: int) -> MutationResult:
        owner, name = parse_scope(scope)
        await self._write_augmentation(scope, issue_number, isUpdatingLinks=True)
        try:
            pr = await self.remote.client().unlink_pull_request_from_issue(
                owner, name, int(issue_number), int(pr_number)
            )
        except (RemoteAPIError, AuthError) as exc:
            self.error = exc.message
            logger.error("Failed to unlink PR #%s from %s#%s: %s", pr_number, scope, issue_number, exc.message)
            await self._write_augmentation(scope, issue_number, isUpdatingLinks=False)
            return MutationResult(False, exc.message)
        if pr is not None:
            await self.pull_requests.mutate(pr)

        refs = [ref for ref in self._current_links(scope, issue_number) if ref.number != int(pr_number)]
        updated = await self._store_links(scope, issue_number, refs, "local", isUpdatingLinks=False)
        self.error = ""
        return MutationResult(True, records=[updated] if updated is not None else [])

    # ── Linear identifiers ─────────────────────────────────────────

    def extract_linear_issue_ids(self, text: str | None) -> list[str]:
        return extract_linear_issue_ids(text)

    def linear_issue_map(self, scope: str) -> dict[str, list[LinkedReference]]:
        mapping = build_linear_issue_map(self.pull_requests.list_scope(scope))
        return {issue_id: [to_linked_reference(pr) for pr in prs] for issue_id, prs in mapping.items()}
