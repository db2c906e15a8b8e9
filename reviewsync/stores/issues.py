"""Issue cache with optimistic remote mutations."""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from reviewsync.date_utils import utc_now
from reviewsync.errors import AuthError, RemoteAPIError
from reviewsync.models import Issue, Label
from reviewsync.scope_keys import parse_scope
from reviewsync.stores.entity_store import EntityStore, MutationResult

logger = logging.getLogger("reviewsync.stores")

RemoteChange = Callable[[Any, str, str, int, "Issue | None"], Awaitable["Issue | None"]]


def _with_labels(issue: Issue, names: list[str]) -> Issue:
    known = {label.name: label for label in issue.labels}
    labels = [known.get(name) or Label(name=name, scope=issue.scope) for name in names]
    return issue.model_copy(update={"labels": labels})


class IssueStore(EntityStore[Issue]):
    namespace = "issues"
    entity = "issue"
    model = Issue

    async def _list_remote(self, client: Any, owner: str, name: str) -> list[Issue]:
        return await client.list_issues(owner, name, state="all")

    async def _apply_remote(
        self,
        scope: str,
        numbers: list[int],
        local_change: Callable[[Issue], Issue],
        remote_change: RemoteChange,
    ) -> MutationResult:
        """Apply ``local_change`` now, confirm each issue remotely, roll back failures."""
        owner, name = parse_scope(scope)
        try:
            client = self.remote.client()
        except AuthError as exc:
            self.error = exc.message
            return MutationResult(False, exc.message)

        previous = {int(number): self.get(scope, number) for number in numbers}
        optimistic = [local_change(record) for record in previous.values() if record is not None]
        if optimistic:
            await self.bulk_mutate(optimistic)

        confirmed: list[Issue] = []
        failures: list[tuple[int, str]] = []
        for number, prior in previous.items():
            try:
                record = await remote_change(client, owner, name, number, prior)
            except RemoteAPIError as exc:
                failures.append((number, exc.message))
                continue
            if record is not None:
                confirmed.append(record)

        rollback = [previous[number] for number, _ in failures if previous[number] is not None]
        if rollback:
            await self._replace(rollback)
        if confirmed:
            # Confirmed records carry authoritative fields only.
            confirmed = await self.bulk_mutate(
                [record.model_copy(update={"augmentation": None}) for record in confirmed]
            )

        if failures:
            error = "; ".join(f"{scope}#{number}: {message}" for number, message in failures)
            self.error = error
            logger.error("Issue update failed: %s", error)
            return MutationResult(False, error, confirmed)
        return MutationResult(True, records=confirmed)

    async def create_issue(
        self,
        scope: str,
        title: str,
        body: str = "",
        labels: list[str] | None = None,
        assignees: list[str] | None = None,
    ) -> MutationResult:
        owner, name = parse_scope(scope)
        try:
            issue = await self.remote.client().create_issue(owner, name, title, body, labels, assignees)
        except (RemoteAPIError, AuthError) as exc:
            self.error = exc.message
            logger.error("Failed to create issue in %s: %s", scope, exc.message)
            return MutationResult(False, exc.message)
        return MutationResult(True, records=[await self.mutate(issue)])

    async def _set_state(self, scope: str, numbers: list[int], state: str) -> MutationResult:
        closed_at = utc_now() if state == "closed" else None

        def local(issue: Issue) -> Issue:
            return issue.model_copy(update={"state": state, "closed_at": closed_at})

        async def remote(client: Any, owner: str, name: str, number: int, prior: Issue | None) -> Issue:
            return await client.update_issue_state(owner, name, number, state)

        return await self._apply_remote(scope, numbers, local, remote)

    async def close_issues(self, scope: str, numbers: list[int]) -> MutationResult:
        return await self._set_state(scope, numbers, "closed")

    async def reopen_issues(self, scope: str, numbers: list[int]) -> MutationResult:
        return await self._set_state(scope, numbers, "open")

    async def set_issue_labels(self, scope: str, number: int, labels: list[str]) -> MutationResult:
        async def remote(client: Any, owner: str, name: str, num: int, prior: Issue | None) -> Issue | None:
            server_labels = await client.set_issue_labels(owner, name, num, labels)
            return prior.model_copy(update={"labels": server_labels}) if prior else None

        return await self._apply_remote(scope, [number], lambda issue: _with_labels(issue, labels), remote)

    async def add_labels_to_issues(self, scope: str, numbers: list[int], labels: list[str]) -> MutationResult:
        def local(issue: Issue) -> Issue:
            current = [label.name for label in issue.labels]
            return _with_labels(issue, current + [name for name in labels if name not in current])

        async def remote(client: Any, owner: str, name: str, num: int, prior: Issue | None) -> Issue | None:
            server_labels = await client.add_issue_labels(owner, name, num, labels)
            return prior.model_copy(update={"labels": server_labels}) if prior else None

        return await self._apply_remote(scope, numbers, local, remote)

    async def remove_labels_from_issues(self, scope: str, numbers: list[int], labels: list[str]) -> MutationResult:
        removed = set(labels)

        def local(issue: Issue) -> Issue:
            return issue.model_copy(update={"labels": [label for label in issue.labels if label.name not in removed]})

        async def remote(client: Any, owner: str, name: str, num: int, prior: Issue | None) -> Issue | None:
            for label in labels:
                await client.remove_issue_label(owner, name, num, label)
            return local(prior) if prior else None

        return await self._apply_remote(scope, numbers, local, remote)
