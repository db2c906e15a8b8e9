"""Offline fixture dataset and an in-memory stand-in for ``GitHubAPI``.

Selected when the credential is the offline sentinel so the stores exercise
the same code paths without touching the network.
"""
from __future__ import annotations

import copy
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from reviewsync.errors import RemoteAPIError
from reviewsync.issue_linking import (
    add_closing_reference,
    linked_references_from_cache,
    references_issue,
    strip_closing_references,
)
from reviewsync.models import (
    Issue,
    Label,
    LinkedReference,
    PullRequest,
    RepoOwner,
    RepoRef,
    Repository,
    ReviewComment,
    ReviewThread,
)

logger = logging.getLogger("reviewsync.github")

_BASE_TIME = datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)

_USERS = {
    "octocat": {"login": "octocat", "id": 1, "avatar_url": "https://avatars.githubusercontent.com/u/1"},
    "hubot": {"login": "hubot", "id": 2, "avatar_url": "https://avatars.githubusercontent.com/u/2"},
    "monalisa": {"login": "monalisa", "id": 3, "avatar_url": "https://avatars.githubusercontent.com/u/3"},
}

_LABELS = [
    {"name": "bug", "color": "d73a4a", "description": "Something isn't working"},
    {"name": "enhancement", "color": "a2eeef", "description": "New feature or request"},
    {"name": "documentation", "color": "0075ca", "description": "Improvements or additions to documentation"},
    {"name": "good first issue", "color": "7057ff", "description": "Good for newcomers"},
]

_ORGANIZATIONS = ["monalisa"]

_REPOSITORIES = [
    {"id": 1001, "name": "review-client", "owner": "octocat", "description": "Desktop code review client"},
    {"id": 1002, "name": "api-server", "owner": "octocat", "description": "Backend API"},
    {"id": 1003, "name": "design-system", "owner": "monalisa", "description": "Shared UI components"},
]


def _ts(hours: int) -> str:
    return (_BASE_TIME + timedelta(hours=hours)).isoformat().replace("+00:00", "Z")


def _repo_payload(row: dict[str, Any], index: int) -> dict[str, Any]:
    owner = row["owner"]
    return {
        "id": row["id"],
        "name": row["name"],
        "full_name": f"{owner}/{row['name']}",
        "owner": {"login": owner, "avatar_url": _USERS[owner]["avatar_url"]},
        "private": False,
        "description": row["description"],
        "default_branch": "main",
        "updated_at": _ts(48 - index),
        "pushed_at": _ts(48 - index),
    }


def _pull_payloads(scope: str, seed: int) -> list[dict[str, Any]]:
    owner, name = scope.split("/", 1)
    repo = {"name": name, "owner": {"login": owner}, "full_name": scope}
    rows = [
        (1, "Add keyboard shortcuts for review navigation", "open", False, None, "octocat",
         "Adds j/k navigation.\n\nCloses #3"),
        (2, "Fix diff rendering for renamed files", "closed", False, _ts(20), "hubot",
         "Fixes #4 and references ENG-42"),
        (5, "WIP: virtualized file tree", "open", True, None, "monalisa", "Draft for perf work."),
        (6, "Bump dependencies", "closed", False, None, "hubot", "Routine upgrade."),
    ]
    payloads = []
    for number, title, state, draft, merged_at, author, body in rows:
        payloads.append(
            {
                "id": seed * 100 + number,
                "number": number,
                "title": title,
                "body": body,
                "state": state,
                "draft": draft,
                "merged_at": merged_at,
                "user": _USERS[author],
                "labels": [_LABELS[number % len(_LABELS)]],
                "assignees": [],
                "requested_reviewers": [_USERS["octocat"]] if author != "octocat" else [],
                "html_url": f"https://github.com/{scope}/pull/{number}",
                "created_at": _ts(number),
                "updated_at": _ts(number + 10),
                "closed_at": merged_at or (_ts(number + 12) if state == "closed" else None),
                "head": {"ref": f"feature/{number}", "sha": f"{seed:04x}{number:036x}", "repo": repo},
                "base": {"ref": "main", "sha": f"{seed:04x}{0:036x}", "repo": repo},
                "comments": number,
                "review_comments": number * 2,
            }
        )
    return payloads


def _issue_payloads(scope: str, seed: int) -> list[dict[str, Any]]:
    rows = [
        (3, "Shortcut help overlay", "open", "monalisa"),
        (4, "Renamed files show as deleted", "closed", "octocat"),
        (7, "Document cache settings", "open", "hubot"),
    ]
    return [
        {
            "id": seed * 100 + number,
            "number": number,
            "title": title,
            "body": f"Issue {number} in {scope}",
            "state": state,
            "user": _USERS[author],
            "labels": [_LABELS[number % len(_LABELS)]],
            "assignees": [],
            "html_url": f"https://github.com/{scope}/issues/{number}",
            "created_at": _ts(number),
            "updated_at": _ts(number + 5),
            "closed_at": _ts(number + 6) if state == "closed" else None,
            "comments": 1,
        }
        for number, title, state, author in rows
    ]


class FixtureGitHubAPI:
    """In-memory implementation of the ``GitHubAPI`` operations.

    Each instance owns a private copy of the dataset; writes are visible to
    later reads on the same instance.
    """

    def __init__(self):
        self.repositories = [_repo_payload(row, index) for index, row in enumerate(_REPOSITORIES)]
        self._pulls: dict[str, list[dict[str, Any]]] = {}
        self._issues: dict[str, list[dict[str, Any]]] = {}
        self._labels: dict[str, list[dict[str, Any]]] = {}
        for repo in self.repositories:
            scope = repo["full_name"]
            self._pulls[scope] = _pull_payloads(scope, repo["id"])
            self._issues[scope] = _issue_payloads(scope, repo["id"])
            self._labels[scope] = copy.deepcopy(_LABELS)
        logger.debug("Fixture dataset ready for %d repositories", len(self.repositories))

    async def aclose(self) -> None:
        return None

    def _scope(self, owner: str, repo: str) -> str:
        scope = f"{owner}/{repo}"
        if scope not in self._pulls:
            raise RemoteAPIError("not_found", f"Repository {scope} not found", 404)
        return scope

    def _find(self, rows: list[dict[str, Any]], number: int, kind: str) -> dict[str, Any]:
        for row in rows:
            if row["number"] == int(number):
                return row
        raise RemoteAPIError("not_found", f"{kind} #{number} not found", 404)

    def _pull(self, scope: str, row: dict[str, Any]) -> PullRequest:
        data = copy.deepcopy(row)
        data["scope"] = scope
        data["merged"] = bool(row.get("merged_at"))
        return PullRequest.model_validate(data)

    def _issue(self, scope: str, row: dict[str, Any]) -> Issue:
        owner, name = scope.split("/", 1)
        data = copy.deepcopy(row)
        data["scope"] = scope
        data["repository"] = RepoRef(name=name, owner=RepoOwner(login=owner), full_name=scope).model_dump()
        return Issue.model_validate(data)

    def _label_rows(self, scope: str, names: list[str]) -> list[dict[str, Any]]:
        known = {row["name"]: row for row in self._labels[scope]}
        return [copy.deepcopy(known.get(name, {"name": name, "color": "ededed", "description": None})) for name in names]

    # ── Read operations ────────────────────────────────────────────

    async def list_repositories(self) -> list[Repository]:
        return [Repository.model_validate(row) for row in self.repositories]

    async def list_organizations(self) -> list[RepoOwner]:
        return [RepoOwner(login=login, avatar_url=_USERS[login]["avatar_url"]) for login in _ORGANIZATIONS]

    async def list_pull_requests(self, owner: str, repo: str, state: str = "all") -> list[PullRequest]:
        scope = self._scope(owner, repo)
        return [
            self._pull(scope, row)
            for row in self._pulls[scope]
            if state == "all" or row["state"] == state
        ]

    async def get_pull_request(self, owner: str, repo: str, number: int) -> PullRequest:
        scope = self._scope(owner, repo)
        return self._pull(scope, self._find(self._pulls[scope], number, "Pull request"))

    async def get_review_threads(self, owner: str, repo: str, number: int) -> list[ReviewThread]:
        scope = self._scope(owner, repo)
        pr = self._find(self._pulls[scope], number, "Pull request")
        return [
            ReviewThread(
                id=f"thread-{pr['id']}-1",
                isResolved=pr["state"] == "closed",
                path="src/app.ts",
                line=12,
                comments=[
                    ReviewComment(id=f"comment-{pr['id']}-1", body="Can this be memoized?", author="octocat",
                                  createdAt=pr["created_at"]),
                ],
            )
        ]

    async def list_issues(self, owner: str, repo: str, state: str = "all") -> list[Issue]:
        scope = self._scope(owner, repo)
        return [
            self._issue(scope, row)
            for row in self._issues[scope]
            if state == "all" or row["state"] == state
        ]

    async def get_issue(self, owner: str, repo: str, number: int) -> Issue:
        scope = self._scope(owner, repo)
        return self._issue(scope, self._find(self._issues[scope], number, "Issue"))

    async def get_issue_development(self, owner: str, repo: str, number: int) -> list[LinkedReference]:
        scope = self._scope(owner, repo)
        self._find(self._issues[scope], number, "Issue")
        pulls = [self._pull(scope, row) for row in self._pulls[scope]]
        return linked_references_from_cache(pulls, scope, number)

    async def list_labels(self, owner: str, repo: str) -> list[Label]:
        scope = self._scope(owner, repo)
        return [Label(scope=scope, **row) for row in self._labels[scope]]

    # ── Write operations ───────────────────────────────────────────

    async def create_issue(
        self,
        owner: str,
        repo: str,
        title: str,
        body: str = "",
        labels: list[str] | None = None,
        assignees: list[str] | None = None,
    ) -> Issue:
        scope = self._scope(owner, repo)
        rows = self._issues[scope]
        used = [row["number"] for row in rows] + [row["number"] for row in self._pulls[scope]]
        number = max(used, default=0) + 1
        now = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        row = {
            "id": int(datetime.now(timezone.utc).timestamp() * 1000),
            "number": number,
            "title": title,
            "body": body,
            "state": "open",
            "user": _USERS["octocat"],
            "labels": self._label_rows(scope, labels or []),
            "assignees": [_USERS[name] for name in assignees or [] if name in _USERS],
            "html_url": f"https://github.com/{scope}/issues/{number}",
            "created_at": now,
            "updated_at": now,
            "closed_at": None,
            "comments": 0,
        }
        rows.append(row)
        return self._issue(scope, row)

    async def update_issue_state(self, owner: str, repo: str, number: int, state: str) -> Issue:
        scope = self._scope(owner, repo)
        row = self._find(self._issues[scope], number, "Issue")
        now = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        row["state"] = state
        row["updated_at"] = now
        row["closed_at"] = now if state == "closed" else None
        return self._issue(scope, row)

    async def create_label(
        self,
        owner: str,
        repo: str,
        name: str,
        color: str,
        description: str | None = None,
    ) -> Label:
        scope = self._scope(owner, repo)
        if any(row["name"] == name for row in self._labels[scope]):
            raise RemoteAPIError("http_error", f"Label {name} already exists", 422)
        row = {"name": name, "color": color.lstrip("#"), "description": description}
        self._labels[scope].append(row)
        return Label(scope=scope, **row)

    async def set_issue_labels(self, owner: str, repo: str, number: int, labels: list[str]) -> list[Label]:
        scope = self._scope(owner, repo)
        row = self._find(self._issues[scope], number, "Issue")
        row["labels"] = self._label_rows(scope, labels)
        return [Label(scope=scope, **label) for label in row["labels"]]

    async def add_issue_labels(self, owner: str, repo: str, number: int, labels: list[str]) -> list[Label]:
        scope = self._scope(owner, repo)
        row = self._find(self._issues[scope], number, "Issue")
        current = [label["name"] for label in row["labels"]]
        merged = current + [name for name in labels if name not in current]
        return await self.set_issue_labels(owner, repo, number, merged)

    async def remove_issue_label(self, owner: str, repo: str, number: int, label: str) -> None:
        scope = self._scope(owner, repo)
        row = self._find(self._issues[scope], number, "Issue")
        row["labels"] = [item for item in row["labels"] if item["name"] != label]

    async def link_pull_request_to_issue(self, owner: str, repo: str, issue_number: int, pr_number: int) -> PullRequest:
        scope = self._scope(owner, repo)
        row = self._find(self._pulls[scope], pr_number, "Pull request")
        if not references_issue(row.get("body"), scope, issue_number):
            row["body"] = add_closing_reference(row.get("body"), issue_number)
        return self._pull(scope, row)

    async def unlink_pull_request_from_issue(
        self, owner: str, repo: str, issue_number: int, pr_number: int
    ) -> PullRequest:
        scope = self._scope(owner, repo)
        row = self._find(self._pulls[scope], pr_number, "Pull request")
        row["body"] = strip_closing_references(row.get("body"), scope, issue_number)
        return self._pull(scope, row)

