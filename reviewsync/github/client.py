"""Async client for the GitHub REST and GraphQL APIs."""
from __future__ import annotations

import logging
import re
from typing import Any, Callable, TypeVar
from urllib.parse import quote

import httpx

from reviewsync import config
from reviewsync.errors import RemoteAPIError
from reviewsync.issue_linking import add_closing_reference, references_issue, strip_closing_references
from reviewsync.models import (
    Issue,
    Label,
    LinkedAuthor,
    LinkedHead,
    LinkedReference,
    PullRequest,
    RepoOwner,
    RepoRef,
    Repository,
    ReviewComment,
    ReviewThread,
)

logger = logging.getLogger("reviewsync.github")

_NEXT_LINK_RE = re.compile(r'<([^>]+)>;\s*rel="next"')
_MAX_PAGES = 10

T = TypeVar("T")

_REVIEW_THREADS_QUERY = """
query($owner: String!, $name: String!, $number: Int!) {
  repository(owner: $owner, name: $name) {
    pullRequest(number: $number) {
      reviewThreads(first: 100) {
        nodes {
          id
          isResolved
          isOutdated
          path
          line
          comments(first: 50) {
            nodes { id body createdAt author { login } }
          }
        }
      }
    }
  }
}
"""

_ISSUE_DEVELOPMENT_QUERY = """
query($owner: String!, $name: String!, $number: Int!) {
  repository(owner: $owner, name: $name) {
    issue(number: $number) {
      closedByPullRequestsReferences(first: 50, includeClosedPrs: true) {
        nodes {
          databaseId
          number
          state
          merged
          isDraft
          title
          headRefName
          author { login avatarUrl }
        }
      }
    }
  }
}
"""


def _classify_response(response: httpx.Response) -> RemoteAPIError:
    status = response.status_code
    try:
        payload = response.json()
    except ValueError:
        payload = {}
    message = ""
    if isinstance(payload, dict):
        message = str(payload.get("message") or "")
    if not message:
        message = response.text[:200] or f"HTTP {status}"

    if status == 401:
        return RemoteAPIError("unauthorized", message, status)
    if status == 429 or (status == 403 and response.headers.get("x-ratelimit-remaining") == "0"):
        return RemoteAPIError("rate_limited", message, status)
    if status == 404:
        return RemoteAPIError("not_found", message, status)
    if status >= 500:
        return RemoteAPIError("transient", message, status)
    return RemoteAPIError("http_error", message, status)


def _to_pull_request(payload: dict[str, Any], scope: str) -> PullRequest:
    data = dict(payload)
    data["scope"] = scope
    data["merged"] = bool(payload.get("merged") or payload.get("merged_at"))
    data["draft"] = bool(payload.get("draft"))
    return PullRequest.model_validate(data)


def _to_issue(payload: dict[str, Any], scope: str) -> Issue:
    data = dict(payload)
    data["scope"] = scope
    if not data.get("repository"):
        owner, name = scope.split("/", 1)
        data["repository"] = RepoRef(name=name, owner=RepoOwner(login=owner), full_name=scope).model_dump()
    return Issue.model_validate(data)


def _to_label(payload: dict[str, Any], scope: str) -> Label:
    return Label(
        name=str(payload.get("name") or ""),
        color=str(payload.get("color") or ""),
        description=payload.get("description"),
        scope=scope,
    )


def _review_threads(data: dict[str, Any]) -> list[ReviewThread]:
    pull = ((data.get("repository") or {}).get("pullRequest") or {})
    threads: list[ReviewThread] = []
    for node in (pull.get("reviewThreads") or {}).get("nodes") or []:
        comments = [
            ReviewComment(
                id=str(comment.get("id")),
                body=comment.get("body") or "",
                author=(comment.get("author") or {}).get("login"),
                createdAt=comment.get("createdAt"),
            )
            for comment in (node.get("comments") or {}).get("nodes") or []
        ]
        threads.append(
            ReviewThread(
                id=str(node.get("id")),
                isResolved=bool(node.get("isResolved")),
                isOutdated=bool(node.get("isOutdated")),
                path=node.get("path") or "",
                line=node.get("line"),
                comments=comments,
            )
        )
    return threads


def _development_refs(data: dict[str, Any]) -> list[LinkedReference]:
    issue = ((data.get("repository") or {}).get("issue") or {})
    refs: list[LinkedReference] = []
    for node in (issue.get("closedByPullRequestsReferences") or {}).get("nodes") or []:
        author = node.get("author") or {}
        refs.append(
            LinkedReference(
                id=int(node.get("databaseId") or node.get("number") or 0),
                number=int(node.get("number") or 0),
                state=str(node.get("state") or "OPEN").lower(),
                merged=bool(node.get("merged")),
                draft=bool(node.get("isDraft")),
                title=node.get("title") or "",
                head=LinkedHead(ref=node.get("headRefName") or ""),
                author=LinkedAuthor(login=author["login"], avatarUrl=author.get("avatarUrl") or "")
                if author.get("login") else None,
            )
        )
    return refs


def _invalid_payload(subject: str, exc: Exception) -> RemoteAPIError:
    detail = (str(exc).splitlines() or [type(exc).__name__])[0]
    return RemoteAPIError("invalid_payload", f"Unexpected response for {subject}: {detail}")


def _decode(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise _invalid_payload(f"{response.request.method} {response.request.url.path}", exc) from exc


def _convert(subject: str, build: Callable[[], T]) -> T:
    """Run a payload conversion; malformed rows surface as ``invalid_payload``."""
    try:
        return build()
    except (ValueError, TypeError, AttributeError, KeyError) as exc:
        logger.warning("Malformed GitHub payload for %s: %s", subject, exc)
        raise _invalid_payload(subject, exc) from exc


class GitHubAPI:
    """Thin async wrapper over the collaboration API.

    Every failure surfaces as ``RemoteAPIError`` with a stable ``code`` so
    callers can record it without inspecting transport details.
    """

    def __init__(
        self,
        token: str,
        *,
        base_url: str = config.GITHUB_API_URL,
        graphql_url: str = config.GITHUB_GRAPHQL_URL,
        timeout: float = config.REQUEST_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.graphql_url = graphql_url
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # ── Transport ──────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(method, url, params=params, json=json)
        except httpx.TimeoutException as exc:
            raise RemoteAPIError("transient", f"Request timed out: {method} {url}") from exc
        except httpx.RequestError as exc:
            raise RemoteAPIError("transient", f"Connection error: {exc}") from exc

        if response.status_code >= 400:
            error = _classify_response(response)
            logger.warning("GitHub %s %s failed (%s): %s", method, url, error.code, error.message)
            raise error
        return response

    async def _get_json(self, url: str, params: dict[str, Any] | None = None) -> Any:
        response = await self._request("GET", url, params=params)
        return _decode(response)

    async def _paginate(self, url: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        next_url: str | None = url
        next_params: dict[str, Any] | None = {"per_page": 100, **(params or {})}
        pages = 0
        while next_url and pages < _MAX_PAGES:
            response = await self._request("GET", next_url, params=next_params)
            payload = _decode(response)
            if isinstance(payload, list):
                items.extend(item for item in payload if isinstance(item, dict))
            pages += 1
            match = _NEXT_LINK_RE.search(response.headers.get("link", ""))
            next_url = match.group(1) if match else None
            # The next link already carries the query string.
            next_params = None
        return items

    async def _graphql(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        response = await self._request("POST", self.graphql_url, json={"query": query, "variables": variables})
        payload = _decode(response)
        errors = payload.get("errors") if isinstance(payload, dict) else None
        if errors:
            message = "; ".join(str(err.get("message", err)) for err in errors if isinstance(err, dict)) or str(errors)
            raise RemoteAPIError("http_error", message, response.status_code)
        data = payload.get("data") if isinstance(payload, dict) else None
        return data or {}

    def _issue_from(self, response: httpx.Response, scope: str) -> Issue:
        payload = _decode(response)
        return _convert(scope, lambda: _to_issue(payload, scope))

    def _labels_from(self, response: httpx.Response, scope: str) -> list[Label]:
        payload = _decode(response)
        return _convert(scope, lambda: [_to_label(row, scope) for row in payload])

    # ── Repositories ───────────────────────────────────────────────

    async def list_repositories(self) -> list[Repository]:
        rows = await self._paginate("/user/repos", {"sort": "updated"})
        return _convert("repositories", lambda: [Repository.model_validate(row) for row in rows])

    async def list_organizations(self) -> list[RepoOwner]:
        rows = await self._paginate("/user/orgs")
        return _convert("organizations", lambda: [RepoOwner.model_validate(row) for row in rows])

    # ── Pull requests ──────────────────────────────────────────────

    async def list_pull_requests(self, owner: str, repo: str, state: str = "all") -> list[PullRequest]:
        scope = f"{owner}/{repo}"
        rows = await self._paginate(f"/repos/{owner}/{repo}/pulls", {"state": state})
        return _convert(scope, lambda: [_to_pull_request(row, scope) for row in rows])

    async def get_pull_request(self, owner: str, repo: str, number: int) -> PullRequest:
        scope = f"{owner}/{repo}"
        payload = await self._get_json(f"/repos/{owner}/{repo}/pulls/{number}")
        return _convert(f"{scope}#{number}", lambda: _to_pull_request(payload, scope))

    async def get_review_threads(self, owner: str, repo: str, number: int) -> list[ReviewThread]:
        data = await self._graphql(_REVIEW_THREADS_QUERY, {"owner": owner, "name": repo, "number": int(number)})
        return _convert(f"{owner}/{repo}#{number} review threads", lambda: _review_threads(data))

    # ── Issues ─────────────────────────────────────────────────────

    async def list_issues(self, owner: str, repo: str, state: str = "all") -> list[Issue]:
        scope = f"{owner}/{repo}"
        rows = await self._paginate(f"/repos/{owner}/{repo}/issues", {"state": state})
        # The issues endpoint also returns pull requests.
        return _convert(scope, lambda: [_to_issue(row, scope) for row in rows if "pull_request" not in row])

    async def get_issue(self, owner: str, repo: str, number: int) -> Issue:
        scope = f"{owner}/{repo}"
        payload = await self._get_json(f"/repos/{owner}/{repo}/issues/{number}")
        return _convert(f"{scope}#{number}", lambda: _to_issue(payload, scope))

    async def create_issue(
        self,
        owner: str,
        repo: str,
        title: str,
        body: str = "",
        labels: list[str] | None = None,
        assignees: list[str] | None = None,
    ) -> Issue:
        payload: dict[str, Any] = {"title": title, "body": body}
        if labels:
            payload["labels"] = labels
        if assignees:
            payload["assignees"] = assignees
        response = await self._request("POST", f"/repos/{owner}/{repo}/issues", json=payload)
        return self._issue_from(response, f"{owner}/{repo}")

    async def update_issue_state(self, owner: str, repo: str, number: int, state: str) -> Issue:
        response = await self._request("PATCH", f"/repos/{owner}/{repo}/issues/{number}", json={"state": state})
        return self._issue_from(response, f"{owner}/{repo}")

    async def get_issue_development(self, owner: str, repo: str, number: int) -> list[LinkedReference]:
        """Pull requests the remote graph records as closing this issue."""
        data = await self._graphql(_ISSUE_DEVELOPMENT_QUERY, {"owner": owner, "name": repo, "number": int(number)})
        return _convert(f"{owner}/{repo}#{number} development", lambda: _development_refs(data))

    # ── Labels ─────────────────────────────────────────────────────

    async def list_labels(self, owner: str, repo: str) -> list[Label]:
        scope = f"{owner}/{repo}"
        rows = await self._paginate(f"/repos/{owner}/{repo}/labels")
        return _convert(scope, lambda: [_to_label(row, scope) for row in rows])

    async def create_label(
        self,
        owner: str,
        repo: str,
        name: str,
        color: str,
        description: str | None = None,
    ) -> Label:
        payload: dict[str, Any] = {"name": name, "color": color.lstrip("#")}
        if description:
            payload["description"] = description
        response = await self._request("POST", f"/repos/{owner}/{repo}/labels", json=payload)
        scope = f"{owner}/{repo}"
        payload = _decode(response)
        return _convert(scope, lambda: _to_label(payload, scope))

    async def set_issue_labels(self, owner: str, repo: str, number: int, labels: list[str]) -> list[Label]:
        response = await self._request(
            "PUT", f"/repos/{owner}/{repo}/issues/{number}/labels", json={"labels": labels}
        )
        return self._labels_from(response, f"{owner}/{repo}")

    async def add_issue_labels(self, owner: str, repo: str, number: int, labels: list[str]) -> list[Label]:
        response = await self._request(
            "POST", f"/repos/{owner}/{repo}/issues/{number}/labels", json={"labels": labels}
        )
        return self._labels_from(response, f"{owner}/{repo}")

    async def remove_issue_label(self, owner: str, repo: str, number: int, label: str) -> None:
        try:
            await self._request("DELETE", f"/repos/{owner}/{repo}/issues/{number}/labels/{quote(label, safe='')}")
        except RemoteAPIError as exc:
            # Removing a label the issue does not carry is already the desired end state.
            if exc.code != "not_found":
                raise

    # ── Issue <-> PR links ─────────────────────────────────────────

    async def link_pull_request_to_issue(self, owner: str, repo: str, issue_number: int, pr_number: int) -> PullRequest:
        scope = f"{owner}/{repo}"
        pr = await self.get_pull_request(owner, repo, pr_number)
        if references_issue(pr.body, scope, issue_number):
            return pr
        body = add_closing_reference(pr.body, issue_number)
        response = await self._request("PATCH", f"/repos/{owner}/{repo}/pulls/{pr_number}", json={"body": body})
        payload = _decode(response)
        return _convert(f"{scope}#{pr_number}", lambda: _to_pull_request(payload, scope))

    async def unlink_pull_request_from_issue(
        self, owner: str, repo: str, issue_number: int, pr_number: int
    ) -> PullRequest:
        scope = f"{owner}/{repo}"
        pr = await self.get_pull_request(owner, repo, pr_number)
        if not references_issue(pr.body, scope, issue_number):
            return pr
        body = strip_closing_references(pr.body, scope, issue_number)
        response = await self._request("PATCH", f"/repos/{owner}/{repo}/pulls/{pr_number}", json={"body": body})
        payload = _decode(response)
        return _convert(f"{scope}#{pr_number}", lambda: _to_pull_request(payload, scope))
