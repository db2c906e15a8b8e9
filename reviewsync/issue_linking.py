"""Shared utilities for issue <-> pull request linking.

These helpers centralize closing-reference parsing, reference building and
Linear identifier extraction so the link resolver, the API client and the
stores use the same matching semantics.
"""
from __future__ import annotations

import re
from typing import Iterable

from reviewsync.models import LinkedAuthor, LinkedHead, LinkedReference, PullRequest


_CLOSING_REF_PATTERN = re.compile(
    r"\b(?:close[sd]?|fix(?:e[sd])?|resolve[sd]?)\b\s*:?\s+"
    r"(?:"
    r"https?://[^\s/]+/(?P<url_owner>[\w.-]+)/(?P<url_repo>[\w.-]+)/issues/(?P<url_number>\d+)"
    r"|"
    r"(?:(?P<owner>[\w.-]+)/(?P<repo>[\w.-]+))?#(?P<number>\d+)"
    r")\b",
    re.IGNORECASE,
)
_BLANK_RUN_PATTERN = re.compile(r"\n{3,}")

_LINEAR_ID_PATTERNS = (
    re.compile(r"https?://linear\.app/[\w-]+/issue/([A-Za-z]{2,10}-\d+)", re.IGNORECASE),
    re.compile(r"\b([A-Z]{2,10}-\d+)\b"),
)


def _match_target(match: re.Match, default_scope: str) -> tuple[str, int]:
    if match.group("url_number"):
        return f"{match.group('url_owner')}/{match.group('url_repo')}", int(match.group("url_number"))
    if match.group("owner"):
        return f"{match.group('owner')}/{match.group('repo')}", int(match.group("number"))
    return default_scope, int(match.group("number"))


def extract_closing_references(text: str | None, default_scope: str) -> list[tuple[str, int]]:
    """Return ``(scope, number)`` pairs closed by keywords in ``text``, in order."""
    if not text:
        return []
    seen: set[tuple[str, int]] = set()
    ordered: list[tuple[str, int]] = []
    for match in _CLOSING_REF_PATTERN.finditer(text):
        target = _match_target(match, default_scope)
        key = (target[0].lower(), target[1])
        if key in seen:
            continue
        seen.add(key)
        ordered.append(target)
    return ordered


def references_issue(text: str | None, scope: str, number: int) -> bool:
    wanted = (scope.lower(), int(number))
    return any(
        (ref_scope.lower(), ref_number) == wanted
        for ref_scope, ref_number in extract_closing_references(text, scope)
    )


def pull_request_closes_issue(pr: PullRequest, scope: str, number: int) -> bool:
    """True when ``pr`` is associated with issue ``scope#number``.

    An explicit graph edge on the record wins; otherwise the PR body is
    scanned for a closing keyword.
    """
    pr_scope = pr.scope or scope
    if pr_scope.lower() == scope.lower() and int(number) in pr.closing_issue_numbers:
        return True
    return references_issue(pr.body, scope, number) if pr_scope.lower() == scope.lower() else False


def to_linked_reference(pr: PullRequest) -> LinkedReference:
    return LinkedReference(
        id=pr.id,
        number=pr.number,
        state=pr.state,
        merged=pr.merged,
        draft=pr.draft,
        title=pr.title,
        head=LinkedHead(ref=pr.head.ref) if pr.head else None,
        author=LinkedAuthor(login=pr.user.login, avatarUrl=pr.user.avatar_url) if pr.user else None,
    )


def placeholder_reference(number: int) -> LinkedReference:
    """Reference for a PR that is not in the local cache yet."""
    return LinkedReference(
        id=int(number),
        number=int(number),
        state="open",
        merged=False,
        draft=False,
        title=f"PR #{number}",
        head=LinkedHead(ref=f"branch-{number}"),
    )


def linked_references_from_cache(
    pull_requests: Iterable[PullRequest],
    scope: str,
    issue_number: int,
) -> list[LinkedReference]:
    matches = [pr for pr in pull_requests if pull_request_closes_issue(pr, scope, issue_number)]
    matches.sort(key=lambda pr: pr.number)
    return [to_linked_reference(pr) for pr in matches]


def add_closing_reference(body: str | None, issue_number: int) -> str:
    text = (body or "").rstrip()
    line = f"Closes #{int(issue_number)}"
    if not text:
        return line
    return f"{text}\n\n{line}"


def strip_closing_references(body: str | None, scope: str, issue_number: int) -> str:
    """Remove every closing reference to ``scope#issue_number`` from ``body``."""
    if not body:
        return ""

    def _replace(match: re.Match) -> str:
        ref_scope, ref_number = _match_target(match, scope)
        if ref_scope.lower() == scope.lower() and ref_number == int(issue_number):
            return ""
        return match.group(0)

    stripped = _CLOSING_REF_PATTERN.sub(_replace, body)
    stripped = "\n".join(line.rstrip() for line in stripped.splitlines())
    return _BLANK_RUN_PATTERN.sub("\n\n", stripped).strip()


# ── Linear identifiers ─────────────────────────────────────────────

def extract_linear_issue_ids(text: str | None) -> list[str]:
    """Deduplicated Linear identifiers (``ENG-123``) mentioned in ``text``."""
    if not text:
        return []
    ids: list[str] = []
    for pattern in _LINEAR_ID_PATTERNS:
        for match in pattern.finditer(text):
            token = match.group(1).upper()
            if token not in ids:
                ids.append(token)
    return ids


def build_linear_issue_map(pull_requests: Iterable[PullRequest]) -> dict[str, list[PullRequest]]:
    mapping: dict[str, list[PullRequest]] = {}
    for pr in pull_requests:
        text = "\n".join(part for part in (pr.body, pr.title) if part)
        for issue_id in extract_linear_issue_ids(text):
            mapping.setdefault(issue_id, []).append(pr)
    return mapping
