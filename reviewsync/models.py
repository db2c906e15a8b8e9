"""Pydantic models matching the review client's entity types.

Remote fields keep the collaboration API's snake_case names so payloads
validate directly; locally-tracked fields use the renderer's camelCase names.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


# ── Shared remote shapes ───────────────────────────────────────────

class GitHubUser(BaseModel):
    login: str
    id: Optional[int] = None
    avatar_url: str = ""


class Label(BaseModel):
    name: str
    color: str = ""
    description: Optional[str] = None
    scope: str = ""  # owner/name, set locally


class RepoOwner(BaseModel):
    login: str
    avatar_url: str = ""


class RepoRef(BaseModel):
    name: str
    owner: RepoOwner
    full_name: str = ""


class BranchRef(BaseModel):
    ref: str = ""
    sha: str = ""
    repo: Optional[RepoRef] = None


class Repository(BaseModel):
    id: int
    name: str
    full_name: str
    owner: RepoOwner
    private: bool = False
    description: Optional[str] = None
    default_branch: str = "main"
    updated_at: Optional[datetime] = None
    pushed_at: Optional[datetime] = None


# ── Link + augmentation models ─────────────────────────────────────

class LinkedHead(BaseModel):
    ref: str = ""


class LinkedAuthor(BaseModel):
    login: str
    avatarUrl: str = ""


class LinkedReference(BaseModel):
    id: int
    number: int
    state: str = "open"
    merged: bool = False
    draft: bool = False
    title: str = ""
    head: Optional[LinkedHead] = None
    author: Optional[LinkedAuthor] = None


class RecordAugmentation(BaseModel):
    """Local-only fields, never present in a server payload."""

    isUpdatingLinks: bool = False
    linkedPRs: list[LinkedReference] = Field(default_factory=list)
    linksSource: str = ""  # "cache" | "remote" | "local"
    linksRefreshedAt: Optional[datetime] = None


def merge_augmentation(
    previous: RecordAugmentation | None,
    incoming: RecordAugmentation | None,
) -> RecordAugmentation | None:
    """Combine augmentation: fields explicitly set on ``incoming`` win,
    everything else carries forward from ``previous``."""
    if incoming is None:
        return previous.model_copy(deep=True) if previous is not None else None
    if previous is None:
        return incoming.model_copy(deep=True)
    updates = {name: getattr(incoming, name) for name in incoming.model_fields_set}
    return previous.model_copy(update=updates, deep=True)


# ── Entity records ─────────────────────────────────────────────────

class EntityRecord(BaseModel):
    """Authoritative fields shared by pull requests and issues."""

    scope: str = ""  # owner/name, set locally
    id: int
    number: int
    title: str = ""
    body: Optional[str] = None
    state: str = "open"  # "open" | "closed"
    user: Optional[GitHubUser] = None
    labels: list[Label] = Field(default_factory=list)
    assignees: list[GitHubUser] = Field(default_factory=list)
    html_url: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    augmentation: Optional[RecordAugmentation] = None


class PullRequest(EntityRecord):
    draft: bool = False
    merged: bool = False
    merged_at: Optional[datetime] = None
    head: Optional[BranchRef] = None
    base: Optional[BranchRef] = None
    requested_reviewers: list[GitHubUser] = Field(default_factory=list)
    comments: int = 0
    review_comments: int = 0
    # Explicit issue edges from the remote graph, when the payload carries them.
    closing_issue_numbers: list[int] = Field(default_factory=list)


class Issue(EntityRecord):
    comments: int = 0
    repository: Optional[RepoRef] = None


# ── Review threads ─────────────────────────────────────────────────

class ReviewComment(BaseModel):
    id: str
    body: str = ""
    author: Optional[str] = None
    createdAt: Optional[datetime] = None


class ReviewThread(BaseModel):
    id: str
    isResolved: bool = False
    isOutdated: bool = False
    path: str = ""
    line: Optional[int] = None
    comments: list[ReviewComment] = Field(default_factory=list)


# ── Workspace models ───────────────────────────────────────────────

class RepoFavorite(BaseModel):
    repoKey: str  # owner/name
    sortOrder: int = 0
    addedAt: Optional[datetime] = None


class OrgSyncSetting(BaseModel):
    login: str
    avatar_url: str = ""
    isSyncing: bool = True


# ── Sync status ────────────────────────────────────────────────────

class SyncStatus(BaseModel):
    isSyncing: bool = False
    progress: float = 0.0
    message: str = ""
    errors: list[str] = Field(default_factory=list)
    lastSyncTime: Optional[datetime] = None
    operationId: str = ""


class SyncOperation(BaseModel):
    """History entry for one sync trigger."""

    id: str
    kind: str
    trigger: str = "api"
    status: str = "running"  # running | completed | completed_with_errors | failed | cancelled
    target: str = ""
    totalScopes: int = 0
    completedScopes: int = 0
    error: str = ""
    startedAt: datetime
    finishedAt: Optional[datetime] = None
    durationMs: int = 0
