"""Repository workspace, entity cache and issue-link API."""
from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from reviewsync.errors import AuthError, RemoteAPIError
from reviewsync.models import OrgSyncSetting, RepoFavorite, Repository
from reviewsync.routers.deps import (
    dump_records,
    fetch_payload,
    get_service,
    mutation_payload,
    scope_from_path,
)

repos_router = APIRouter(prefix="/api/repos", tags=["repos"])


class SelectRequest(BaseModel):
    scope: str = Field(..., min_length=3)


class FavoriteOrderRequest(BaseModel):
    scopes: list[str]


class OrgSyncRequest(BaseModel):
    isSyncing: bool


class CreateIssueRequest(BaseModel):
    title: str = Field(..., min_length=1)
    body: str = ""
    labels: list[str] = Field(default_factory=list)
    assignees: list[str] = Field(default_factory=list)


class IssueStateRequest(BaseModel):
    numbers: list[int] = Field(..., min_length=1)
    state: Literal["open", "closed"]


class IssueLabelsRequest(BaseModel):
    labels: list[str]


class BulkLabelsRequest(BaseModel):
    numbers: list[int] = Field(..., min_length=1)
    labels: list[str] = Field(..., min_length=1)
    action: Literal["add", "remove"] = "add"


class CreateLabelRequest(BaseModel):
    name: str = Field(..., min_length=1)
    color: str = Field(..., min_length=3)
    description: str | None = None


class LinkRequest(BaseModel):
    prNumbers: list[int] = Field(..., min_length=1)


def _raise_remote(exc: Exception) -> None:
    if isinstance(exc, AuthError):
        raise HTTPException(status_code=401, detail=exc.message)
    if isinstance(exc, RemoteAPIError):
        status = 404 if exc.code == "not_found" else 502
        raise HTTPException(status_code=status, detail=exc.message)
    raise exc


# ── Workspace ──────────────────────────────────────────────────────

@repos_router.get("", response_model=list[Repository])
async def list_repositories(request: Request):
    return get_service(request, "workspace").list_repositories()


@repos_router.post("/refresh", response_model=list[Repository])
async def refresh_repositories(request: Request):
    try:
        return await get_service(request, "workspace").refresh_repositories()
    except (AuthError, RemoteAPIError) as exc:
        _raise_remote(exc)


@repos_router.get("/selected")
async def get_selected_repository(request: Request):
    workspace = get_service(request, "workspace")
    return {"scope": workspace.selected_scope, "recent": workspace.recent_scopes()}


@repos_router.post("/select")
async def select_repository(request: Request, body: SelectRequest):
    """Switch the selected repository; cached data is served without a network call."""
    workspace = get_service(request, "workspace")
    try:
        workspace.select_scope(body.scope)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    pulls = await get_service(request, "pull_requests").select_scope(body.scope)
    issues = await get_service(request, "issues").select_scope(body.scope)
    return {
        "scope": body.scope,
        "pulls": dump_records(pulls),
        "issues": dump_records(issues),
    }


@repos_router.get("/recent")
async def list_recent_repositories(request: Request):
    return {"items": get_service(request, "workspace").recent_scopes()}


@repos_router.get("/favorites", response_model=list[RepoFavorite])
async def list_favorites(request: Request):
    return get_service(request, "workspace").list_favorites()


@repos_router.post("/favorites", response_model=RepoFavorite)
async def add_favorite(request: Request, body: SelectRequest):
    try:
        return get_service(request, "workspace").add_favorite(body.scope)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@repos_router.put("/favorites/order", response_model=list[RepoFavorite])
async def reorder_favorites(request: Request, body: FavoriteOrderRequest):
    return get_service(request, "workspace").reorder_favorites(body.scopes)


@repos_router.delete("/favorites/{owner}/{name}")
async def remove_favorite(request: Request, owner: str, name: str):
    removed = get_service(request, "workspace").remove_favorite(scope_from_path(owner, name))
    if not removed:
        raise HTTPException(status_code=404, detail="Favorite not found")
    return {"status": "ok"}


# ── Organizations ──────────────────────────────────────────────────

@repos_router.get("/orgs")
async def list_organizations(request: Request):
    workspace = get_service(request, "workspace")
    return {"items": dump_records(workspace.list_organizations()), "enabled": workspace.enabled_orgs()}


@repos_router.post("/orgs/refresh", response_model=list[OrgSyncSetting])
async def refresh_organizations(request: Request):
    try:
        return await get_service(request, "workspace").refresh_organizations()
    except (AuthError, RemoteAPIError) as exc:
        _raise_remote(exc)


@repos_router.put("/orgs/{login}", response_model=OrgSyncSetting)
async def toggle_org_sync(request: Request, login: str, body: OrgSyncRequest):
    setting = get_service(request, "workspace").toggle_org_sync(login, body.isSyncing)
    if setting is None:
        raise HTTPException(status_code=404, detail=f"Organization {login} not found")
    return setting


# ── Pull requests ──────────────────────────────────────────────────

@repos_router.get("/{owner}/{name}/pulls")
async def list_pull_requests(request: Request, owner: str, name: str, force: bool = Query(False)):
    scope = scope_from_path(owner, name)
    result = await get_service(request, "pull_requests").fetch_scope(scope, force=force)
    return fetch_payload(result)


@repos_router.get("/{owner}/{name}/pulls/{number}/threads")
async def list_review_threads(request: Request, owner: str, name: str, number: int):
    scope = scope_from_path(owner, name)
    try:
        threads = await get_service(request, "pull_requests").review_threads(scope, number)
    except (AuthError, RemoteAPIError) as exc:
        _raise_remote(exc)
    return {"status": "ok", "items": dump_records(threads)}


# ── Issues ─────────────────────────────────────────────────────────

@repos_router.get("/{owner}/{name}/issues")
async def list_issues(request: Request, owner: str, name: str, force: bool = Query(False)):
    scope = scope_from_path(owner, name)
    result = await get_service(request, "issues").fetch_scope(scope, force=force)
    return fetch_payload(result)


@repos_router.post("/{owner}/{name}/issues")
async def create_issue(request: Request, owner: str, name: str, body: CreateIssueRequest):
    scope = scope_from_path(owner, name)
    result = await get_service(request, "issues").create_issue(
        scope, body.title, body.body, body.labels, body.assignees
    )
    return mutation_payload(result)


@repos_router.post("/{owner}/{name}/issues/state")
async def set_issue_state(request: Request, owner: str, name: str, body: IssueStateRequest):
    scope = scope_from_path(owner, name)
    issues = get_service(request, "issues")
    if body.state == "closed":
        result = await issues.close_issues(scope, body.numbers)
    else:
        result = await issues.reopen_issues(scope, body.numbers)
    return mutation_payload(result)


@repos_router.post("/{owner}/{name}/issues/labels")
async def bulk_update_labels(request: Request, owner: str, name: str, body: BulkLabelsRequest):
    scope = scope_from_path(owner, name)
    issues = get_service(request, "issues")
    if body.action == "add":
        result = await issues.add_labels_to_issues(scope, body.numbers, body.labels)
    else:
        result = await issues.remove_labels_from_issues(scope, body.numbers, body.labels)
    return mutation_payload(result)


@repos_router.put("/{owner}/{name}/issues/{number}/labels")
async def set_issue_labels(request: Request, owner: str, name: str, number: int, body: IssueLabelsRequest):
    scope = scope_from_path(owner, name)
    result = await get_service(request, "issues").set_issue_labels(scope, number, body.labels)
    return mutation_payload(result)


# ── Issue links ────────────────────────────────────────────────────

@repos_router.get("/{owner}/{name}/issues/{number}/links")
async def get_issue_links(
    request: Request,
    owner: str,
    name: str,
    number: int,
    forceRemote: bool = Query(False),
):
    scope = scope_from_path(owner, name)
    resolver = get_service(request, "link_resolver")
    refs = await resolver.get_linked_entities(scope, number, force_remote=forceRemote)
    return {
        "status": "error" if resolver.error and forceRemote else "ok",
        "error": resolver.error if forceRemote else "",
        "source": "remote" if forceRemote else "cache",
        "items": dump_records(refs),
    }


@repos_router.post("/{owner}/{name}/issues/{number}/links")
async def link_pull_requests(request: Request, owner: str, name: str, number: int, body: LinkRequest):
    scope = scope_from_path(owner, name)
    result = await get_service(request, "link_resolver").link_pull_requests(scope, number, body.prNumbers)
    return mutation_payload(result)


@repos_router.delete("/{owner}/{name}/issues/{number}/links/{pr_number}")
async def unlink_pull_request(request: Request, owner: str, name: str, number: int, pr_number: int):
    scope = scope_from_path(owner, name)
    result = await get_service(request, "link_resolver").unlink_pull_request(scope, number, pr_number)
    return mutation_payload(result)


@repos_router.get("/{owner}/{name}/linear")
async def get_linear_issue_map(request: Request, owner: str, name: str):
    scope = scope_from_path(owner, name)
    mapping = get_service(request, "link_resolver").linear_issue_map(scope)
    return {issue_id: dump_records(refs) for issue_id, refs in mapping.items()}


# ── Labels ─────────────────────────────────────────────────────────

@repos_router.get("/{owner}/{name}/labels")
async def list_labels(request: Request, owner: str, name: str, force: bool = Query(False)):
    scope = scope_from_path(owner, name)
    result = await get_service(request, "labels").fetch_scope(scope, force=force)
    return fetch_payload(result)


@repos_router.post("/{owner}/{name}/labels")
async def create_label(request: Request, owner: str, name: str, body: CreateLabelRequest):
    scope = scope_from_path(owner, name)
    result = await get_service(request, "labels").create_label(scope, body.name, body.color, body.description)
    return mutation_payload(result)
