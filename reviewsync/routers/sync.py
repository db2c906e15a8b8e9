"""Sync trigger + status API."""
from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query, Request
from pydantic import BaseModel

from reviewsync.routers.deps import get_service, scope_from_path

sync_router = APIRouter(prefix="/api/sync", tags=["sync"])


class SyncRequest(BaseModel):
    background: bool = True
    debounce: bool = False
    trigger: str = "api"


def _get_coordinator(request: Request):
    return get_service(request, "sync_coordinator")


def _busy_response(coordinator) -> dict:
    return {
        "status": "skipped",
        "message": "Sync already in progress",
        "sync": coordinator.status().model_dump(mode="json"),
    }


@sync_router.get("/status")
async def get_sync_status(request: Request):
    return _get_coordinator(request).status().model_dump(mode="json")


@sync_router.post("")
async def trigger_sync(request: Request, background_tasks: BackgroundTasks, body: SyncRequest):
    """Sync the selected and recently visited repositories."""
    coordinator = _get_coordinator(request)
    if body.debounce:
        coordinator.request_sync(trigger=body.trigger)
        return {"status": "ok", "mode": "debounced"}
    if coordinator.is_syncing:
        return _busy_response(coordinator)
    if body.background:
        background_tasks.add_task(coordinator.sync_all, body.trigger)
        return {"status": "ok", "mode": "background", "message": "Sync triggered in background"}
    ok = await coordinator.sync_all(trigger=body.trigger)
    return {
        "status": "ok" if ok else "error",
        "mode": "foreground",
        "sync": coordinator.status().model_dump(mode="json"),
    }


@sync_router.post("/repos/{owner}/{name}")
async def trigger_repository_sync(
    request: Request,
    background_tasks: BackgroundTasks,
    owner: str,
    name: str,
    body: SyncRequest | None = None,
):
    coordinator = _get_coordinator(request)
    scope = scope_from_path(owner, name)
    body = body or SyncRequest()
    if coordinator.is_syncing:
        return _busy_response(coordinator)
    if body.background:
        background_tasks.add_task(coordinator.sync_repository, scope, body.trigger)
        return {"status": "ok", "mode": "background", "scope": scope}
    ok = await coordinator.sync_repository(scope, trigger=body.trigger)
    return {"status": "ok" if ok else "error", "mode": "foreground", "sync": coordinator.status().model_dump(mode="json")}


@sync_router.post("/repos/{owner}/{name}/pulls/{number}")
async def trigger_pull_request_sync(request: Request, owner: str, name: str, number: int):
    coordinator = _get_coordinator(request)
    scope = scope_from_path(owner, name)
    if coordinator.is_syncing:
        return _busy_response(coordinator)
    ok = await coordinator.sync_pull_request(scope, number)
    return {"status": "ok" if ok else "error", "sync": coordinator.status().model_dump(mode="json")}


@sync_router.delete("/errors")
async def clear_sync_errors(request: Request):
    coordinator = _get_coordinator(request)
    coordinator.clear_errors()
    return {"status": "ok"}


@sync_router.post("/reset")
async def reset_sync(request: Request):
    coordinator = _get_coordinator(request)
    await coordinator.reset()
    return {"status": "ok", "sync": coordinator.status().model_dump(mode="json")}


@sync_router.get("/operations")
async def list_sync_operations(request: Request, limit: int = Query(20, ge=1, le=200)):
    operations = await _get_coordinator(request).list_operations(limit=limit)
    return {"status": "ok", "count": len(operations), "items": operations}


@sync_router.get("/operations/{operation_id}")
async def get_sync_operation(request: Request, operation_id: str):
    operation = await _get_coordinator(request).get_operation(operation_id)
    if not operation:
        raise HTTPException(status_code=404, detail=f"Operation {operation_id} not found")
    return operation
