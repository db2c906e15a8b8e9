"""Cache status + explicit clear API."""
from __future__ import annotations

import logging
from typing import Literal, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from reviewsync.routers.deps import get_service
from reviewsync.scope_keys import parse_scope

logger = logging.getLogger("reviewsync.durability")

cache_router = APIRouter(prefix="/api/cache", tags=["cache"])

_STORE_ATTRS = {"pulls": "pull_requests", "issues": "issues", "labels": "labels"}


class ClearRequest(BaseModel):
    namespace: Literal["pulls", "issues", "labels", "all"] = "all"
    scope: Optional[str] = None


@cache_router.get("/status")
async def get_cache_status(request: Request):
    """Return per-store cache state, pending writes and live sync operations."""
    durability = get_service(request, "durability")
    coordinator = get_service(request, "sync_coordinator")
    return {
        "status": "active",
        "stores": {
            namespace: get_service(request, attr).summary()
            for namespace, attr in _STORE_ATTRS.items()
        },
        "durability": await durability.status(),
        "sync": coordinator.status().model_dump(mode="json"),
        "operations": await coordinator.get_observability_snapshot(),
    }


@cache_router.post("/clear")
async def clear_cache(request: Request, body: ClearRequest):
    """Explicitly drop archived scopes. Applied to the durable store immediately."""
    if body.scope:
        try:
            parse_scope(body.scope)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
    namespaces = list(_STORE_ATTRS) if body.namespace == "all" else [body.namespace]
    for namespace in namespaces:
        await get_service(request, _STORE_ATTRS[namespace]).clear(body.scope)
    logger.info("Cache cleared (namespaces=%s scope=%s)", namespaces, body.scope or "*")
    return {"status": "ok", "cleared": namespaces, "scope": body.scope}


@cache_router.post("/flush")
async def flush_cache(request: Request):
    written = await get_service(request, "durability").flush()
    return {"status": "ok", "written": written}
