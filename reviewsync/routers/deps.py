"""Shared router helpers: service lookup and result translation."""
from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request

from reviewsync.scope_keys import make_scope


def get_service(request: Request, name: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(status_code=503, detail=f"{name} not initialized")
    return service


def scope_from_path(owner: str, name: str) -> str:
    try:
        return make_scope(owner, name)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def dump_records(records: list[Any]) -> list[dict]:
    return [record.model_dump(mode="json") for record in records]


def fetch_payload(result: Any) -> dict:
    if not result.ok:
        return {"status": "error", "scope": result.scope, "error": result.error, "items": []}
    return {
        "status": "ok",
        "scope": result.scope,
        "source": result.status,
        "count": len(result.records),
        "items": dump_records(result.records),
    }


def mutation_payload(result: Any) -> dict:
    if not result.ok:
        return {"status": "error", "error": result.error, "items": dump_records(result.records)}
    return {"status": "ok", "items": dump_records(result.records)}
