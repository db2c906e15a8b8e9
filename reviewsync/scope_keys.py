"""Scope (``owner/name``) and composite key helpers."""
from __future__ import annotations

import re

_SEGMENT_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


def parse_scope(value: str) -> tuple[str, str]:
    """Split ``owner/name`` into its parts, rejecting anything else."""
    token = (value or "").strip()
    parts = token.split("/")
    if len(parts) != 2 or not all(parts):
        raise ValueError(f"Invalid scope: {value!r} (expected owner/name)")
    owner, name = parts
    if not _SEGMENT_RE.match(owner) or not _SEGMENT_RE.match(name):
        raise ValueError(f"Invalid scope: {value!r}")
    return owner, name


def make_scope(owner: str, name: str) -> str:
    scope = f"{(owner or '').strip()}/{(name or '').strip()}"
    parse_scope(scope)
    return scope


def composite_key(scope: str, number: int | str) -> str:
    """Textual form of a CompositeKey: ``owner/name#number``."""
    return f"{scope}#{number}"


def dedupe_scopes(scopes: list[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for scope in scopes:
        token = (scope or "").strip()
        if not token or token in seen:
            continue
        seen.add(token)
        ordered.append(token)
    return ordered
