"""Workspace state: repository list, selected scope, recents, favorites and org sync settings."""
from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic import ValidationError

from reviewsync import config
from reviewsync.date_utils import utc_now
from reviewsync.models import OrgSyncSetting, RepoFavorite, Repository
from reviewsync.scope_keys import dedupe_scopes, parse_scope

logger = logging.getLogger("reviewsync")


class WorkspaceService:
    """Manages the repository context the user works in."""

    namespace = "workspace"

    def __init__(self, remote: Any, durability: Any | None = None, recent_limit: int = config.RECENT_REPOS_LIMIT):
        self.remote = remote
        self.durability = durability
        self.recent_limit = max(1, recent_limit)
        self._repositories: dict[str, Repository] = {}
        self._selected_scope: Optional[str] = None
        self._recent: list[str] = []
        self._favorites: dict[str, RepoFavorite] = {}
        self._organizations: dict[str, OrgSyncSetting] = {}

    # ── Repositories ───────────────────────────────────────────────

    async def refresh_repositories(self) -> list[Repository]:
        """Reload the repository list. Remote and auth errors propagate."""
        repos = await self.remote.client().list_repositories()
        self._repositories = {repo.full_name: repo for repo in repos}
        self._save()
        logger.info(f"Loaded {len(repos)} repositories")
        return repos

    def list_repositories(self) -> list[Repository]:
        return list(self._repositories.values())

    def get_repository(self, scope: str) -> Optional[Repository]:
        return self._repositories.get(scope)

    # ── Selection + recents ────────────────────────────────────────

    @property
    def selected_scope(self) -> Optional[str]:
        return self._selected_scope

    def select_scope(self, scope: str) -> None:
        parse_scope(scope)
        self._selected_scope = scope
        self._push_recent(scope)
        self._save()
        logger.info(f"Switched selected repository to: {scope}")

    def _push_recent(self, scope: str) -> None:
        self._recent = [scope] + [item for item in self._recent if item != scope]
        del self._recent[self.recent_limit:]

    def record_visit(self, scope: str) -> None:
        parse_scope(scope)
        self._push_recent(scope)
        self._save()

    def recent_scopes(self) -> list[str]:
        return list(self._recent)

    def sync_scopes(self) -> list[str]:
        """Selected scope first, then recents from orgs with sync enabled, without duplicates.

        The selected scope is always included; only recents are filtered.
        """
        head = [self._selected_scope] if self._selected_scope else []
        return dedupe_scopes(head + [scope for scope in self._recent if self.is_scope_synced(scope)])

    # ── Organization sync settings ─────────────────────────────────

    async def refresh_organizations(self) -> list[OrgSyncSetting]:
        """Reload the user's organizations, keeping each known org's sync flag.

        Newly seen organizations default to enabled. Remote and auth errors propagate.
        """
        orgs = await self.remote.client().list_organizations()
        previous = self._organizations
        self._organizations = {
            org.login: OrgSyncSetting(
                login=org.login,
                avatar_url=org.avatar_url,
                isSyncing=previous[org.login].isSyncing if org.login in previous else True,
            )
            for org in orgs
        }
        self._save()
        logger.info(f"Loaded {len(orgs)} organizations")
        return self.list_organizations()

    def list_organizations(self) -> list[OrgSyncSetting]:
        return list(self._organizations.values())

    def toggle_org_sync(self, login: str, is_syncing: bool) -> Optional[OrgSyncSetting]:
        setting = self._organizations.get(login)
        if setting is None:
            return None
        setting = setting.model_copy(update={"isSyncing": bool(is_syncing)})
        self._organizations[login] = setting
        self._save()
        return setting

    def enabled_orgs(self) -> list[str]:
        return [org.login for org in self._organizations.values() if org.isSyncing]

    def is_scope_synced(self, scope: str) -> bool:
        # Owners that are not a known organization (personal accounts) always sync.
        setting = self._organizations.get(scope.split("/", 1)[0])
        return setting is None or setting.isSyncing

    # ── Favorites ──────────────────────────────────────────────────

    def list_favorites(self) -> list[RepoFavorite]:
        return sorted(self._favorites.values(), key=lambda fav: (fav.sortOrder, fav.repoKey))

    def is_favorite(self, scope: str) -> bool:
        return scope in self._favorites

    def add_favorite(self, scope: str) -> RepoFavorite:
        parse_scope(scope)
        existing = self._favorites.get(scope)
        if existing:
            return existing
        next_order = max((fav.sortOrder for fav in self._favorites.values()), default=-1) + 1
        favorite = RepoFavorite(repoKey=scope, sortOrder=next_order, addedAt=utc_now())
        self._favorites[scope] = favorite
        self._save()
        return favorite

    def remove_favorite(self, scope: str) -> bool:
        removed = self._favorites.pop(scope, None) is not None
        if removed:
            self._save()
        return removed

    def reorder_favorites(self, scopes: list[str]) -> list[RepoFavorite]:
        """Apply the given order; favorites not listed keep their relative order after it."""
        ordered = [scope for scope in dedupe_scopes(scopes) if scope in self._favorites]
        rest = [fav.repoKey for fav in self.list_favorites() if fav.repoKey not in ordered]
        for index, scope in enumerate(ordered + rest):
            self._favorites[scope] = self._favorites[scope].model_copy(update={"sortOrder": index})
        self._save()
        return self.list_favorites()

    # ── Persistence ────────────────────────────────────────────────

    def snapshot(self) -> dict[str, Any]:
        return {
            "selectedScope": self._selected_scope,
            "recent": list(self._recent),
            "favorites": [fav.model_dump(mode="json") for fav in self.list_favorites()],
            "organizations": [org.model_dump(mode="json") for org in self._organizations.values()],
            "repositories": [repo.model_dump(mode="json") for repo in self._repositories.values()],
        }

    def restore(self, data: dict[str, Any]) -> None:
        self._selected_scope = data.get("selectedScope") or None
        self._recent = dedupe_scopes(list(data.get("recent") or []))[: self.recent_limit]
        self._favorites = {}
        for row in data.get("favorites") or []:
            try:
                fav = RepoFavorite.model_validate(row)
            except ValidationError as e:
                logger.error(f"Failed to load favorite: {e}")
                continue
            self._favorites[fav.repoKey] = fav
        self._organizations = {}
        for row in data.get("organizations") or []:
            try:
                org = OrgSyncSetting.model_validate(row)
            except ValidationError as e:
                logger.error(f"Failed to load organization setting: {e}")
                continue
            self._organizations[org.login] = org
        self._repositories = {}
        for row in data.get("repositories") or []:
            try:
                repo = Repository.model_validate(row)
            except ValidationError as e:
                logger.error(f"Failed to load repository: {e}")
                continue
            self._repositories[repo.full_name] = repo

    async def hydrate(self) -> None:
        if self.durability is None:
            return
        data = await self.durability.hydrate(self.namespace)
        if data:
            self.restore(data)

    def _save(self) -> None:
        if self.durability is not None:
            self.durability.persist(self.namespace, self.snapshot())
