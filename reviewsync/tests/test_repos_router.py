import types
import unittest

import aiosqlite
from fastapi import HTTPException

from reviewsync.db.migrations import run_migrations
from reviewsync.main import build_services
from reviewsync.remote import RemoteContext, StaticCredentialProvider
from reviewsync.routers import cache as cache_router
from reviewsync.routers import repos as repos_router

SCOPE_OWNER, SCOPE_NAME = "octocat", "review-client"
SCOPE = f"{SCOPE_OWNER}/{SCOPE_NAME}"


class _ServiceAppMixin:
    async def _build(self, token: str | None = "dev-token"):
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        self.credentials = StaticCredentialProvider(token)
        self.remote = RemoteContext(self.credentials, offline_token="dev-token")
        self.app = types.SimpleNamespace(state=types.SimpleNamespace())
        await build_services(self.app, self.db, self.remote)
        self.request = types.SimpleNamespace(app=self.app)

    async def _teardown(self):
        await self.app.state.sync_coordinator.shutdown()
        await self.app.state.durability.shutdown()
        await self.db.close()


class ReposRouterTests(_ServiceAppMixin, unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        await self._build()

    async def asyncTearDown(self) -> None:
        await self._teardown()

    async def test_refresh_and_list_repositories(self) -> None:
        refreshed = await repos_router.refresh_repositories(self.request)
        listed = await repos_router.list_repositories(self.request)

        self.assertEqual([repo.full_name for repo in refreshed], [repo.full_name for repo in listed])
        self.assertIn(SCOPE, [repo.full_name for repo in listed])

    async def test_refresh_without_credential_is_unauthorized(self) -> None:
        self.credentials.set_token(None)

        with self.assertRaises(HTTPException) as ctx:
            await repos_router.refresh_repositories(self.request)
        self.assertEqual(ctx.exception.status_code, 401)

    async def test_organization_sync_settings(self) -> None:
        refreshed = await repos_router.refresh_organizations(self.request)
        toggled = await repos_router.toggle_org_sync(
            self.request, "monalisa", repos_router.OrgSyncRequest(isSyncing=False)
        )
        listed = await repos_router.list_organizations(self.request)

        self.assertEqual([org.login for org in refreshed], ["monalisa"])
        self.assertFalse(toggled.isSyncing)
        self.assertEqual(listed["items"][0]["isSyncing"], False)
        self.assertEqual(listed["enabled"], [])
        with self.assertRaises(HTTPException) as ctx:
            await repos_router.toggle_org_sync(self.request, "nobody", repos_router.OrgSyncRequest(isSyncing=True))
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_select_serves_cached_records(self) -> None:
        await repos_router.list_pull_requests(self.request, SCOPE_OWNER, SCOPE_NAME, force=False)

        payload = await repos_router.select_repository(self.request, repos_router.SelectRequest(scope=SCOPE))
        selected = await repos_router.get_selected_repository(self.request)

        self.assertEqual([pr["number"] for pr in payload["pulls"]], [1, 2, 5, 6])
        self.assertEqual(payload["issues"], [])
        self.assertEqual(selected, {"scope": SCOPE, "recent": [SCOPE]})

    async def test_select_rejects_malformed_scope(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            await repos_router.select_repository(self.request, repos_router.SelectRequest(scope="not a scope"))
        self.assertEqual(ctx.exception.status_code, 400)

    async def test_pull_request_listing_reports_source(self) -> None:
        first = await repos_router.list_pull_requests(self.request, SCOPE_OWNER, SCOPE_NAME, force=False)
        second = await repos_router.list_pull_requests(self.request, SCOPE_OWNER, SCOPE_NAME, force=False)
        missing = await repos_router.list_pull_requests(self.request, "octocat", "unknown", force=False)

        self.assertEqual(first["source"], "fetched")
        self.assertEqual(second["source"], "cached")
        self.assertEqual(first["items"], second["items"])
        self.assertEqual(missing["status"], "error")

    async def test_review_threads_not_found(self) -> None:
        payload = await repos_router.list_review_threads(self.request, SCOPE_OWNER, SCOPE_NAME, 1)
        self.assertEqual(len(payload["items"]), 1)

        with self.assertRaises(HTTPException) as ctx:
            await repos_router.list_review_threads(self.request, SCOPE_OWNER, SCOPE_NAME, 404)
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_issue_state_and_labels(self) -> None:
        await repos_router.list_issues(self.request, SCOPE_OWNER, SCOPE_NAME, force=False)

        closed = await repos_router.set_issue_state(
            self.request, SCOPE_OWNER, SCOPE_NAME, repos_router.IssueStateRequest(numbers=[3, 7], state="closed")
        )
        labelled = await repos_router.bulk_update_labels(
            self.request,
            SCOPE_OWNER,
            SCOPE_NAME,
            repos_router.BulkLabelsRequest(numbers=[3], labels=["bug"], action="add"),
        )

        self.assertEqual(closed["status"], "ok")
        self.assertEqual({item["state"] for item in closed["items"]}, {"closed"})
        self.assertIn("bug", [label["name"] for label in labelled["items"][0]["labels"]])

    async def test_issue_links_round_trip(self) -> None:
        await repos_router.list_pull_requests(self.request, SCOPE_OWNER, SCOPE_NAME, force=False)
        await repos_router.list_issues(self.request, SCOPE_OWNER, SCOPE_NAME, force=False)

        cached = await repos_router.get_issue_links(self.request, SCOPE_OWNER, SCOPE_NAME, 3, forceRemote=False)
        linked = await repos_router.link_pull_requests(
            self.request, SCOPE_OWNER, SCOPE_NAME, 7, repos_router.LinkRequest(prNumbers=[6])
        )
        unlinked = await repos_router.unlink_pull_request(self.request, SCOPE_OWNER, SCOPE_NAME, 7, 6)
        remote = await repos_router.get_issue_links(self.request, SCOPE_OWNER, SCOPE_NAME, 3, forceRemote=True)

        self.assertEqual([ref["number"] for ref in cached["items"]], [1])
        self.assertEqual(cached["source"], "cache")
        augmentation = linked["items"][0]["augmentation"]
        self.assertEqual([ref["number"] for ref in augmentation["linkedPRs"]], [6])
        self.assertEqual(unlinked["items"][0]["augmentation"]["linkedPRs"], [])
        self.assertEqual(remote["status"], "ok")
        self.assertEqual([ref["number"] for ref in remote["items"]], [1])

    async def test_linear_map(self) -> None:
        await repos_router.list_pull_requests(self.request, SCOPE_OWNER, SCOPE_NAME, force=False)

        payload = await repos_router.get_linear_issue_map(self.request, SCOPE_OWNER, SCOPE_NAME)

        self.assertEqual([ref["number"] for ref in payload["ENG-42"]], [2])

    async def test_favorites(self) -> None:
        await repos_router.add_favorite(self.request, repos_router.SelectRequest(scope="octocat/api-server"))
        await repos_router.add_favorite(self.request, repos_router.SelectRequest(scope=SCOPE))

        ordered = await repos_router.reorder_favorites(
            self.request, repos_router.FavoriteOrderRequest(scopes=[SCOPE])
        )
        removed = await repos_router.remove_favorite(self.request, "octocat", "api-server")

        self.assertEqual([fav.repoKey for fav in ordered], [SCOPE, "octocat/api-server"])
        self.assertEqual(removed, {"status": "ok"})
        with self.assertRaises(HTTPException) as ctx:
            await repos_router.remove_favorite(self.request, "octocat", "api-server")
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_labels(self) -> None:
        listed = await repos_router.list_labels(self.request, SCOPE_OWNER, SCOPE_NAME, force=False)
        created = await repos_router.create_label(
            self.request, SCOPE_OWNER, SCOPE_NAME, repos_router.CreateLabelRequest(name="triage", color="#fbca04")
        )
        duplicate = await repos_router.create_label(
            self.request, SCOPE_OWNER, SCOPE_NAME, repos_router.CreateLabelRequest(name="bug", color="d73a4a")
        )

        self.assertEqual(listed["count"], 4)
        self.assertEqual(created["items"][0]["color"], "fbca04")
        self.assertEqual(duplicate["status"], "error")


class CacheRouterTests(_ServiceAppMixin, unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        await self._build()

    async def asyncTearDown(self) -> None:
        await self._teardown()

    async def test_status_reports_stores_and_durability(self) -> None:
        await repos_router.list_pull_requests(self.request, SCOPE_OWNER, SCOPE_NAME, force=False)

        payload = await cache_router.get_cache_status(self.request)

        self.assertEqual(payload["stores"]["pulls"]["scopes"], {SCOPE: 4})
        self.assertEqual(payload["durability"]["pending"], ["pulls"])
        self.assertIn("operations", payload)

    async def test_flush_then_clear_scope(self) -> None:
        await repos_router.list_pull_requests(self.request, SCOPE_OWNER, SCOPE_NAME, force=False)
        await repos_router.list_pull_requests(self.request, "octocat", "api-server", force=False)

        flushed = await cache_router.flush_cache(self.request)
        cleared = await cache_router.clear_cache(
            self.request, cache_router.ClearRequest(namespace="pulls", scope=SCOPE)
        )

        self.assertEqual(flushed["written"], 1)
        self.assertEqual(cleared["cleared"], ["pulls"])
        stored = await self.app.state.durability.hydrate("pulls")
        self.assertEqual(list(stored["archive"]), ["octocat/api-server"])

    async def test_clear_all_removes_snapshots(self) -> None:
        await repos_router.list_issues(self.request, SCOPE_OWNER, SCOPE_NAME, force=False)
        await cache_router.flush_cache(self.request)

        await cache_router.clear_cache(self.request, cache_router.ClearRequest())

        self.assertEqual(await self.app.state.durability.hydrate("issues"), {})
        self.assertEqual(self.app.state.issues.archive, {})

    async def test_clear_rejects_bad_scope(self) -> None:
        with self.assertRaises(HTTPException) as ctx:
            await cache_router.clear_cache(self.request, cache_router.ClearRequest(scope="nope"))
        self.assertEqual(ctx.exception.status_code, 400)


if __name__ == "__main__":
    unittest.main()
