import types
import unittest

from fastapi import BackgroundTasks, HTTPException

from reviewsync.routers import sync as sync_router
from reviewsync.models import SyncStatus


class _FakeCoordinator:
    def __init__(self, is_syncing: bool = False) -> None:
        self.is_syncing = is_syncing
        self.calls: list[tuple] = []
        self.errors_cleared = False

    def status(self) -> SyncStatus:
        return SyncStatus(isSyncing=self.is_syncing, progress=42.0, message="Syncing 1/3 repos...")

    def request_sync(self, trigger="debounced"):
        self.calls.append(("request_sync", trigger))

    async def sync_all(self, trigger="api"):
        self.calls.append(("sync_all", trigger))
        return True

    async def sync_repository(self, scope, trigger="api"):
        self.calls.append(("sync_repository", scope, trigger))
        return False

    async def sync_pull_request(self, scope, number, trigger="api"):
        self.calls.append(("sync_pull_request", scope, number))
        return True

    def clear_errors(self):
        self.errors_cleared = True

    async def reset(self):
        self.calls.append(("reset",))
        self.is_syncing = False

    async def list_operations(self, limit=20):
        return [{"id": "OP-1", "status": "completed"}][:limit]

    async def get_operation(self, operation_id):
        if operation_id == "OP-404":
            return None
        return {"id": operation_id, "status": "completed"}


class SyncRouterTests(unittest.IsolatedAsyncioTestCase):
    def _request(self, coordinator):
        return types.SimpleNamespace(
            app=types.SimpleNamespace(
                state=types.SimpleNamespace(sync_coordinator=coordinator)
            )
        )

    async def test_status_returns_snapshot(self) -> None:
        payload = await sync_router.get_sync_status(self._request(_FakeCoordinator()))

        self.assertEqual(payload["progress"], 42.0)
        self.assertEqual(payload["message"], "Syncing 1/3 repos...")

    async def test_background_sync_is_queued(self) -> None:
        coordinator = _FakeCoordinator()
        background = BackgroundTasks()

        payload = await sync_router.trigger_sync(
            self._request(coordinator), background, sync_router.SyncRequest(background=True, trigger="focus")
        )

        self.assertEqual(payload["mode"], "background")
        self.assertEqual(len(background.tasks), 1)
        self.assertEqual(coordinator.calls, [])

    async def test_foreground_sync_runs_inline(self) -> None:
        coordinator = _FakeCoordinator()

        payload = await sync_router.trigger_sync(
            self._request(coordinator), BackgroundTasks(), sync_router.SyncRequest(background=False)
        )

        self.assertEqual(payload["status"], "ok")
        self.assertEqual(coordinator.calls, [("sync_all", "api")])

    async def test_debounced_sync_is_requested(self) -> None:
        coordinator = _FakeCoordinator()

        payload = await sync_router.trigger_sync(
            self._request(coordinator), BackgroundTasks(), sync_router.SyncRequest(debounce=True, trigger="focus")
        )

        self.assertEqual(payload["mode"], "debounced")
        self.assertEqual(coordinator.calls, [("request_sync", "focus")])

    async def test_busy_coordinator_skips(self) -> None:
        coordinator = _FakeCoordinator(is_syncing=True)
        background = BackgroundTasks()

        payload = await sync_router.trigger_sync(self._request(coordinator), background, sync_router.SyncRequest())

        self.assertEqual(payload["status"], "skipped")
        self.assertEqual(len(background.tasks), 0)

    async def test_repository_sync_validates_scope(self) -> None:
        coordinator = _FakeCoordinator()

        payload = await sync_router.trigger_repository_sync(
            self._request(coordinator), BackgroundTasks(), "acme", "web", sync_router.SyncRequest(background=False)
        )
        self.assertEqual(payload["status"], "error")
        self.assertEqual(coordinator.calls, [("sync_repository", "acme/web", "api")])

        with self.assertRaises(HTTPException) as ctx:
            await sync_router.trigger_repository_sync(self._request(coordinator), BackgroundTasks(), "acme", "w b")
        self.assertEqual(ctx.exception.status_code, 400)

    async def test_pull_request_sync(self) -> None:
        coordinator = _FakeCoordinator()

        payload = await sync_router.trigger_pull_request_sync(self._request(coordinator), "acme", "web", 12)

        self.assertEqual(payload["status"], "ok")
        self.assertEqual(coordinator.calls, [("sync_pull_request", "acme/web", 12)])

    async def test_clear_errors_and_reset(self) -> None:
        coordinator = _FakeCoordinator(is_syncing=True)
        request = self._request(coordinator)

        await sync_router.clear_sync_errors(request)
        payload = await sync_router.reset_sync(request)

        self.assertTrue(coordinator.errors_cleared)
        self.assertFalse(payload["sync"]["isSyncing"])

    async def test_operation_lookup(self) -> None:
        request = self._request(_FakeCoordinator())

        listing = await sync_router.list_sync_operations(request, limit=5)
        self.assertEqual(listing["count"], 1)

        with self.assertRaises(HTTPException) as ctx:
            await sync_router.get_sync_operation(request, "OP-404")
        self.assertEqual(ctx.exception.status_code, 404)

    async def test_missing_coordinator_is_unavailable(self) -> None:
        request = types.SimpleNamespace(app=types.SimpleNamespace(state=types.SimpleNamespace()))

        with self.assertRaises(HTTPException) as ctx:
            await sync_router.get_sync_status(request)
        self.assertEqual(ctx.exception.status_code, 503)


if __name__ == "__main__":
    unittest.main()
