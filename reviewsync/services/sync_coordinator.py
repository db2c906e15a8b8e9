"""Single-flight, multi-repository synchronization.

One run at a time process-wide. Scopes are fetched in parallel; a failing
scope records an error and the rest carry on. Progress is published to
listeners and never decreases within a run.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, Awaitable, Callable

from reviewsync import config
from reviewsync.date_utils import format_datetime_utc, parse_iso_datetime, utc_now
from reviewsync.errors import AuthError, ConcurrentOperationRejected, RemoteAPIError
from reviewsync.models import SyncOperation, SyncStatus
from reviewsync.observability import otel

logger = logging.getLogger("reviewsync.sync")

Listener = Callable[[SyncStatus], Any]


def _describe(exc: BaseException) -> str:
    if isinstance(exc, (RemoteAPIError, AuthError)):
        return exc.message
    return str(exc) or type(exc).__name__


class SyncCoordinator:
    namespace = "sync"

    def __init__(
        self,
        workspace: Any,
        pull_requests: Any,
        issues: Any | None = None,
        durability: Any | None = None,
        *,
        include_issues: bool = config.SYNC_INCLUDE_ISSUES,
        debounce_seconds: float = config.SYNC_DEBOUNCE_SECONDS,
        status_display_seconds: float = config.STATUS_DISPLAY_SECONDS,
        max_operation_history: int = config.MAX_OPERATION_HISTORY,
    ):
        self.workspace = workspace
        self.pull_requests = pull_requests
        self.issues = issues
        self.durability = durability
        self.include_issues = include_issues
        self.debounce_seconds = debounce_seconds
        self.status_display_seconds = status_display_seconds

        self.is_syncing = False
        self.progress = 0.0
        self.message = ""
        self.errors: list[str] = []
        self.last_sync_time: datetime | None = None
        self._generation = 0
        self._current_operation_id = ""
        self._run_lock = asyncio.Lock()
        self._listeners: list[Listener] = []
        self._debounce_handle: asyncio.TimerHandle | None = None
        self._debounced_task: asyncio.Task | None = None
        self._message_task: asyncio.Task | None = None

        # Newest first; trimmed to the configured history size.
        self._operations: dict[str, SyncOperation] = {}
        self._max_operation_history = max(1, max_operation_history)

    # ── Status publication ─────────────────────────────────────────

    def status(self) -> SyncStatus:
        return SyncStatus(
            isSyncing=self.is_syncing,
            progress=self.progress,
            message=self.message,
            errors=list(self.errors),
            lastSyncTime=self.last_sync_time,
            operationId=self._current_operation_id,
        )

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def _publish(self) -> None:
        snapshot = self.status()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:  # noqa: BLE001
                logger.warning("Sync listener failed", exc_info=True)

    def clear_errors(self) -> None:
        self.errors = []
        self._publish()

    # ── Run lifecycle ──────────────────────────────────────────────

    async def _begin(self, kind: str, trigger: str, target: str = "") -> tuple[int, str]:
        async with self._run_lock:
            if self.is_syncing:
                raise ConcurrentOperationRejected(f"sync already running; {kind} rejected")
            self.is_syncing = True
            self._generation += 1
            generation = self._generation
            self.progress = 0.0
            self.message = "Starting sync..."
            self._cancel_message_clear()
            op_id = self._start_operation(kind, trigger, target)
            self._current_operation_id = op_id
        self._cancel_pending_debounce()
        self._publish()
        return generation, op_id

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and self.is_syncing

    def _advance(self, generation: int, progress: float, message: str) -> bool:
        if not self._is_current(generation):
            return False
        self.progress = max(self.progress, float(progress))
        self.message = message
        self._publish()
        return True

    def _record_error(self, generation: int, error: str) -> None:
        if self._is_current(generation):
            self.errors.append(error)

    def _complete(
        self,
        generation: int,
        op_id: str,
        *,
        trigger: str,
        failures: list[str],
        success_message: str,
    ) -> bool:
        if not self._is_current(generation):
            logger.info("Dropping stale sync completion [%s]", op_id)
            return False
        self.is_syncing = False
        self.last_sync_time = utc_now()
        if not failures:
            self.errors = []
        self.progress = 100.0
        self.message = success_message if not failures else f"Sync finished with {len(failures)} error(s)"
        self._current_operation_id = ""
        self._persist()
        self._schedule_message_clear(generation)
        self._publish()
        self._finish_operation(
            op_id,
            status="completed" if not failures else "completed_with_errors",
            error="; ".join(failures),
        )
        otel.record_sync_run(trigger, "ok" if not failures else "partial")
        return not failures

    def _fail(self, generation: int, op_id: str, *, trigger: str, error: str) -> bool:
        if not self._is_current(generation):
            logger.info("Dropping stale sync failure [%s]", op_id)
            return False
        self.is_syncing = False
        self.progress = 0.0
        self.message = "Sync failed"
        self.errors.append(error)
        self._current_operation_id = ""
        self._schedule_message_clear(generation)
        self._publish()
        self._finish_operation(op_id, status="failed", error=error)
        otel.record_sync_run(trigger, "failed")
        return False

    async def _guarded(self, generation: int, op_id: str, trigger: str, run: Callable[[], Awaitable[bool]]) -> bool:
        """Run one sync body; any escape ends the run in Failure instead of leaving it running."""
        try:
            return await run()
        except (RemoteAPIError, AuthError) as exc:
            return self._fail(generation, op_id, trigger=trigger, error=exc.message)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Sync run [%s] aborted", op_id)
            return self._fail(generation, op_id, trigger=trigger, error=_describe(exc))
        except asyncio.CancelledError:
            if self._is_current(generation):
                self.is_syncing = False
                self._current_operation_id = ""
                self._finish_operation(op_id, status="cancelled")
            raise

    async def _sync_scope(self, scope: str, primary: bool) -> tuple[str, str]:
        """Force-refresh one scope. Returns ``(scope, error)``; never raises."""
        try:
            result = await self.pull_requests.fetch_scope(scope, force=True, activate=primary)
            if not result.ok:
                return scope, result.error
            if self.include_issues and self.issues is not None:
                result = await self.issues.fetch_scope(scope, force=True, activate=primary)
                if not result.ok:
                    return scope, result.error
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected failure syncing %s", scope)
            return scope, _describe(exc)
        return scope, ""

    # ── Triggers ───────────────────────────────────────────────────

    async def sync_all(self, trigger: str = "api") -> bool:
        """Refresh the repository list, then every selected or recent scope."""
        try:
            generation, op_id = await self._begin("sync_all", trigger)
        except ConcurrentOperationRejected as exc:
            logger.info(exc.message)
            return False

        async def run() -> bool:
            self._advance(generation, 0, "Fetching repositories...")
            await self.workspace.refresh_repositories()

            scopes = self.workspace.sync_scopes()
            total = len(scopes)
            self._advance(generation, 20, f"Syncing 0/{total} repos..." if total else "No repositories to sync")
            if not scopes:
                return self._complete(
                    generation, op_id, trigger=trigger, failures=[], success_message="No repositories to sync"
                )

            self._track_scopes(op_id, total=total)
            selected = self.workspace.selected_scope
            tasks = [asyncio.ensure_future(self._sync_scope(scope, scope == selected)) for scope in scopes]
            failures: list[str] = []
            completed = 0
            for next_done in asyncio.as_completed(tasks):
                scope, error = await next_done
                completed += 1
                if error:
                    failure = f"Failed to sync {scope}: {error}"
                    failures.append(failure)
                    self._record_error(generation, failure)
                self._track_scopes(op_id, completed=completed)
                self._advance(generation, min(20 + 80 * completed / total, 99), f"Syncing {completed}/{total} repos...")

            return self._complete(
                generation, op_id, trigger=trigger, failures=failures, success_message="Sync complete!"
            )

        with otel.start_span("reviewsync.sync_all", {"trigger": trigger}):
            return await self._guarded(generation, op_id, trigger, run)

    async def sync_repository(self, scope: str, trigger: str = "api") -> bool:
        try:
            generation, op_id = await self._begin("sync_repository", trigger, scope)
        except ConcurrentOperationRejected as exc:
            logger.info(exc.message)
            return False

        async def run() -> bool:
            self._advance(generation, 20, f"Syncing {scope}...")
            self._track_scopes(op_id, total=1)
            _, error = await self._sync_scope(scope, scope == self.workspace.selected_scope)
            failures = [f"Failed to sync {scope}: {error}"] if error else []
            for failure in failures:
                self._record_error(generation, failure)
            self._track_scopes(op_id, completed=1)
            return self._complete(
                generation, op_id, trigger=trigger, failures=failures, success_message="Repository synced!"
            )

        return await self._guarded(generation, op_id, trigger, run)

    async def sync_pull_request(self, scope: str, number: int, trigger: str = "api") -> bool:
        try:
            generation, op_id = await self._begin("sync_pull_request", trigger, f"{scope}#{int(number)}")
        except ConcurrentOperationRejected as exc:
            logger.info(exc.message)
            return False

        async def run() -> bool:
            self._advance(generation, 20, f"Syncing {scope}#{number}...")
            result = await self.pull_requests.refresh_pull_request(scope, int(number))
            failures = [f"Failed to sync {scope}#{number}: {result.error}"] if not result.ok else []
            for failure in failures:
                self._record_error(generation, failure)
            return self._complete(
                generation, op_id, trigger=trigger, failures=failures, success_message="Pull request synced!"
            )

        return await self._guarded(generation, op_id, trigger, run)

    def request_sync(self, trigger: str = "debounced") -> None:
        """Coalesce rapid triggers into one ``sync_all`` after the debounce window."""
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
        loop = asyncio.get_running_loop()
        self._debounce_handle = loop.call_later(self.debounce_seconds, self._fire_debounced, trigger)

    def _fire_debounced(self, trigger: str) -> None:
        self._debounce_handle = None
        self._debounced_task = asyncio.ensure_future(self.sync_all(trigger=trigger))

    def _cancel_pending_debounce(self) -> None:
        # A direct trigger supersedes any pending debounced one.
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None

    async def reset(self) -> None:
        """Force idle. Completions from the superseded run are ignored."""
        async with self._run_lock:
            op_id = self._current_operation_id
            self._generation += 1
            self.is_syncing = False
            self.progress = 0.0
            self.message = ""
            self._current_operation_id = ""
            self._cancel_message_clear()
        if op_id:
            self._finish_operation(op_id, status="cancelled")
        self._publish()

    # ── Message auto-clear ─────────────────────────────────────────

    def _cancel_message_clear(self) -> None:
        if self._message_task is not None and not self._message_task.done():
            self._message_task.cancel()
        self._message_task = None

    def _schedule_message_clear(self, generation: int) -> None:
        self._cancel_message_clear()
        self._message_task = asyncio.get_running_loop().create_task(self._clear_message_later(generation))

    async def _clear_message_later(self, generation: int) -> None:
        await asyncio.sleep(self.status_display_seconds)
        if generation == self._generation and not self.is_syncing:
            self.message = ""
            self._publish()

    # ── Durability ─────────────────────────────────────────────────

    def _persist(self) -> None:
        if self.durability is not None and self.last_sync_time is not None:
            self.durability.persist(self.namespace, {"lastSyncTime": format_datetime_utc(self.last_sync_time)})

    async def hydrate(self) -> None:
        if self.durability is None:
            return
        data = await self.durability.hydrate(self.namespace)
        self.last_sync_time = parse_iso_datetime(data.get("lastSyncTime")) if data else None

    async def shutdown(self) -> None:
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None
        self._cancel_message_clear()
        if self._debounced_task is not None and not self._debounced_task.done():
            self._debounced_task.cancel()

    # ── Operation history ──────────────────────────────────────────

    async def list_operations(self, limit: int = 20) -> list[dict[str, Any]]:
        """Return latest operation snapshots, newest first."""
        return [op.model_dump(mode="json") for op in list(self._operations.values())[: max(1, limit)]]

    async def get_operation(self, operation_id: str) -> dict[str, Any] | None:
        op = self._operations.get(operation_id)
        return op.model_dump(mode="json") if op else None

    async def get_observability_snapshot(self) -> dict[str, Any]:
        active = [op.model_dump(mode="json") for op in self._operations.values() if op.status == "running"]
        return {
            "activeOperationCount": len(active),
            "activeOperations": active,
            "recentOperations": await self.list_operations(limit=5),
            "trackedOperationCount": len(self._operations),
        }

    def _start_operation(self, kind: str, trigger: str, target: str) -> str:
        op = SyncOperation(id=f"OP-{uuid.uuid4()}", kind=kind, trigger=trigger, target=target, startedAt=utc_now())
        self._operations = {op.id: op, **self._operations}
        for stale_id in list(self._operations)[self._max_operation_history:]:
            del self._operations[stale_id]
        logger.info("Operation started [%s] %s (trigger=%s)", op.id, kind, trigger)
        return op.id

    def _track_scopes(self, operation_id: str, *, total: int | None = None, completed: int | None = None) -> None:
        op = self._operations.get(operation_id)
        if op is None:
            return
        if total is not None:
            op.totalScopes = total
        if completed is not None:
            op.completedScopes = completed

    def _finish_operation(self, operation_id: str, *, status: str, error: str = "") -> None:
        op = self._operations.get(operation_id)
        if op is None or op.status != "running":
            return
        op.status = status
        op.error = error
        op.finishedAt = utc_now()
        op.durationMs = max(0, int((op.finishedAt - op.startedAt).total_seconds() * 1000))
        if status == "failed":
            logger.error("Operation failed [%s]: %s", operation_id, error)
        else:
            logger.info("Operation finished [%s] status=%s", operation_id, status)
