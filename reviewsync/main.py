"""reviewsync FastAPI service: main application entry point."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from reviewsync import config
from reviewsync.db import connection, migrations
from reviewsync.db.durability import CacheDurability
from reviewsync.db.factory import get_snapshot_repository
from reviewsync.observability import initialize as initialize_observability, shutdown as shutdown_observability
from reviewsync.remote import EnvCredentialProvider, RemoteContext
from reviewsync.routers.cache import cache_router
from reviewsync.routers.repos import repos_router
from reviewsync.routers.sync import sync_router
from reviewsync.services.link_resolver import LinkResolver
from reviewsync.services.sync_coordinator import SyncCoordinator
from reviewsync.services.workspace import WorkspaceService
from reviewsync.stores import IssueStore, LabelStore, PullRequestStore

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("reviewsync")


async def build_services(app: FastAPI, db, remote: RemoteContext) -> None:
    """Construct every service once and hang it on ``app.state``."""
    durability = CacheDurability(get_snapshot_repository(db))
    workspace = WorkspaceService(remote, durability)
    pull_requests = PullRequestStore(remote, durability)
    issues = IssueStore(remote, durability)
    labels = LabelStore(remote, durability)
    coordinator = SyncCoordinator(workspace, pull_requests, issues, durability)

    await workspace.hydrate()
    # Archives are restored but scopes stay unloaded, so the first fetch still refreshes.
    selected = workspace.selected_scope
    for store in (pull_requests, issues, labels):
        await store.hydrate()
        if selected:
            await store.select_scope(selected)
    await coordinator.hydrate()

    app.state.remote = remote
    app.state.durability = durability
    app.state.workspace = workspace
    app.state.pull_requests = pull_requests
    app.state.issues = issues
    app.state.labels = labels
    app.state.sync_coordinator = coordinator
    app.state.link_resolver = LinkResolver(remote, pull_requests, issues)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("reviewsync starting up")
    initialize_observability(app)

    db = await connection.get_connection()
    await migrations.run_migrations(db)
    remote = RemoteContext(EnvCredentialProvider())
    await build_services(app, db, remote)

    if config.STARTUP_SYNC_ENABLED and remote.is_authenticated():
        async def _run_startup_sync() -> None:
            delay = max(0, config.STARTUP_SYNC_DELAY_SECONDS)
            if delay > 0:
                await asyncio.sleep(delay)
            await app.state.sync_coordinator.sync_all(trigger="startup")

        # Keep a reference so shutdown can cancel it.
        app.state.sync_task = asyncio.create_task(_run_startup_sync())

    yield

    logger.info("reviewsync shutting down")
    if hasattr(app.state, "sync_task"):
        app.state.sync_task.cancel()
        try:
            await app.state.sync_task
        except asyncio.CancelledError:
            pass

    await app.state.sync_coordinator.shutdown()
    await app.state.durability.shutdown()
    await remote.aclose()
    shutdown_observability(app)
    await connection.close_connection()


app = FastAPI(
    title="reviewsync API",
    description="Local-first cache and incremental sync for the review client",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_ORIGIN,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sync_router)
app.include_router(repos_router)
app.include_router(cache_router)


@app.get("/api/health")
def health():
    """Health check endpoint."""
    remote = getattr(app.state, "remote", None)
    return {
        "status": "ok",
        "db": "connected" if connection._connection else "disconnected",
        "auth": "offline" if remote and remote.is_offline() else (
            "authenticated" if remote and remote.is_authenticated() else "anonymous"
        ),
    }


def run() -> None:
    import uvicorn

    uvicorn.run("reviewsync.main:app", host=config.HOST, port=config.PORT)
