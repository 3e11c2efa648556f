"""
FastAPI app wiring for the instance memory service.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI

import core.config as config
from core.access import purge_expired_sessions
from core.db import DB, dispose_db, init_db
from core.services import memory
from app.errors import register_error_handlers
from app.middleware import configure_middleware
from app.routes.admin import router as admin_router
from app.routes.decisions import router as decisions_router
from app.routes.documents import router as documents_router
from app.routes.episodes import router as episodes_router
from app.routes.health import router as health_router
from app.routes.profiles import router as profiles_router
from app.routes.root import router as root_router
from app.routes.search import router as search_router
from app.routes.write import router as write_router


cleanup_task = None
embedding_backfill_task = None


async def _run_cleanup_once() -> None:
    if DB.SessionLocal is None:
        return
    removed = await asyncio.to_thread(purge_expired_sessions)
    if removed:
        config.logger.info("Purged expired operator sessions", extra={"count": removed})


async def _cleanup_loop() -> None:
    if config.SESSION_CLEANUP_INTERVAL_SECONDS <= 0:
        return
    while True:
        await asyncio.sleep(config.SESSION_CLEANUP_INTERVAL_SECONDS)
        try:
            await _run_cleanup_once()
        except Exception as exc:
            config.logger.warning(f"Cleanup task error: {exc}")


async def _cancel(task) -> None:
    if task:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize on startup, cleanup on shutdown."""
    global cleanup_task, embedding_backfill_task
    init_db()
    if config.SESSION_CLEANUP_INTERVAL_SECONDS > 0:
        await _run_cleanup_once()
        cleanup_task = asyncio.create_task(_cleanup_loop())
    if config.EMBEDDING_BACKFILL_ENABLED and config.EMBEDDING_PROVIDER != "none":
        await asyncio.to_thread(memory._run_embedding_backfill)
        if config.EMBEDDING_BACKFILL_INTERVAL_SECONDS > 0:
            embedding_backfill_task = asyncio.create_task(memory._embedding_backfill_loop())
    try:
        yield
    finally:
        await _cancel(cleanup_task)
        await _cancel(embedding_backfill_task)
        await memory.cleanup_embedding_provider()
        dispose_db()


app = FastAPI(title="Instance Memory", redirect_slashes=False, lifespan=lifespan)
configure_middleware(app)
register_error_handlers(app)

# Health and root endpoints
app.include_router(health_router)
app.include_router(root_router)

# Memory API, all under /api/memory/{instance_id}
app.include_router(decisions_router)
app.include_router(episodes_router)
app.include_router(profiles_router)
app.include_router(documents_router)
app.include_router(search_router)
app.include_router(write_router)
app.include_router(admin_router)
