"""
Health and dependency endpoints.
"""

from __future__ import annotations

import time

from fastapi import APIRouter, HTTPException
from sqlalchemy import text

import core.config as config
from core.db import DB, _get_schema_revisions
from core.services import memory


router = APIRouter()

SERVICE_NAME = "instance-memory"
SERVICE_VERSION = "0.1.0"


def _check_db_health() -> dict:
    if DB.engine is None:
        return {"ok": False, "error": "db_not_initialized"}

    try:
        with DB.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            ext_version = None
            pgvector_installed = True
            if config.DB_BACKEND == "postgres" and config.VECTOR_BACKEND_EFFECTIVE == "pgvector":
                ext_version = conn.execute(
                    text("SELECT extversion FROM pg_extension WHERE extname = 'vector'")
                ).scalar()
                pgvector_installed = bool(ext_version)
    except Exception as exc:
        return {"ok": False, "error": str(exc)}

    current_rev, head_rev = _get_schema_revisions(DB.engine)
    schema_ok = head_rev is None or current_rev == head_rev
    return {
        "ok": schema_ok,
        "pgvector_installed": pgvector_installed,
        "pgvector_version": ext_version,
        "schema_revision": current_rev,
        "schema_expected": head_rev,
        "schema_up_to_date": schema_ok,
    }


def _check_embedding_health(check_external: bool) -> dict:
    breaker_status = memory.embedding_circuit_breaker.status()
    embedding_status = {
        "status": "unknown",
        "provider": config.EMBEDDING_PROVIDER,
        "circuit_breaker": breaker_status,
        "checked": False,
    }

    if config.EMBEDDING_PROVIDER == "none":
        embedding_status["status"] = "disabled"
        return embedding_status

    if breaker_status.get("open"):
        embedding_status["status"] = "cooldown"
        return embedding_status

    if check_external and config.EMBEDDING_HEALTHCHECK_ENABLED:
        embedding_status["checked"] = True
        start = time.time()
        result = memory.get_embedding_provider().embed_sync("healthcheck")
        if result.available:
            embedding_status["status"] = "ok"
            embedding_status["latency_ms"] = int((time.time() - start) * 1000)
        else:
            embedding_status["status"] = "error"
            embedding_status["error"] = result.reason
        return embedding_status

    embedding_status["status"] = "skipped" if check_external else "ready"
    return embedding_status


def _require_database(detail: dict) -> dict:
    db_health = _check_db_health()
    vector_required = config.DB_BACKEND == "postgres" and config.VECTOR_BACKEND_EFFECTIVE == "pgvector"
    if not db_health.get("ok") or (vector_required and not db_health.get("pgvector_installed")):
        raise HTTPException(status_code=503, detail={"database": db_health, **detail})
    return db_health


@router.get("/health")
async def health():
    """Health check endpoint."""
    embedding_status = _check_embedding_health(check_external=False)
    db_health = _require_database({"embedding_provider": embedding_status})
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "database": db_health,
        "embedding_provider": embedding_status,
    }


@router.get("/health/deps")
def health_deps():
    """Dependency health checks (optional embedding provider check)."""
    db_health = _require_database({})
    embedding_status = _check_embedding_health(check_external=True)
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "database": db_health,
        "embedding_provider": embedding_status,
    }
