"""
Root endpoint with service metadata.
"""

from __future__ import annotations

from fastapi import APIRouter

import core.config as config
from app.routes.health import SERVICE_NAME, SERVICE_VERSION


router = APIRouter()


@router.get("/")
async def root():
    """Root endpoint with service info."""
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "description": "Per-instance memory for AI agents",
        "embedding_model": config.EMBEDDING_MODEL,
        "endpoints": {
            "health": "/health",
            "health_deps": "/health/deps",
            "memory": "/api/memory/{instance_id}",
            "decisions": "/api/memory/{instance_id}/decisions",
            "episodes": "/api/memory/{instance_id}/episodes",
            "profiles": "/api/memory/{instance_id}/profiles",
            "documents": "/api/memory/{instance_id}/documents",
            "search": "/api/memory/{instance_id}/search",
            "write": "/api/memory/{instance_id}/write",
            "stats": "/api/memory/{instance_id}/stats",
        },
    }
