"""
Episode endpoints.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.deps import require_access
from app.schemas import EpisodeCreateRequest
from core.context import AccessGrant
from core.services import memory


router = APIRouter(prefix="/api/memory/{instance_id}/episodes", tags=["episodes"])


@router.post("", status_code=201)
def create_episode(
    instance_id: str,
    body: EpisodeCreateRequest,
    grant: AccessGrant = Depends(require_access),
):
    return memory.store_episode(
        instance_id,
        summary=body.summary,
        sender_id=body.sender_id,
        tags=body.tags,
        happened_at=body.happened_at,
        grant=grant,
    )


@router.get("")
def list_episodes(
    instance_id: str,
    limit: Optional[str] = None,
    sender_id: Optional[str] = Query(default=None, alias="senderId"),
    since: Optional[str] = None,
    grant: AccessGrant = Depends(require_access),
):
    return memory.list_episodes(instance_id, limit=limit, sender_id=sender_id, since=since)
