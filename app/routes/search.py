"""
Unified search across profile, decisions, episodes and documents.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.deps import require_access
from app.schemas import SearchRequest
from core.context import AccessGrant
from core.services import memory


router = APIRouter(prefix="/api/memory/{instance_id}/search", tags=["search"])


@router.get("")
async def search_get(
    instance_id: str,
    q: str = "",
    top_k: Optional[str] = Query(default=None, alias="topK"),
    sender_id: Optional[str] = Query(default=None, alias="senderId"),
    include_docs: bool = Query(default=True, alias="includeDocs"),
    include_decisions: bool = Query(default=True, alias="includeDecisions"),
    include_episodes: bool = Query(default=True, alias="includeEpisodes"),
    include_profile: bool = Query(default=True, alias="includeProfile"),
    grant: AccessGrant = Depends(require_access),
):
    return await memory.memory_search(
        instance_id,
        q,
        top_k=top_k,
        sender_id=sender_id,
        include_docs=include_docs,
        include_decisions=include_decisions,
        include_episodes=include_episodes,
        include_profile=include_profile,
    )


@router.post("")
async def search_post(
    instance_id: str,
    body: SearchRequest,
    grant: AccessGrant = Depends(require_access),
):
    return await memory.memory_search(
        instance_id,
        body.query,
        top_k=body.top_k,
        sender_id=body.sender_id,
        include_docs=body.include_docs,
        include_decisions=body.include_decisions,
        include_episodes=body.include_episodes,
        include_profile=body.include_profile,
    )
