"""
Decision endpoints.
"""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from app.deps import require_access
from app.params import flatten_repeated
from app.schemas import DecisionCreateRequest, DecisionOutcomeRequest
from core.context import AccessGrant
from core.services import memory


router = APIRouter(prefix="/api/memory/{instance_id}/decisions", tags=["decisions"])


@router.post("", status_code=201)
def create_decision(
    instance_id: str,
    body: DecisionCreateRequest,
    grant: AccessGrant = Depends(require_access),
):
    return memory.store_decision(
        instance_id,
        context=body.context,
        decision=body.decision,
        reasoning=body.reasoning,
        sender_id=body.sender_id,
        alternatives_considered=body.alternatives_considered,
        tags=body.tags,
        grant=grant,
    )


@router.get("")
def list_decisions(
    instance_id: str,
    tags: Optional[List[str]] = Query(default=None),
    since: Optional[str] = None,
    limit: Optional[str] = None,
    offset: Optional[str] = None,
    grant: AccessGrant = Depends(require_access),
):
    return memory.list_decisions(
        instance_id,
        tags=flatten_repeated(tags) or None,
        since=since,
        limit=limit,
        offset=offset,
    )


@router.get("/{decision_id}")
def get_decision(
    instance_id: str,
    decision_id: str,
    grant: AccessGrant = Depends(require_access),
):
    return memory.get_decision(instance_id, decision_id)


@router.patch("/{decision_id}")
def set_decision_outcome(
    instance_id: str,
    decision_id: str,
    body: DecisionOutcomeRequest,
    grant: AccessGrant = Depends(require_access),
):
    """Close the loop on a decision; a later call replaces the outcome."""
    return memory.update_decision_outcome(instance_id, decision_id, body.outcome, grant=grant)
