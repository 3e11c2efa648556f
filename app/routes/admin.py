"""
Per-instance administration: stats, key rotation, quota and audit trail.

Everything except stats requires an operator session; agents holding only
the memory key cannot rotate it or read the audit trail.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.deps import get_db_session, require_access, require_operator_access
from app.schemas import QuotaUpdateRequest
from core.audit import list_audit_events
from core.context import AccessGrant
from core.services import memory
from core.validators import clamp_limit


router = APIRouter(prefix="/api/memory/{instance_id}", tags=["admin"])

AUDIT_DEFAULT_LIMIT = 100
AUDIT_MAX_LIMIT = 500


@router.get("/stats")
def get_stats(instance_id: str, grant: AccessGrant = Depends(require_access)):
    return memory.memory_stats(instance_id, include_key=grant.is_operator)


@router.post("/key/rotate")
def rotate_key(instance_id: str, grant: AccessGrant = Depends(require_operator_access)):
    return memory.rotate_memory_api_key(instance_id, grant=grant)


@router.put("/quota")
def update_quota(
    instance_id: str,
    body: QuotaUpdateRequest,
    grant: AccessGrant = Depends(require_operator_access),
):
    return memory.set_document_quota(instance_id, body.max_documents_mb, grant=grant)


@router.get("/audit")
def get_audit_events(
    instance_id: str,
    event_type: Optional[str] = Query(default=None, alias="eventType"),
    limit: Optional[str] = None,
    cursor: Optional[str] = None,
    grant: AccessGrant = Depends(require_operator_access),
    db=Depends(get_db_session),
):
    return list_audit_events(
        db,
        instance_id=instance_id,
        event_type=event_type,
        limit=clamp_limit(limit, AUDIT_DEFAULT_LIMIT, AUDIT_MAX_LIMIT),
        cursor=cursor,
    )
