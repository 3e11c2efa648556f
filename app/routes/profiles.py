"""
Per-sender profile endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from app.deps import require_access
from app.schemas import ProfilePatchRequest
from core.context import AccessGrant
from core.services import memory


router = APIRouter(prefix="/api/memory/{instance_id}/profiles", tags=["profiles"])


@router.get("")
def list_profiles(instance_id: str, grant: AccessGrant = Depends(require_access)):
    return memory.list_profiles(instance_id)


@router.get("/{sender_id}")
def get_profile(instance_id: str, sender_id: str, grant: AccessGrant = Depends(require_access)):
    return memory.get_profile(instance_id, sender_id)


@router.patch("/{sender_id}")
def patch_profile(
    instance_id: str,
    sender_id: str,
    body: ProfilePatchRequest,
    grant: AccessGrant = Depends(require_access),
):
    """Partial merge: absent fields stay, explicit nulls clear."""
    return memory.upsert_profile(instance_id, sender_id, body.present_fields(), grant=grant)


@router.delete("/{sender_id}")
def delete_profile(instance_id: str, sender_id: str, grant: AccessGrant = Depends(require_access)):
    return memory.delete_profile(instance_id, sender_id, grant=grant)
