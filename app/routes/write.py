"""
GET-only write adapter for agents whose fetch tool cannot send POST bodies.

Everything arrives as query parameters: comma-separated tags and preferences,
pipe-separated reasoning and alternatives. Each type maps onto the same store
operation its JSON endpoint uses.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from app.deps import require_access
from app.params import split_delimited
from core.context import AccessGrant
from core.errors import ValidationIssue
from core.services import memory


router = APIRouter(prefix="/api/memory/{instance_id}", tags=["write"])

WRITE_TYPES = ("episode", "decision", "profile", "outcome")

# query parameter -> profile field
PROFILE_PARAMS = {
    "name": "name",
    "role": "role",
    "timezone": "timezone",
    "style": "communication_style",
    "focus": "current_focus",
}


def _param(request: Request, name: str) -> str:
    return (request.query_params.get(name) or "").strip()


def _write_episode(instance_id: str, request: Request, grant: AccessGrant) -> dict:
    result = memory.store_episode(
        instance_id,
        summary=_param(request, "summary"),
        sender_id=_param(request, "senderId") or None,
        tags=split_delimited(_param(request, "tags")),
        grant=grant,
    )
    return {"status": "ok", "type": "episode", "id": result["id"]}


def _write_decision(instance_id: str, request: Request, grant: AccessGrant) -> dict:
    result = memory.store_decision(
        instance_id,
        context=_param(request, "context"),
        decision=_param(request, "decision"),
        reasoning=split_delimited(_param(request, "reasoning"), "|"),
        alternatives_considered=split_delimited(_param(request, "alternatives"), "|"),
        tags=split_delimited(_param(request, "tags")),
        sender_id=_param(request, "senderId") or None,
        grant=grant,
    )
    return {"status": "ok", "type": "decision", "id": result["id"]}


def _write_profile(instance_id: str, request: Request, grant: AccessGrant) -> dict:
    # empty parameters leave the stored value untouched
    fields = {}
    for param, field in PROFILE_PARAMS.items():
        value = _param(request, param)
        if value:
            fields[field] = value
    preferences = split_delimited(_param(request, "preferences"))
    if preferences:
        fields["preferences"] = preferences
    result = memory.upsert_profile(
        instance_id,
        _param(request, "senderId") or None,
        fields,
        grant=grant,
    )
    return {
        "status": "ok",
        "type": "profile",
        "id": result["profile"]["id"],
        "created": result["created"],
    }


def _write_outcome(instance_id: str, request: Request, grant: AccessGrant) -> dict:
    decision_id = _param(request, "id")
    if not decision_id:
        raise ValidationIssue("id is required", field="id", error_type="required")
    memory.update_decision_outcome(instance_id, decision_id, _param(request, "outcome"), grant=grant)
    return {"status": "ok", "type": "outcome", "id": decision_id}


_WRITERS = {
    "episode": _write_episode,
    "decision": _write_decision,
    "profile": _write_profile,
    "outcome": _write_outcome,
}


@router.get("/write")
def write_via_get(
    instance_id: str,
    request: Request,
    grant: AccessGrant = Depends(require_access),
):
    write_type = _param(request, "type")
    writer = _WRITERS.get(write_type)
    if writer is None:
        raise ValidationIssue(
            f"type must be one of {'|'.join(WRITE_TYPES)}",
            field="type",
            error_type="invalid_choice",
        )
    return writer(instance_id, request, grant)
