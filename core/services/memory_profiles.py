"""
Profile store: one record per (instance, counterpart), updated by partial merge.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

from sqlalchemy.exc import IntegrityError

from core.audit_constants import EVENT_PROFILE_DELETED, EVENT_PROFILE_UPSERTED
from core.context import AccessGrant
from core.db import DB
from core.errors import NotFound, ValidationIssue
from core.models import Profile
from core.services.memory_shared import (
    DEFAULT_SENDER_ID,
    MAX_LIST_ITEM_LENGTH,
    MAX_LIST_ITEMS,
    MAX_SHORT_TEXT_LENGTH,
    MAX_TEXT_LENGTH,
    _audit,
    _iso,
    _normalize_sender,
    logger,
    service_tool,
)
from core.validators import validate_metadata, validate_optional_text, validate_string_list

# text fields and their max lengths
PROFILE_TEXT_FIELDS = {
    "name": MAX_SHORT_TEXT_LENGTH,
    "role": MAX_SHORT_TEXT_LENGTH,
    "timezone": 100,
    "communication_style": MAX_TEXT_LENGTH,
    "current_focus": MAX_TEXT_LENGTH,
    "relationship_context": MAX_TEXT_LENGTH,
}
PROFILE_FIELDS = frozenset(PROFILE_TEXT_FIELDS) | {"preferences", "metadata"}


def _serialize_profile(row: Profile) -> dict:
    return {
        "id": row.id,
        "instance_id": row.instance_id,
        "sender_id": row.sender_id,
        "name": row.name,
        "role": row.role,
        "timezone": row.timezone,
        "communication_style": row.communication_style,
        "current_focus": row.current_focus,
        "relationship_context": row.relationship_context,
        "preferences": list(row.preferences or []),
        "metadata": dict(row.metadata_ or {}),
        "created_at": _iso(row.created_at),
        "updated_at": _iso(row.updated_at),
    }


def _resolve_sender(sender_id: Optional[str]) -> str:
    return _normalize_sender(sender_id) or DEFAULT_SENDER_ID


def _validate_fields(fields: Mapping[str, Any]) -> dict:
    if not isinstance(fields, Mapping):
        raise ValidationIssue("profile fields must be an object", field="fields", error_type="invalid_type")
    unknown = sorted(set(fields) - PROFILE_FIELDS)
    if unknown:
        raise ValidationIssue(
            f"unknown profile fields: {unknown}",
            field=unknown[0],
            error_type="unknown_field",
        )
    cleaned: dict = {}
    for key, value in fields.items():
        if key in PROFILE_TEXT_FIELDS:
            validate_optional_text(value, key, PROFILE_TEXT_FIELDS[key])
            cleaned[key] = value
        elif key == "preferences":
            validate_string_list(value, "preferences", MAX_LIST_ITEMS, MAX_LIST_ITEM_LENGTH)
            cleaned[key] = [item.strip() for item in (value or []) if item.strip()]
        elif key == "metadata":
            validate_metadata(value, "metadata")
            cleaned[key] = dict(value or {})
    return cleaned


def _apply_fields(row: Profile, fields: Mapping[str, Any]) -> None:
    for key, value in fields.items():
        if key == "metadata":
            row.metadata_ = value
        else:
            setattr(row, key, value)


def _find_profile(db, instance_id: str, sender_id: str) -> Optional[Profile]:
    return (
        db.query(Profile)
        .filter(Profile.instance_id == instance_id, Profile.sender_id == sender_id)
        .first()
    )


def load_profile(instance_id: str, sender_id: Optional[str] = None) -> Optional[dict]:
    """Profile for a sender, or None; read path for search."""
    db = DB.SessionLocal()
    try:
        row = _find_profile(db, instance_id, _resolve_sender(sender_id))
        return _serialize_profile(row) if row is not None else None
    finally:
        db.close()


@service_tool
def get_profile(instance_id: str, sender_id: Optional[str] = DEFAULT_SENDER_ID) -> dict:
    profile = load_profile(instance_id, sender_id)
    if profile is None:
        raise NotFound("Profile not found", entity="profile")
    return {"status": "ok", "profile": profile}


@service_tool
def list_profiles(instance_id: str) -> dict:
    db = DB.SessionLocal()
    try:
        rows = (
            db.query(Profile)
            .filter(Profile.instance_id == instance_id)
            .order_by(Profile.updated_at.desc(), Profile.sender_id.asc())
            .all()
        )
        return {
            "status": "ok",
            "count": len(rows),
            "profiles": [_serialize_profile(row) for row in rows],
        }
    finally:
        db.close()


@service_tool
def upsert_profile(
    instance_id: str,
    sender_id: Optional[str],
    fields: Mapping[str, Any],
    grant: Optional[AccessGrant] = None,
) -> dict:
    """
    Create or partially update a profile.

    Only keys present in ``fields`` are written; a key present with ``None``
    clears that field. Absent keys keep their stored value.
    """
    sender = _resolve_sender(sender_id)
    cleaned = _validate_fields(fields)

    db = DB.SessionLocal()
    try:
        created = False
        row = _find_profile(db, instance_id, sender)
        if row is None:
            row = Profile(instance_id=instance_id, sender_id=sender, preferences=[], metadata_={})
            _apply_fields(row, cleaned)
            db.add(row)
            try:
                db.flush()
                created = True
            except IntegrityError:
                # Concurrent first write for the same sender; merge into theirs.
                db.rollback()
                row = _find_profile(db, instance_id, sender)
                if row is None:
                    raise
                _apply_fields(row, cleaned)
        else:
            _apply_fields(row, cleaned)

        _audit(
            db,
            instance_id,
            grant,
            event_type=EVENT_PROFILE_UPSERTED,
            target_type="profile",
            target_ids=[sender],
            metadata={"fields": sorted(cleaned), "created": created},
        )
        db.commit()
        db.refresh(row)
        logger.info("profile_upserted", extra={"instance_id": instance_id, "profile_created": created})
        return {"status": "ok", "created": created, "profile": _serialize_profile(row)}
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@service_tool
def delete_profile(
    instance_id: str,
    sender_id: Optional[str],
    grant: Optional[AccessGrant] = None,
) -> dict:
    sender = _resolve_sender(sender_id)
    db = DB.SessionLocal()
    try:
        row = _find_profile(db, instance_id, sender)
        if row is None:
            return {"status": "ok", "deleted": False}
        db.delete(row)
        _audit(
            db,
            instance_id,
            grant,
            event_type=EVENT_PROFILE_DELETED,
            target_type="profile",
            target_ids=[sender],
        )
        db.commit()
        return {"status": "ok", "deleted": True}
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
