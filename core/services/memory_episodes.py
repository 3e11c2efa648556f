"""
Episode store: short summaries of things that happened, ordered by when they happened.
"""

from __future__ import annotations

from typing import Optional, Sequence

from core.audit_constants import EVENT_EPISODE_STORED
from core.context import AccessGrant
from core.db import DB
from core.models import Episode, utcnow
from core.services.memory_shared import (
    DEFAULT_LIST_LIMIT,
    MAX_LIST_LIMIT,
    MAX_TEXT_LENGTH,
    _audit,
    _iso,
    _normalize_sender,
    service_tool,
)
from core.validators import clamp_limit, normalize_tags, parse_timestamp, validate_required_text


def _serialize_episode(row: Episode) -> dict:
    return {
        "id": row.id,
        "instance_id": row.instance_id,
        "sender_id": row.sender_id,
        "summary": row.summary,
        "tags": list(row.tags or []),
        "happened_at": _iso(row.happened_at),
        "created_at": _iso(row.created_at),
    }


def _episode_query(db, instance_id: str, sender_id: Optional[str], since_dt):
    query = db.query(Episode).filter(Episode.instance_id == instance_id)
    if sender_id:
        query = query.filter(Episode.sender_id == sender_id)
    if since_dt is not None:
        query = query.filter(Episode.happened_at >= since_dt)
    return query.order_by(Episode.happened_at.desc(), Episode.created_at.desc(), Episode.id.desc())


@service_tool
def store_episode(
    instance_id: str,
    *,
    summary: str,
    sender_id: Optional[str] = None,
    tags: Optional[Sequence[str]] = None,
    happened_at=None,
    grant: Optional[AccessGrant] = None,
) -> dict:
    validate_required_text(summary, "summary", MAX_TEXT_LENGTH)
    tag_values = normalize_tags(tags)
    sender = _normalize_sender(sender_id)
    happened = parse_timestamp(happened_at, "happened_at")

    db = DB.SessionLocal()
    try:
        now = utcnow()
        row = Episode(
            instance_id=instance_id,
            sender_id=sender,
            summary=summary.strip(),
            tags=tag_values,
            happened_at=happened or now,
            created_at=now,
        )
        db.add(row)
        db.flush()
        _audit(
            db,
            instance_id,
            grant,
            event_type=EVENT_EPISODE_STORED,
            target_type="episode",
            target_ids=[row.id],
            metadata={"tag_count": len(tag_values), "backdated": happened is not None},
        )
        db.commit()
        db.refresh(row)
        return {"status": "ok", "id": row.id, "episode": _serialize_episode(row)}
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@service_tool
def list_episodes(
    instance_id: str,
    *,
    limit=DEFAULT_LIST_LIMIT,
    sender_id: Optional[str] = None,
    since=None,
) -> dict:
    """Episodes newest ``happened_at`` first, optionally for one sender and/or after ``since``."""
    effective_limit = clamp_limit(limit, DEFAULT_LIST_LIMIT, MAX_LIST_LIMIT)
    sender = _normalize_sender(sender_id)
    since_dt = parse_timestamp(since, "since")
    db = DB.SessionLocal()
    try:
        rows = _episode_query(db, instance_id, sender, since_dt).limit(effective_limit).all()
        return {
            "status": "ok",
            "count": len(rows),
            "limit": effective_limit,
            "episodes": [_serialize_episode(row) for row in rows],
        }
    finally:
        db.close()


def recent_episodes(instance_id: str, limit: int, sender_id: Optional[str] = None) -> list[dict]:
    db = DB.SessionLocal()
    try:
        rows = _episode_query(db, instance_id, sender_id, None).limit(limit).all()
        return [_serialize_episode(row) for row in rows]
    finally:
        db.close()
