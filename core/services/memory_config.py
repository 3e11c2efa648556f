"""
Per-instance memory configuration: API key, document quota, stats.
"""

from __future__ import annotations

import secrets
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

import core.config as config
from core.audit_constants import EVENT_KEY_ROTATED, EVENT_QUOTA_UPDATED
from core.context import AccessGrant
from core.db import DB
from core.errors import ValidationIssue
from core.models import Decision, Episode, KnowledgeDocument, MemoryConfig, Profile
from core.services.memory_shared import _audit, _bytes_to_mb, _iso, logger, service_tool


def generate_memory_api_key() -> str:
    return secrets.token_hex(config.MEMORY_API_KEY_BYTES)


def find_memory_config(db, instance_id: str) -> Optional[MemoryConfig]:
    return db.query(MemoryConfig).filter(MemoryConfig.instance_id == instance_id).first()


def get_or_create_memory_config(db, instance_id: str) -> MemoryConfig:
    """Load the instance's config row, creating it with defaults on first access."""
    row = find_memory_config(db, instance_id)
    if row is not None:
        return row
    row = MemoryConfig(
        instance_id=instance_id,
        memory_api_key=generate_memory_api_key(),
        max_documents_mb=config.DEFAULT_MAX_DOCUMENTS_MB,
    )
    db.add(row)
    try:
        db.commit()
    except IntegrityError:
        # Lost a creation race; the winner's row is authoritative.
        db.rollback()
        row = find_memory_config(db, instance_id)
        if row is None:
            raise
        return row
    logger.info("memory_config_created", extra={"instance_id": instance_id})
    return row


def _serialize_config(row: MemoryConfig, include_key: bool) -> dict:
    payload = {
        "instance_id": row.instance_id,
        "max_documents_mb": row.max_documents_mb,
        "created_at": _iso(row.created_at),
        "updated_at": _iso(row.updated_at),
    }
    if include_key:
        payload["memory_api_key"] = row.memory_api_key
    return payload


@service_tool
def memory_stats(instance_id: str, include_key: bool = False) -> dict:
    db = DB.SessionLocal()
    try:
        row = get_or_create_memory_config(db, instance_id)

        def _count(model) -> int:
            return db.query(func.count(model.id)).filter(model.instance_id == instance_id).scalar() or 0

        used_bytes = (
            db.query(func.coalesce(func.sum(KnowledgeDocument.size_bytes), 0))
            .filter(KnowledgeDocument.instance_id == instance_id)
            .scalar()
        )
        return {
            "status": "ok",
            "config": _serialize_config(row, include_key),
            "counts": {
                "profiles": _count(Profile),
                "decisions": _count(Decision),
                "episodes": _count(Episode),
                "documents": _count(KnowledgeDocument),
            },
            "documents_used_mb": round(_bytes_to_mb(int(used_bytes or 0)), 4),
            "max_documents_mb": row.max_documents_mb,
        }
    finally:
        db.close()


@service_tool
def rotate_memory_api_key(instance_id: str, grant: Optional[AccessGrant] = None) -> dict:
    db = DB.SessionLocal()
    try:
        row = get_or_create_memory_config(db, instance_id)
        row.memory_api_key = generate_memory_api_key()
        _audit(
            db,
            instance_id,
            grant,
            event_type=EVENT_KEY_ROTATED,
            target_type="key",
            target_ids=[instance_id],
        )
        db.commit()
        logger.info("memory_api_key_rotated", extra={"instance_id": instance_id})
        return {"status": "ok", "config": _serialize_config(row, include_key=True)}
    finally:
        db.close()


@service_tool
def set_document_quota(
    instance_id: str,
    max_documents_mb: int,
    grant: Optional[AccessGrant] = None,
) -> dict:
    if isinstance(max_documents_mb, bool) or not isinstance(max_documents_mb, int) or max_documents_mb <= 0:
        raise ValidationIssue(
            "max_documents_mb must be a positive integer",
            field="max_documents_mb",
            error_type="out_of_range",
        )
    db = DB.SessionLocal()
    try:
        row = get_or_create_memory_config(db, instance_id)
        previous = row.max_documents_mb
        row.max_documents_mb = max_documents_mb
        _audit(
            db,
            instance_id,
            grant,
            event_type=EVENT_QUOTA_UPDATED,
            target_type="config",
            target_ids=[instance_id],
            metadata={"previous_mb": previous, "new_mb": max_documents_mb},
        )
        db.commit()
        return {"status": "ok", "config": _serialize_config(row, include_key=False)}
    finally:
        db.close()
