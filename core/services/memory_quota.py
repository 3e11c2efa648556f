"""
Document quota enforcement and usage accounting.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import func

from core.db import DB
from core.errors import QuotaExceeded
from core.models import KnowledgeDocument, MemoryConfig
from core.services.memory_config import get_or_create_memory_config
from core.services.memory_shared import BYTES_PER_MB, _bytes_to_mb, service_tool

_instance_locks: dict[str, threading.Lock] = {}
_instance_locks_guard = threading.Lock()


@contextmanager
def instance_write_lock(instance_id: str) -> Iterator[None]:
    """Serialize quota-checked writes for one instance within this process."""
    with _instance_locks_guard:
        lock = _instance_locks.get(instance_id)
        if lock is None:
            lock = threading.Lock()
            _instance_locks[instance_id] = lock
    with lock:
        yield


def current_usage_bytes(db, instance_id: str) -> int:
    total = (
        db.query(func.coalesce(func.sum(KnowledgeDocument.size_bytes), 0))
        .filter(KnowledgeDocument.instance_id == instance_id)
        .scalar()
    )
    return int(total or 0)


def lock_memory_config(db, instance_id: str) -> MemoryConfig:
    """
    Return the instance's config row locked for the rest of the transaction.

    On Postgres this is ``SELECT ... FOR UPDATE`` and serializes ingestion
    across processes; SQLite ignores the lock clause and relies on the
    process-local mutex. The row is re-read even if this session already
    holds it, so a concurrent quota change is seen.
    """
    get_or_create_memory_config(db, instance_id)
    return (
        db.query(MemoryConfig)
        .filter(MemoryConfig.instance_id == instance_id)
        .with_for_update()
        .populate_existing()
        .one()
    )


def enforce_quota_or_raise(db, config_row: MemoryConfig, bytes_to_write: int) -> int:
    """Raise QuotaExceeded if the write would push usage over the limit; returns current usage."""
    used = current_usage_bytes(db, config_row.instance_id)
    limit_bytes = int(config_row.max_documents_mb) * BYTES_PER_MB
    if used + bytes_to_write > limit_bytes:
        raise QuotaExceeded(_bytes_to_mb(used), config_row.max_documents_mb, bytes_to_write)
    return used


@service_tool
def document_usage(instance_id: str) -> dict:
    db = DB.SessionLocal()
    try:
        row = get_or_create_memory_config(db, instance_id)
        used = current_usage_bytes(db, instance_id)
        return {
            "status": "ok",
            "used_bytes": used,
            "used_mb": round(_bytes_to_mb(used), 4),
            "max_documents_mb": row.max_documents_mb,
        }
    finally:
        db.close()


def current_usage_mb(instance_id: str) -> float:
    db = DB.SessionLocal()
    try:
        return _bytes_to_mb(current_usage_bytes(db, instance_id))
    finally:
        db.close()


def ensure_quota_available(instance_id: str, bytes_to_write: int) -> None:
    """
    Fail fast before expensive extraction when an upload cannot fit.

    Advisory only; ``ingest_document`` repeats the check under the write lock.
    """
    db = DB.SessionLocal()
    try:
        row = get_or_create_memory_config(db, instance_id)
        enforce_quota_or_raise(db, row, bytes_to_write)
    finally:
        db.close()
