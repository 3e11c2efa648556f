"""
Knowledge document store with quota-checked ingestion.
"""

from __future__ import annotations

from typing import Optional

import core.config as config
from core.audit_constants import EVENT_DOCUMENT_DELETED, EVENT_DOCUMENT_INGESTED
from core.context import AccessGrant
from core.db import DB
from core.errors import EmptyContent, NotFound, ValidationIssue
from core.models import (
    DOCUMENT_STATUS_INDEXING,
    DOCUMENT_STATUS_READY,
    DocumentChunk,
    KnowledgeDocument,
)
from core.services.memory_embeddings import EmbeddingProvider, embed_document
from core.services.memory_quota import enforce_quota_or_raise, instance_write_lock, lock_memory_config
from core.services.memory_shared import (
    DEFAULT_LIST_LIMIT,
    MAX_FILENAME_LENGTH,
    MAX_LIST_LIMIT,
    MAX_SHORT_TEXT_LENGTH,
    _audit,
    _iso,
    logger,
    service_tool,
)
from core.validators import clamp_limit, clamp_offset, validate_required_text


def _serialize_document(row: KnowledgeDocument, include_content: bool = False) -> dict:
    payload = {
        "id": row.id,
        "instance_id": row.instance_id,
        "filename": row.filename,
        "mime_type": row.mime_type,
        "size_bytes": int(row.size_bytes or 0),
        "status": row.status,
        "chunk_count": int(row.chunk_count or 0),
        "created_at": _iso(row.created_at),
    }
    if include_content:
        payload["content"] = row.content
    return payload


def chunk_text(
    text: str,
    max_words: int = config.CHUNK_WORDS,
    overlap: int = config.CHUNK_OVERLAP_WORDS,
) -> list[str]:
    """
    Split text into windows of ``max_words`` words, each starting ``overlap``
    words before the previous one ended. Whitespace is normalized to single
    spaces.
    """
    words = text.split()
    chunks: list[str] = []
    start = 0
    while start < len(words):
        end = min(start + max_words, len(words))
        chunks.append(" ".join(words[start:end]))
        if end >= len(words):
            break
        start = max(end - overlap, start + 1)
    return chunks


def _load_document(db, instance_id: str, document_id: str) -> KnowledgeDocument:
    row = (
        db.query(KnowledgeDocument)
        .filter(KnowledgeDocument.instance_id == instance_id, KnowledgeDocument.id == document_id)
        .first()
    )
    if row is None:
        raise NotFound("Document not found", entity="document")
    return row


@service_tool
def list_documents(
    instance_id: str,
    *,
    limit=DEFAULT_LIST_LIMIT,
    offset=0,
    include_content: bool = False,
) -> dict:
    """
    Page through an instance's documents, newest first.

    Metadata only unless ``include_content``; the digest builder pages with
    content to assemble its context.
    """
    effective_limit = clamp_limit(limit, DEFAULT_LIST_LIMIT, MAX_LIST_LIMIT)
    effective_offset = clamp_offset(offset)
    db = DB.SessionLocal()
    try:
        query = db.query(KnowledgeDocument).filter(KnowledgeDocument.instance_id == instance_id)
        total = query.count()
        rows = (
            query.order_by(KnowledgeDocument.created_at.desc(), KnowledgeDocument.id.desc())
            .offset(effective_offset)
            .limit(effective_limit)
            .all()
        )
        next_offset = effective_offset + len(rows)
        return {
            "status": "ok",
            "count": len(rows),
            "total": total,
            "limit": effective_limit,
            "offset": effective_offset,
            "next_offset": next_offset if next_offset < total else None,
            "documents": [_serialize_document(row, include_content) for row in rows],
        }
    finally:
        db.close()


@service_tool
def get_document(instance_id: str, document_id: str) -> dict:
    db = DB.SessionLocal()
    try:
        row = _load_document(db, instance_id, document_id)
        return {"status": "ok", "document": _serialize_document(row, include_content=True)}
    finally:
        db.close()


@service_tool
def ingest_document(
    instance_id: str,
    *,
    filename: str,
    mime_type: str,
    content: Optional[str],
    size_bytes: int,
    grant: Optional[AccessGrant] = None,
    provider: Optional[EmbeddingProvider] = None,
) -> dict:
    """
    Store extracted document text, charged against the instance quota.

    ``size_bytes`` is the size of the original upload. The quota check and the
    insert happen in one transaction while holding the instance's write lock,
    so concurrent ingestions can never jointly exceed the quota. The text is
    stored whole and as overlapping word chunks; chunks are embedded after
    commit, and any the provider misses are left for the backfill loop.
    """
    validate_required_text(filename, "filename", MAX_FILENAME_LENGTH)
    validate_required_text(mime_type, "mime_type", MAX_SHORT_TEXT_LENGTH)
    if isinstance(size_bytes, bool) or not isinstance(size_bytes, int) or size_bytes < 0:
        raise ValidationIssue(
            "size_bytes must be a non-negative integer",
            field="size_bytes",
            error_type="out_of_range",
        )

    with instance_write_lock(instance_id):
        db = DB.SessionLocal()
        try:
            config_row = lock_memory_config(db, instance_id)
            enforce_quota_or_raise(db, config_row, size_bytes)
            if content is None or not content.strip():
                raise EmptyContent()
            row = KnowledgeDocument(
                instance_id=instance_id,
                filename=filename.strip(),
                mime_type=mime_type.strip(),
                content=content,
                size_bytes=size_bytes,
                status=DOCUMENT_STATUS_INDEXING,
            )
            chunks = chunk_text(content)
            row.chunk_count = len(chunks)
            row.chunks = [
                DocumentChunk(instance_id=instance_id, chunk_index=index, content=chunk)
                for index, chunk in enumerate(chunks)
            ]
            db.add(row)
            db.flush()
            _audit(
                db,
                instance_id,
                grant,
                event_type=EVENT_DOCUMENT_INGESTED,
                target_type="document",
                target_ids=[row.id],
                metadata={
                    "size_bytes": size_bytes,
                    "mime_type": row.mime_type,
                    "chunk_count": row.chunk_count,
                },
            )
            db.commit()
            document_id = row.id
            payload = _serialize_document(row)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    logger.info(
        "document_ingested",
        extra={"instance_id": instance_id, "document_id": document_id, "size_bytes": size_bytes},
    )
    if embed_document(document_id, provider):
        payload["status"] = DOCUMENT_STATUS_READY
    return {"status": "ok", "id": document_id, "document": payload}


@service_tool
def delete_document(
    instance_id: str,
    document_id: str,
    grant: Optional[AccessGrant] = None,
) -> dict:
    db = DB.SessionLocal()
    try:
        row = _load_document(db, instance_id, document_id)
        size_bytes = int(row.size_bytes or 0)
        db.delete(row)
        _audit(
            db,
            instance_id,
            grant,
            event_type=EVENT_DOCUMENT_DELETED,
            target_type="document",
            target_ids=[document_id],
            metadata={"size_bytes": size_bytes},
        )
        db.commit()
        return {"status": "ok", "deleted": True, "id": document_id}
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
