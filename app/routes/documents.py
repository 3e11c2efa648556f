"""
Knowledge document endpoints.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile

import core.config as config
from app.deps import require_access
from core.context import AccessGrant
from core.errors import ValidationIssue
from core.services import memory


router = APIRouter(prefix="/api/memory/{instance_id}/documents", tags=["documents"])

DEFAULT_MIME_TYPE = "application/octet-stream"


@router.get("")
def list_documents(
    instance_id: str,
    limit: Optional[str] = None,
    offset: Optional[str] = None,
    include_content: bool = Query(default=False, alias="includeContent"),
    grant: AccessGrant = Depends(require_access),
):
    return memory.list_documents(
        instance_id,
        limit=limit,
        offset=offset,
        include_content=include_content,
    )


# registered before "/{document_id}" so "usage" is not read as an id
@router.get("/usage")
def get_usage(instance_id: str, grant: AccessGrant = Depends(require_access)):
    return memory.document_usage(instance_id)


@router.get("/{document_id}")
def get_document(instance_id: str, document_id: str, grant: AccessGrant = Depends(require_access)):
    return memory.get_document(instance_id, document_id)


@router.post("", status_code=201)
async def upload_document(
    instance_id: str,
    file: UploadFile = File(...),
    grant: AccessGrant = Depends(require_access),
):
    """
    Upload a file, extract its text and store it as a knowledge document.

    The quota is checked before extraction so oversized uploads fail fast;
    ``ingest_document`` repeats the check atomically.
    """
    data = await file.read(config.MAX_UPLOAD_BYTES + 1)
    if len(data) > config.MAX_UPLOAD_BYTES:
        raise ValidationIssue(
            f"file exceeds {config.MAX_UPLOAD_BYTES} bytes",
            field="file",
            error_type="too_large",
        )
    filename = file.filename or "upload"
    mime_type = file.content_type or DEFAULT_MIME_TYPE

    await asyncio.to_thread(memory.ensure_quota_available, instance_id, len(data))
    content = await memory.extract_text_with_timeout(data, mime_type, filename)
    return await asyncio.to_thread(
        memory.ingest_document,
        instance_id,
        filename=filename,
        mime_type=mime_type,
        content=content,
        size_bytes=len(data),
        grant=grant,
    )


@router.delete("/{document_id}")
def delete_document(instance_id: str, document_id: str, grant: AccessGrant = Depends(require_access)):
    return memory.delete_document(instance_id, document_id, grant=grant)
