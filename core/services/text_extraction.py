"""
Binary-to-text extraction for uploaded knowledge documents.
"""

from __future__ import annotations

import asyncio
import io
from typing import Callable, Optional

import pdfplumber

import core.config as config
from core.errors import UpstreamUnavailable
from core.services.memory_shared import logger

Extractor = Callable[[bytes, str, str], str]


def _extract_pdf(data: bytes) -> str:
    """Extract text from each PDF page and concatenate with newlines."""
    text = []
    with pdfplumber.open(io.BytesIO(data)) as pdf:
        for page in pdf.pages:
            text.append(page.extract_text() or "")
    return "\n".join(text)


def _extract_txt(data: bytes) -> str:
    """Decode UTF-8 with errors ignored; NUL bytes cannot be stored as text."""
    return data.decode("utf-8", errors="ignore").replace("\x00", "")


def _is_pdf(mime_type: str, filename: str) -> bool:
    mime = (mime_type or "").split(";")[0].strip().lower()
    return mime == "application/pdf" or (filename or "").lower().endswith(".pdf")


def extract_text(data: bytes, mime_type: str, filename: str) -> str:
    """
    Default extractor: PDFs through pdfplumber, everything else decoded as
    UTF-8. Unreadable input yields an empty string, which ingestion rejects
    as empty content.
    """
    if _is_pdf(mime_type, filename):
        try:
            return _extract_pdf(data)
        except Exception as exc:
            logger.warning(
                "PDF extraction failed",
                extra={"upload_filename": filename, "error": type(exc).__name__},
            )
            return ""
    return _extract_txt(data)


_extractor: Extractor = extract_text


def get_text_extractor() -> Extractor:
    return _extractor


def set_text_extractor(extractor: Optional[Extractor]) -> None:
    global _extractor
    _extractor = extractor or extract_text


async def extract_text_with_timeout(
    data: bytes,
    mime_type: str,
    filename: str,
    timeout: float = config.EXTRACTION_TIMEOUT_SECONDS,
) -> str:
    extractor = get_text_extractor()
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(extractor, data, mime_type, filename),
            timeout=timeout,
        )
    except asyncio.TimeoutError as exc:
        logger.warning("Text extraction timed out", extra={"timeout": timeout})
        raise UpstreamUnavailable("Text extraction timed out") from exc
