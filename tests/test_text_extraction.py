import asyncio
import os
import time

import pytest

os.environ.setdefault("DB_BACKEND", "sqlite")
os.environ.setdefault("VECTOR_BACKEND", "none")

from core.errors import UpstreamUnavailable
from core.services.text_extraction import extract_text, extract_text_with_timeout, set_text_extractor


def test_plain_text_decoded():
    assert extract_text("héllo".encode("utf-8"), "text/plain", "a.txt") == "héllo"


def test_undecodable_bytes_and_nul_dropped():
    assert extract_text(b"ab\xff\x00cd", "application/octet-stream", "blob.bin") == "abcd"


def test_broken_pdf_yields_empty_text():
    assert extract_text(b"not a pdf at all", "application/pdf", "broken.pdf") == ""


def test_pdf_detected_by_extension():
    assert extract_text(b"garbage", "application/octet-stream", "scan.PDF") == ""


def test_extraction_timeout_is_upstream_unavailable():
    def slow(data, mime_type, filename):
        time.sleep(0.5)
        return "late"

    set_text_extractor(slow)
    try:
        with pytest.raises(UpstreamUnavailable):
            asyncio.run(extract_text_with_timeout(b"x", "text/plain", "x.txt", timeout=0.05))
    finally:
        set_text_extractor(None)


def test_custom_extractor_used():
    set_text_extractor(lambda data, mime_type, filename: f"{filename}:{len(data)}")
    try:
        assert asyncio.run(extract_text_with_timeout(b"abc", "text/plain", "f.txt")) == "f.txt:3"
    finally:
        set_text_extractor(None)
