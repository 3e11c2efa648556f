"""
Embedding provider, circuit breaker and document embedding maintenance.
"""

from __future__ import annotations

import asyncio
import random
import threading
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence

import httpx
from sqlalchemy import func

import core.config as config
from core.db import DB
from core.models import DOCUMENT_STATUS_READY, DocumentChunk, KnowledgeDocument
from core.services.memory_shared import logger

OPENAI_API_KEY = config.OPENAI_API_KEY
OPENAI_EMBEDDINGS_URL = config.OPENAI_EMBEDDINGS_URL
EMBEDDING_MODEL = config.EMBEDDING_MODEL
EMBEDDING_DIM = config.EMBEDDING_DIM
MAX_EMBEDDING_TEXT_LENGTH = config.MAX_EMBEDDING_TEXT_LENGTH

EMBEDDING_TIMEOUT_SECONDS = config.EMBEDDING_TIMEOUT_SECONDS
EMBEDDING_RETRY_MAX = config.EMBEDDING_RETRY_MAX
EMBEDDING_RETRY_BACKOFF_SECONDS = config.EMBEDDING_RETRY_BACKOFF_SECONDS
EMBEDDING_RETRY_JITTER_SECONDS = config.EMBEDDING_RETRY_JITTER_SECONDS
EMBEDDING_FAILURE_THRESHOLD = config.EMBEDDING_FAILURE_THRESHOLD
EMBEDDING_COOLDOWN_SECONDS = config.EMBEDDING_COOLDOWN_SECONDS
EMBEDDING_BACKFILL_INTERVAL_SECONDS = config.EMBEDDING_BACKFILL_INTERVAL_SECONDS
EMBEDDING_BACKFILL_BATCH_LIMIT = config.EMBEDDING_BACKFILL_BATCH_LIMIT

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


@dataclass(frozen=True)
class EmbeddingResult:
    """Either a vector or an explicit "unavailable" marker with a reason."""

    vector: Optional[List[float]] = None
    reason: Optional[str] = None
    model: Optional[str] = None

    @property
    def available(self) -> bool:
        return self.vector is not None

    @classmethod
    def ok(cls, vector: Sequence[float], model: Optional[str] = None) -> "EmbeddingResult":
        return cls(vector=[float(v) for v in vector], model=model)

    @classmethod
    def unavailable(cls, reason: str) -> "EmbeddingResult":
        return cls(vector=None, reason=reason)


class EmbeddingCircuitBreaker:
    def __init__(self, failure_threshold: int, cooldown_seconds: int):
        self._failure_threshold = max(1, failure_threshold)
        self._cooldown_seconds = max(1, cooldown_seconds)
        self._lock = threading.Lock()
        self._consecutive_failures = 0
        self._cooldown_until = 0.0
        self._last_error: Optional[str] = None
        self._last_failure_ts: Optional[float] = None
        self._last_success_ts: Optional[float] = None

    def is_open(self) -> bool:
        with self._lock:
            return time.time() < self._cooldown_until

    def record_success(self) -> None:
        with self._lock:
            self._consecutive_failures = 0
            self._cooldown_until = 0.0
            self._last_success_ts = time.time()

    def record_failure(self, error: str) -> None:
        with self._lock:
            self._consecutive_failures += 1
            self._last_error = error
            self._last_failure_ts = time.time()
            if self._consecutive_failures >= self._failure_threshold:
                self._cooldown_until = time.time() + self._cooldown_seconds

    def status(self) -> dict:
        with self._lock:
            return {
                "open": time.time() < self._cooldown_until,
                "consecutive_failures": self._consecutive_failures,
                "cooldown_until_epoch": int(self._cooldown_until) if self._cooldown_until else None,
                "last_error": self._last_error,
                "last_failure_epoch": int(self._last_failure_ts) if self._last_failure_ts else None,
                "last_success_epoch": int(self._last_success_ts) if self._last_success_ts else None,
            }


embedding_circuit_breaker = EmbeddingCircuitBreaker(
    failure_threshold=EMBEDDING_FAILURE_THRESHOLD,
    cooldown_seconds=EMBEDDING_COOLDOWN_SECONDS,
)


def _backoff_delay(attempt: int) -> float:
    base = EMBEDDING_RETRY_BACKOFF_SECONDS * (2 ** attempt)
    return base + random.uniform(0, EMBEDDING_RETRY_JITTER_SECONDS)


def _prepare_input(text: str) -> Optional[str]:
    if not isinstance(text, str) or not text.strip():
        return None
    return text[:MAX_EMBEDDING_TEXT_LENGTH]


# =============================================================================
# Providers
# =============================================================================

class EmbeddingProvider:
    """Turns text into a vector. Never raises for provider trouble."""

    name = "base"
    model: Optional[str] = None

    async def embed(self, text: str) -> EmbeddingResult:
        raise NotImplementedError

    def embed_sync(self, text: str) -> EmbeddingResult:
        raise NotImplementedError


class DisabledEmbeddingProvider(EmbeddingProvider):
    name = "none"

    def __init__(self, reason: str = "embedding provider disabled"):
        self._reason = reason

    async def embed(self, text: str) -> EmbeddingResult:
        return EmbeddingResult.unavailable(self._reason)

    def embed_sync(self, text: str) -> EmbeddingResult:
        return EmbeddingResult.unavailable(self._reason)


class OpenAIEmbeddingProvider(EmbeddingProvider):
    name = "openai"

    def __init__(
        self,
        api_key: str,
        *,
        model: str = EMBEDDING_MODEL,
        url: str = OPENAI_EMBEDDINGS_URL,
        breaker: EmbeddingCircuitBreaker = embedding_circuit_breaker,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.model = model
        self._api_key = api_key
        self._url = url
        self._breaker = breaker
        self._transport = transport
        self._client: Optional[httpx.Client] = None
        self._client_lock = threading.Lock()
        # httpx async connections belong to the loop that opened them
        self._async_client: Optional[httpx.AsyncClient] = None
        self._async_loop: Optional[asyncio.AbstractEventLoop] = None

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    def _sync_client(self) -> httpx.Client:
        with self._client_lock:
            if self._client is None:
                self._client = httpx.Client(
                    timeout=httpx.Timeout(EMBEDDING_TIMEOUT_SECONDS),
                    limits=httpx.Limits(max_keepalive_connections=10, max_connections=100),
                    headers=self._headers(),
                    transport=self._transport,
                )
                logger.info("HTTP client initialized")
            return self._client

    def _get_async_client(self) -> httpx.AsyncClient:
        loop = asyncio.get_running_loop()
        if (
            self._async_client is None
            or self._async_client.is_closed
            or self._async_loop is not loop
        ):
            self._async_client = httpx.AsyncClient(
                timeout=httpx.Timeout(EMBEDDING_TIMEOUT_SECONDS),
                limits=httpx.Limits(max_keepalive_connections=10, max_connections=100),
                headers=self._headers(),
                transport=self._transport,
            )
            self._async_loop = loop
            logger.info("Async HTTP client initialized")
        return self._async_client

    def close(self) -> None:
        with self._client_lock:
            if self._client is not None:
                self._client.close()
                self._client = None
                logger.info("HTTP client closed")
        client, loop = self._async_client, self._async_loop
        self._async_client = None
        self._async_loop = None
        if client is not None and loop is not None and loop.is_running():
            asyncio.run_coroutine_threadsafe(client.aclose(), loop)

    async def aclose(self) -> None:
        client = self._async_client
        self._async_client = None
        self._async_loop = None
        if client is not None:
            await client.aclose()
            logger.info("Async HTTP client closed")
        self.close()

    def _handle_response(self, response: httpx.Response) -> EmbeddingResult:
        try:
            data = response.json()
            vector = data["data"][0]["embedding"]
        except (ValueError, KeyError, IndexError, TypeError):
            self._breaker.record_failure("malformed response")
            return self._unavailable("malformed response")
        self._breaker.record_success()
        return EmbeddingResult.ok(vector, model=self.model)

    def _unavailable(self, detail: str) -> EmbeddingResult:
        logger.warning("Embedding provider unavailable", extra={"detail": detail})
        return EmbeddingResult.unavailable(detail)

    async def embed(self, text: str) -> EmbeddingResult:
        prepared = _prepare_input(text)
        if prepared is None:
            return EmbeddingResult.unavailable("empty input")
        if self._breaker.is_open():
            return EmbeddingResult.unavailable("circuit breaker open")
        client = self._get_async_client()
        for attempt in range(EMBEDDING_RETRY_MAX + 1):
            try:
                response = await client.post(
                    self._url,
                    json={"model": self.model, "input": prepared},
                )
            except httpx.RequestError as exc:
                if attempt >= EMBEDDING_RETRY_MAX:
                    self._breaker.record_failure(type(exc).__name__)
                    return self._unavailable("request error")
                await asyncio.sleep(_backoff_delay(attempt))
                continue

            if response.status_code in RETRYABLE_STATUS_CODES:
                if attempt >= EMBEDDING_RETRY_MAX:
                    self._breaker.record_failure(f"status {response.status_code}")
                    return self._unavailable(f"status {response.status_code}")
                await asyncio.sleep(_backoff_delay(attempt))
                continue
            if response.status_code >= 400:
                self._breaker.record_failure(f"status {response.status_code}")
                return self._unavailable(f"status {response.status_code}")
            return self._handle_response(response)
        return self._unavailable("retries exhausted")

    def embed_sync(self, text: str) -> EmbeddingResult:
        prepared = _prepare_input(text)
        if prepared is None:
            return EmbeddingResult.unavailable("empty input")
        if self._breaker.is_open():
            return EmbeddingResult.unavailable("circuit breaker open")
        client = self._sync_client()
        for attempt in range(EMBEDDING_RETRY_MAX + 1):
            try:
                response = client.post(
                    self._url,
                    json={"model": self.model, "input": prepared},
                )
            except httpx.RequestError as exc:
                if attempt >= EMBEDDING_RETRY_MAX:
                    self._breaker.record_failure(type(exc).__name__)
                    return self._unavailable("request error")
                time.sleep(_backoff_delay(attempt))
                continue

            if response.status_code in RETRYABLE_STATUS_CODES:
                if attempt >= EMBEDDING_RETRY_MAX:
                    self._breaker.record_failure(f"status {response.status_code}")
                    return self._unavailable(f"status {response.status_code}")
                time.sleep(_backoff_delay(attempt))
                continue
            if response.status_code >= 400:
                self._breaker.record_failure(f"status {response.status_code}")
                return self._unavailable(f"status {response.status_code}")
            return self._handle_response(response)
        return self._unavailable("retries exhausted")


_provider: Optional[EmbeddingProvider] = None
_provider_lock = threading.Lock()


def _build_default_provider() -> EmbeddingProvider:
    if config.EMBEDDING_PROVIDER == "none":
        return DisabledEmbeddingProvider()
    if not OPENAI_API_KEY:
        return DisabledEmbeddingProvider("OPENAI_API_KEY not configured")
    return OpenAIEmbeddingProvider(OPENAI_API_KEY)


def get_embedding_provider() -> EmbeddingProvider:
    global _provider
    with _provider_lock:
        if _provider is None:
            _provider = _build_default_provider()
        return _provider


def set_embedding_provider(provider: Optional[EmbeddingProvider]) -> None:
    """Swap the process-wide provider; ``None`` restores the configured default."""
    global _provider
    with _provider_lock:
        previous = _provider
        _provider = provider
    if isinstance(previous, OpenAIEmbeddingProvider) and previous is not provider:
        previous.close()


async def cleanup_embedding_provider() -> None:
    with _provider_lock:
        provider = _provider
    if isinstance(provider, OpenAIEmbeddingProvider):
        await provider.aclose()


# =============================================================================
# Document embedding maintenance
# =============================================================================

def _store_chunk_embedding(chunk: DocumentChunk, provider: EmbeddingProvider) -> bool:
    result = provider.embed_sync(chunk.content)
    if not result.available:
        return False
    if len(result.vector) != EMBEDDING_DIM and config.VECTOR_BACKEND_EFFECTIVE == "pgvector":
        logger.warning(
            "Embedding dimension mismatch; skipping store",
            extra={"expected": EMBEDDING_DIM, "actual": len(result.vector)},
        )
        return False
    chunk.embedding = result.vector
    chunk.embedding_model = result.model or provider.name
    return True


def _refresh_document_status(db, document_id: str) -> bool:
    """Mark the document ready once none of its chunks await an embedding."""
    pending = (
        db.query(func.count(DocumentChunk.id))
        .filter(DocumentChunk.document_id == document_id, DocumentChunk.embedding.is_(None))
        .scalar()
    )
    if pending:
        return False
    db.query(KnowledgeDocument).filter(KnowledgeDocument.id == document_id).update(
        {KnowledgeDocument.status: DOCUMENT_STATUS_READY},
        synchronize_session=False,
    )
    return True


def embed_document(document_id: str, provider: Optional[EmbeddingProvider] = None) -> bool:
    """
    Best-effort embedding of a document's pending chunks.

    Stops at the first provider miss and leaves the remaining chunks to the
    backfill loop. Returns whether the document is now ready.
    """
    if DB.SessionLocal is None:
        return False
    provider = provider or get_embedding_provider()
    db = DB.SessionLocal()
    try:
        document = db.get(KnowledgeDocument, document_id)
        if document is None:
            return False
        for chunk in document.chunks:
            if chunk.embedding is not None:
                continue
            if not _store_chunk_embedding(chunk, provider):
                break
        ready = _refresh_document_status(db, document_id)
        db.commit()
        return ready
    except Exception:
        db.rollback()
        logger.exception("Document embedding failed", extra={"document_id": document_id})
        return False
    finally:
        db.close()


def _run_embedding_backfill(limit: int = EMBEDDING_BACKFILL_BATCH_LIMIT) -> dict:
    if DB.SessionLocal is None:
        return {"status": "skipped", "reason": "db_not_initialized"}
    provider = get_embedding_provider()
    if isinstance(provider, DisabledEmbeddingProvider):
        return {"status": "skipped", "reason": "embedding_disabled"}
    if embedding_circuit_breaker.is_open():
        return {"status": "skipped", "reason": "circuit_open"}
    if limit <= 0:
        return {"status": "skipped", "reason": "batch_limit_disabled"}

    db = DB.SessionLocal()
    processed = 0
    backfilled = 0
    skipped = 0
    circuit_opened = False
    touched: list[str] = []
    try:
        missing = (
            db.query(DocumentChunk)
            .filter(DocumentChunk.embedding.is_(None))
            .order_by(
                DocumentChunk.created_at.asc(),
                DocumentChunk.document_id.asc(),
                DocumentChunk.chunk_index.asc(),
            )
            .limit(limit)
            .all()
        )
        for chunk in missing:
            if embedding_circuit_breaker.is_open():
                circuit_opened = True
                break
            processed += 1
            if _store_chunk_embedding(chunk, provider):
                backfilled += 1
                db.commit()
                if chunk.document_id not in touched:
                    touched.append(chunk.document_id)
            else:
                skipped += 1
        documents_ready = 0
        for document_id in touched:
            if _refresh_document_status(db, document_id):
                documents_ready += 1
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

    stats = {
        "status": "ok",
        "processed": processed,
        "backfilled": backfilled,
        "skipped_count": skipped,
        "documents_ready": documents_ready,
    }
    if circuit_opened:
        stats.update({"status": "skipped", "reason": "circuit_open"})
    return stats


def embed_pending_documents(limit: int = EMBEDDING_BACKFILL_BATCH_LIMIT) -> dict:
    """Embed up to ``limit`` pending chunks across all documents."""
    return _run_embedding_backfill(limit)


async def _embedding_backfill_loop() -> None:
    if EMBEDDING_BACKFILL_INTERVAL_SECONDS <= 0:
        return
    while True:
        await asyncio.sleep(EMBEDDING_BACKFILL_INTERVAL_SECONDS)
        try:
            stats = await asyncio.to_thread(_run_embedding_backfill)
            if stats.get("status") == "ok" and stats.get("backfilled", 0) > 0:
                logger.debug("embedding_backfill_complete", extra=stats)
        except Exception as exc:
            logger.warning(f"Embedding backfill error: {exc}")
