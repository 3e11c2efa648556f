"""
Unified retrieval across profiles, decisions, episodes and knowledge documents.
"""

from __future__ import annotations

import asyncio
import re
from datetime import datetime
from typing import Optional

import numpy as np
from sqlalchemy import text

import core.config as config
from core.db import DB, is_postgres
from core.errors import ValidationIssue
from core.models import EMBEDDING_IS_VECTOR, DocumentChunk, KnowledgeDocument
from core.services.memory_decisions import recent_decisions
from core.services.memory_embeddings import EmbeddingProvider, EmbeddingResult, get_embedding_provider
from core.services.memory_episodes import recent_episodes
from core.services.memory_profiles import load_profile
from core.services.memory_shared import (
    DEFAULT_SENDER_ID,
    MAX_QUERY_LENGTH,
    SEARCH_TOP_K_DEFAULT,
    SEARCH_TOP_K_MAX,
    SEARCH_TOP_K_MIN,
    _iso,
    _normalize_sender,
    _snippet,
    logger,
)
from core.validators import validate_required_text

MODE_VECTOR = "vector"
MODE_LEXICAL = "lexical"
MODE_SKIPPED = "skipped"

STOPWORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "by", "do", "for", "from", "how",
        "in", "is", "it", "of", "on", "or", "that", "the", "this", "to", "was",
        "what", "when", "where", "which", "who", "why", "with",
    }
)
_TERM_RE = re.compile(r"[^\W_]+", re.UNICODE)
LEXICAL_SCAN_BATCH = 500


def clamp_top_k(value) -> int:
    if isinstance(value, bool):
        return SEARCH_TOP_K_DEFAULT
    try:
        top_k = int(value)
    except (TypeError, ValueError):
        return SEARCH_TOP_K_DEFAULT
    return max(SEARCH_TOP_K_MIN, min(top_k, SEARCH_TOP_K_MAX))


def query_terms(query: str) -> list[str]:
    """Casefolded, de-duplicated search terms; falls back to the whole query."""
    terms: list[str] = []
    for token in _TERM_RE.findall(query.casefold()):
        if len(token) < 2 or token in STOPWORDS or token in terms:
            continue
        terms.append(token)
    if not terms:
        whole = query.strip().casefold()
        if whole:
            terms.append(whole)
    return terms


def lexical_score(content: str, terms: list[str], phrase: str) -> float:
    """
    Fraction of distinct terms present, plus a small bonus per occurrence
    (capped) and a fixed bonus when the whole query appears verbatim.
    """
    if not content or not terms:
        return 0.0
    haystack = content.casefold()
    matched = 0
    occurrences = 0
    for term in terms:
        count = haystack.count(term)
        if count:
            matched += 1
            occurrences += count
    if matched == 0:
        return 0.0
    score = matched / len(terms) + 0.01 * min(occurrences, 50)
    if phrase and len(terms) > 1 and phrase in haystack:
        score += 0.5
    return score


def _recency_key(value: Optional[datetime]) -> float:
    return value.timestamp() if value is not None else 0.0


def _document_hit(row, similarity: float, mode: str) -> dict:
    return {
        "id": row.id,
        "filename": row.filename,
        "mime_type": row.mime_type,
        "created_at": _iso(row.created_at),
        "similarity": round(float(similarity), 6),
        "match_mode": mode,
        "chunk_index": row.chunk_index,
        "snippet": _snippet(row.chunk_content),
    }


def _chunk_rows(db, instance_id: str, *columns):
    """Chunk rows joined with their document; ``id`` is the document id."""
    return (
        db.query(
            KnowledgeDocument.id,
            KnowledgeDocument.filename,
            KnowledgeDocument.mime_type,
            KnowledgeDocument.created_at,
            DocumentChunk.chunk_index,
            DocumentChunk.content.label("chunk_content"),
            *columns,
        )
        .select_from(DocumentChunk)
        .join(KnowledgeDocument, KnowledgeDocument.id == DocumentChunk.document_id)
        .filter(DocumentChunk.instance_id == instance_id)
    )


def _keep_best_chunk(best: dict, score: float, row) -> None:
    current = best.get(row.id)
    if (
        current is None
        or score > current[0]
        or (score == current[0] and row.chunk_index < current[1].chunk_index)
    ):
        best[row.id] = (score, row)


def _top_documents(best: dict, top_k: int) -> list:
    ranked = sorted(
        best.values(),
        key=lambda item: (-item[0], -_recency_key(item[1].created_at), item[1].id),
    )
    return ranked[:top_k]


def lexical_document_search(instance_id: str, query: str, top_k: int) -> list[dict]:
    """
    Score every chunk of the instance in Python and rank documents by their
    best chunk. Matching is done on casefolded text, so it does not depend on
    how the database folds case.
    """
    terms = query_terms(query)
    if not terms:
        return []
    phrase = " ".join(query.casefold().split())
    best: dict = {}
    db = DB.SessionLocal()
    try:
        for row in _chunk_rows(db, instance_id).yield_per(LEXICAL_SCAN_BATCH):
            score = lexical_score(row.chunk_content, terms, phrase)
            if score > 0:
                _keep_best_chunk(best, score, row)
    finally:
        db.close()
    return [_document_hit(row, score, MODE_LEXICAL) for score, row in _top_documents(best, top_k)]


def _pgvector_document_search(db, instance_id: str, vector: list[float], top_k: int):
    sql = text(
        """
        SELECT * FROM (
            SELECT DISTINCT ON (c.document_id)
                d.id,
                d.filename,
                d.mime_type,
                d.created_at,
                c.chunk_index,
                c.content AS chunk_content,
                1 - (c.embedding <=> cast(:embedding as vector)) AS similarity
            FROM document_chunks c
            JOIN knowledge_documents d ON d.id = c.document_id
            WHERE c.instance_id = :instance_id
            AND c.embedding IS NOT NULL
            ORDER BY c.document_id, c.embedding <=> cast(:embedding as vector), c.chunk_index
        ) best
        ORDER BY best.similarity DESC, best.created_at DESC, best.id
        LIMIT :limit
        """
    )
    rows = db.execute(
        sql,
        {"embedding": str(vector), "instance_id": instance_id, "limit": top_k},
    ).fetchall()
    return [(row.similarity, row) for row in rows]


def _numpy_document_search(db, instance_id: str, vector: list[float], top_k: int):
    query_vec = np.asarray(vector, dtype=np.float32)
    query_norm = float(np.linalg.norm(query_vec))
    if query_norm == 0.0:
        return []
    rows = _chunk_rows(db, instance_id, DocumentChunk.embedding).filter(
        DocumentChunk.embedding.isnot(None)
    )
    best: dict = {}
    for row in rows:
        chunk_vec = np.asarray(row.embedding, dtype=np.float32)
        if chunk_vec.shape != query_vec.shape:
            continue
        chunk_norm = float(np.linalg.norm(chunk_vec))
        if chunk_norm == 0.0:
            continue
        similarity = float(np.dot(query_vec, chunk_vec) / (query_norm * chunk_norm))
        _keep_best_chunk(best, similarity, row)
    return _top_documents(best, top_k)


def vector_document_search(instance_id: str, vector: list[float], top_k: int) -> list[dict]:
    db = DB.SessionLocal()
    try:
        if EMBEDDING_IS_VECTOR and is_postgres():
            scored = _pgvector_document_search(db, instance_id, vector, top_k)
        else:
            scored = _numpy_document_search(db, instance_id, vector, top_k)
        return [_document_hit(row, similarity, MODE_VECTOR) for similarity, row in scored]
    finally:
        db.close()


async def _embed_query(provider: EmbeddingProvider, query: str) -> EmbeddingResult:
    try:
        return await asyncio.wait_for(provider.embed(query), timeout=config.EMBEDDING_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.warning("Query embedding timed out; using lexical search")
        return EmbeddingResult.unavailable("timeout")
    except Exception as exc:
        logger.warning(
            "Query embedding failed; using lexical search",
            extra={"error": type(exc).__name__},
        )
        return EmbeddingResult.unavailable("provider error")


async def _search_documents(
    instance_id: str,
    query: str,
    top_k: int,
    provider: EmbeddingProvider,
) -> tuple[str, list[dict]]:
    result = await _embed_query(provider, query)
    if result.available:
        hits = await asyncio.to_thread(vector_document_search, instance_id, result.vector, top_k)
        return MODE_VECTOR, hits
    hits = await asyncio.to_thread(lexical_document_search, instance_id, query, top_k)
    return MODE_LEXICAL, hits


async def _skipped(value):
    return value


async def memory_search(
    instance_id: str,
    query: str,
    *,
    top_k=SEARCH_TOP_K_DEFAULT,
    sender_id: Optional[str] = None,
    include_docs: bool = True,
    include_decisions: bool = True,
    include_episodes: bool = True,
    include_profile: bool = True,
    provider: Optional[EmbeddingProvider] = None,
) -> dict:
    """
    One query across all four memory stores.

    Documents are ranked by embedding similarity when the provider yields a
    vector and by term overlap otherwise; provider trouble never fails the
    search. Decisions and episodes are the newest ``top_k``; the profile is
    the one for ``sender_id``. Enabled categories are fetched concurrently,
    disabled ones are not read at all.
    """
    if not isinstance(query, str):
        raise ValidationIssue("query must be a non-empty string", field="query", error_type="required")
    query = query.strip()
    validate_required_text(query, "query", MAX_QUERY_LENGTH)
    effective_top_k = clamp_top_k(top_k)
    sender = _normalize_sender(sender_id) or DEFAULT_SENDER_ID
    episode_sender = None if sender == DEFAULT_SENDER_ID else sender

    if include_docs:
        docs_task = _search_documents(
            instance_id, query, effective_top_k, provider or get_embedding_provider()
        )
    else:
        docs_task = _skipped((MODE_SKIPPED, []))
    decisions_task = (
        asyncio.to_thread(recent_decisions, instance_id, effective_top_k)
        if include_decisions
        else _skipped([])
    )
    episodes_task = (
        asyncio.to_thread(recent_episodes, instance_id, effective_top_k, episode_sender)
        if include_episodes
        else _skipped([])
    )
    profile_task = (
        asyncio.to_thread(load_profile, instance_id, sender)
        if include_profile
        else _skipped(None)
    )

    (document_mode, documents), decisions, episodes, profile = await asyncio.gather(
        docs_task, decisions_task, episodes_task, profile_task
    )
    logger.info(
        "memory_search",
        extra={
            "instance_id": instance_id,
            "document_search_mode": document_mode,
            "top_k": effective_top_k,
        },
    )
    return {
        "status": "ok",
        "query": query,
        "top_k": effective_top_k,
        "document_search_mode": document_mode,
        "results": {
            "profile": profile,
            "decisions": decisions,
            "episodes": episodes,
            "documents": documents,
        },
    }
