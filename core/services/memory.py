"""
Public service surface for instance memory.

Route handlers and tests import from here rather than from the individual
store modules.
"""

from core.services.memory_config import (
    get_or_create_memory_config,
    memory_stats,
    rotate_memory_api_key,
    set_document_quota,
)
from core.services.memory_decisions import (
    get_decision,
    list_decisions,
    store_decision,
    update_decision_outcome,
)
from core.services.memory_documents import (
    chunk_text,
    delete_document,
    get_document,
    ingest_document,
    list_documents,
)
from core.services.memory_embeddings import (
    DisabledEmbeddingProvider,
    EmbeddingProvider,
    EmbeddingResult,
    OpenAIEmbeddingProvider,
    cleanup_embedding_provider,
    embed_document,
    embed_pending_documents,
    embedding_circuit_breaker,
    get_embedding_provider,
    set_embedding_provider,
    _embedding_backfill_loop,
    _run_embedding_backfill,
)
from core.services.memory_episodes import list_episodes, store_episode
from core.services.memory_profiles import (
    delete_profile,
    get_profile,
    list_profiles,
    upsert_profile,
)
from core.services.memory_quota import current_usage_mb, document_usage, ensure_quota_available
from core.services.memory_search import memory_search
from core.services.text_extraction import (
    extract_text,
    extract_text_with_timeout,
    set_text_extractor,
)

__all__ = [
    "get_or_create_memory_config",
    "memory_stats",
    "rotate_memory_api_key",
    "set_document_quota",
    "get_decision",
    "list_decisions",
    "store_decision",
    "update_decision_outcome",
    "chunk_text",
    "delete_document",
    "get_document",
    "ingest_document",
    "list_documents",
    "DisabledEmbeddingProvider",
    "EmbeddingProvider",
    "EmbeddingResult",
    "OpenAIEmbeddingProvider",
    "cleanup_embedding_provider",
    "embed_document",
    "embed_pending_documents",
    "embedding_circuit_breaker",
    "get_embedding_provider",
    "set_embedding_provider",
    "_embedding_backfill_loop",
    "_run_embedding_backfill",
    "list_episodes",
    "store_episode",
    "delete_profile",
    "get_profile",
    "list_profiles",
    "upsert_profile",
    "current_usage_mb",
    "document_usage",
    "ensure_quota_available",
    "memory_search",
    "extract_text",
    "extract_text_with_timeout",
    "set_text_extractor",
]
