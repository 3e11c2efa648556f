"""
Shared configuration for the instance memory core.
"""

from __future__ import annotations

import logging
import os

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("instance_memory")


def _get_bool(env_name: str, default: bool) -> bool:
    value = os.environ.get(env_name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(env_name: str, default: int) -> int:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float(env_name: str, default: float) -> float:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _get_list(env_name: str, default: list[str]) -> list[str]:
    value = os.environ.get(env_name)
    if value is None:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


def _derive_effective_backends(db_backend: str, vector_backend: str) -> tuple[str, str]:
    db_effective = db_backend if db_backend in {"postgres", "sqlite"} else "postgres"
    vector_effective = vector_backend if vector_backend in {"pgvector", "none"} else "none"
    if db_effective == "sqlite" and vector_effective == "pgvector":
        vector_effective = "none"
    return db_effective, vector_effective


# Database settings
DB_BACKEND = os.environ.get("DB_BACKEND", "postgres").strip().lower()
VECTOR_BACKEND = os.environ.get("VECTOR_BACKEND", "pgvector").strip().lower()
SQLITE_PATH = os.environ.get("SQLITE_PATH", "/data/instance_memory.db")
DATABASE_URL = os.environ.get("DATABASE_URL")
DB_BACKEND_EFFECTIVE, VECTOR_BACKEND_EFFECTIVE = _derive_effective_backends(
    DB_BACKEND,
    VECTOR_BACKEND,
)

# Embedding settings
OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
OPENAI_EMBEDDINGS_URL = os.environ.get(
    "OPENAI_EMBEDDINGS_URL", "https://api.openai.com/v1/embeddings"
)
EMBEDDING_MODEL = "text-embedding-3-small"
EMBEDDING_DIM = 1536

# Database initialization controls
AUTO_CREATE_EXTENSIONS = _get_bool("AUTO_CREATE_EXTENSIONS", True)
AUTO_MIGRATE_ON_STARTUP = _get_bool("AUTO_MIGRATE_ON_STARTUP", True)

# Operator session handling
SESSION_COOKIE_NAME = os.environ.get("MEMORY_SESSION_COOKIE", "memory_session")
SESSION_HEADER_NAME = os.environ.get("MEMORY_SESSION_HEADER", "X-Operator-Session")
SESSION_CLEANUP_INTERVAL_SECONDS = _get_int("SESSION_CLEANUP_INTERVAL_SECONDS", 900)

# Memory store defaults
DEFAULT_MAX_DOCUMENTS_MB = _get_int("MEMORY_DEFAULT_MAX_DOCUMENTS_MB", 500)
MEMORY_API_KEY_BYTES = _get_int("MEMORY_API_KEY_BYTES", 32)
DEFAULT_SENDER_ID = "default"
DEFAULT_LIST_LIMIT = _get_int("MEMORY_DEFAULT_LIST_LIMIT", 50)
MAX_LIST_LIMIT = _get_int("MEMORY_MAX_LIST_LIMIT", 200)
SEARCH_TOP_K_DEFAULT = _get_int("MEMORY_SEARCH_TOP_K_DEFAULT", 5)
SEARCH_TOP_K_MIN = _get_int("MEMORY_SEARCH_TOP_K_MIN", 1)
SEARCH_TOP_K_MAX = _get_int("MEMORY_SEARCH_TOP_K_MAX", 20)
SEARCH_SNIPPET_LENGTH = _get_int("MEMORY_SEARCH_SNIPPET_LENGTH", 300)

# Document chunking
CHUNK_WORDS = _get_int("MEMORY_CHUNK_WORDS", 500)
CHUNK_OVERLAP_WORDS = _get_int("MEMORY_CHUNK_OVERLAP_WORDS", 50)

# Request/input limits
MAX_QUERY_LENGTH = _get_int("MEMORY_MAX_QUERY_LENGTH", 4000)
MAX_TEXT_LENGTH = _get_int("MEMORY_MAX_TEXT_LENGTH", 8000)
MAX_SHORT_TEXT_LENGTH = _get_int("MEMORY_MAX_SHORT_TEXT_LENGTH", 255)
MAX_FILENAME_LENGTH = _get_int("MEMORY_MAX_FILENAME_LENGTH", 500)
MAX_METADATA_BYTES = _get_int("MEMORY_MAX_METADATA_BYTES", 20000)
MAX_LIST_ITEMS = _get_int("MEMORY_MAX_LIST_ITEMS", 50)
MAX_LIST_ITEM_LENGTH = _get_int("MEMORY_MAX_LIST_ITEM_LENGTH", 1000)
MAX_TAG_ITEMS = _get_int("MEMORY_MAX_TAG_ITEMS", MAX_LIST_ITEMS)
MAX_EMBEDDING_TEXT_LENGTH = _get_int("MEMORY_MAX_EMBEDDING_TEXT_LENGTH", 8000)
MAX_UPLOAD_BYTES = _get_int("MEMORY_MAX_UPLOAD_BYTES", 50 * 1024 * 1024)

# Text extraction
EXTRACTION_TIMEOUT_SECONDS = _get_float("EXTRACTION_TIMEOUT_SECONDS", 60.0)

# OpenAI retry/backoff
EMBEDDING_TIMEOUT_SECONDS = _get_float("EMBEDDING_TIMEOUT_SECONDS", 30.0)
EMBEDDING_RETRY_MAX = _get_int("EMBEDDING_RETRY_MAX", 2)
EMBEDDING_RETRY_BACKOFF_SECONDS = _get_float("EMBEDDING_RETRY_BACKOFF_SECONDS", 0.5)
EMBEDDING_RETRY_JITTER_SECONDS = _get_float("EMBEDDING_RETRY_JITTER_SECONDS", 0.25)
EMBEDDING_FAILURE_THRESHOLD = _get_int("EMBEDDING_FAILURE_THRESHOLD", 5)
EMBEDDING_COOLDOWN_SECONDS = _get_int("EMBEDDING_COOLDOWN_SECONDS", 60)
EMBEDDING_HEALTHCHECK_ENABLED = _get_bool("EMBEDDING_HEALTHCHECK_ENABLED", True)
EMBEDDING_PROVIDER = os.environ.get("EMBEDDING_PROVIDER", "openai").strip().lower()
EMBEDDING_BACKFILL_ENABLED = _get_bool("EMBEDDING_BACKFILL_ENABLED", True)
EMBEDDING_BACKFILL_INTERVAL_SECONDS = _get_int("EMBEDDING_BACKFILL_INTERVAL_SECONDS", 300)
EMBEDDING_BACKFILL_BATCH_LIMIT = _get_int("EMBEDDING_BACKFILL_BATCH_LIMIT", 50)

# HTTP surface
CORS_ALLOWED_ORIGINS = _get_list("CORS_ALLOWED_ORIGINS", [])
TRUSTED_HOSTS = _get_list("TRUSTED_HOSTS", [])
# SQLite ignores FOR UPDATE; its quota path is serialized per process only
WEB_CONCURRENCY = _get_int("WEB_CONCURRENCY", 1)


def validate_and_prepare_config() -> None:
    """Validate configuration and apply derived settings at startup."""
    global DATABASE_URL, DB_BACKEND_EFFECTIVE, VECTOR_BACKEND_EFFECTIVE

    errors = []
    if DB_BACKEND not in {"postgres", "sqlite"}:
        errors.append("DB_BACKEND must be 'postgres' or 'sqlite'")

    if VECTOR_BACKEND not in {"pgvector", "none"}:
        errors.append("VECTOR_BACKEND must be 'pgvector' or 'none'")

    if DB_BACKEND == "sqlite" and VECTOR_BACKEND == "pgvector":
        errors.append("VECTOR_BACKEND=pgvector requires DB_BACKEND=postgres")

    if EMBEDDING_PROVIDER not in {"openai", "none"}:
        errors.append("EMBEDDING_PROVIDER must be 'openai' or 'none'")

    if not DATABASE_URL:
        if DB_BACKEND == "sqlite":
            if not SQLITE_PATH:
                errors.append("SQLITE_PATH environment variable is required for sqlite")
            else:
                DATABASE_URL = f"sqlite:///{SQLITE_PATH}"
        else:
            errors.append("DATABASE_URL environment variable is required")
    else:
        url_lower = DATABASE_URL.lower()
        is_sqlite_url = url_lower.startswith("sqlite")
        if DB_BACKEND == "sqlite" and not is_sqlite_url:
            errors.append("DATABASE_URL must be a sqlite URL when DB_BACKEND=sqlite")
        if DB_BACKEND == "postgres" and is_sqlite_url:
            errors.append("DATABASE_URL must be a postgres URL when DB_BACKEND=postgres")

    DB_BACKEND_EFFECTIVE, VECTOR_BACKEND_EFFECTIVE = _derive_effective_backends(
        DB_BACKEND,
        VECTOR_BACKEND,
    )

    if SEARCH_TOP_K_MIN < 1 or SEARCH_TOP_K_MAX < SEARCH_TOP_K_MIN:
        errors.append("MEMORY_SEARCH_TOP_K_MIN/MAX must satisfy 1 <= min <= max")

    if DEFAULT_MAX_DOCUMENTS_MB <= 0:
        errors.append("MEMORY_DEFAULT_MAX_DOCUMENTS_MB must be positive")

    if CHUNK_WORDS < 1 or not 0 <= CHUNK_OVERLAP_WORDS < CHUNK_WORDS:
        errors.append("MEMORY_CHUNK_OVERLAP_WORDS must satisfy 0 <= overlap < MEMORY_CHUNK_WORDS")

    if DB_BACKEND == "sqlite" and WEB_CONCURRENCY > 1:
        errors.append(
            "DB_BACKEND=sqlite supports a single worker process; "
            "set WEB_CONCURRENCY=1 or use postgres"
        )

    if VECTOR_BACKEND_EFFECTIVE == "pgvector":
        from core.models import PGVECTOR_AVAILABLE

        if not PGVECTOR_AVAILABLE:
            errors.append("pgvector package is required when VECTOR_BACKEND=pgvector")

    if EMBEDDING_PROVIDER == "openai" and not OPENAI_API_KEY:
        logger.warning(
            "EMBEDDING_PROVIDER=openai without OPENAI_API_KEY; document search will be lexical."
        )

    if errors:
        raise RuntimeError("Configuration invalid: " + "; ".join(errors))
