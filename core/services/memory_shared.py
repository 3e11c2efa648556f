"""
Shared helpers and configuration for memory services.
"""

from __future__ import annotations

from datetime import datetime
from functools import wraps
from typing import Any, Callable, Optional

import core.config as config
from core.audit import log_event
from core.context import AccessGrant, current_request_id, resolve_actor
from core.errors import MemoryServiceError, ValidationIssue

# =============================================================================
# Configuration
# =============================================================================

logger = config.logger

DEFAULT_SENDER_ID = config.DEFAULT_SENDER_ID
DEFAULT_LIST_LIMIT = config.DEFAULT_LIST_LIMIT
MAX_LIST_LIMIT = config.MAX_LIST_LIMIT
MAX_TEXT_LENGTH = config.MAX_TEXT_LENGTH
MAX_SHORT_TEXT_LENGTH = config.MAX_SHORT_TEXT_LENGTH
MAX_QUERY_LENGTH = config.MAX_QUERY_LENGTH
MAX_LIST_ITEMS = config.MAX_LIST_ITEMS
MAX_LIST_ITEM_LENGTH = config.MAX_LIST_ITEM_LENGTH
MAX_FILENAME_LENGTH = config.MAX_FILENAME_LENGTH

SEARCH_TOP_K_DEFAULT = config.SEARCH_TOP_K_DEFAULT
SEARCH_TOP_K_MIN = config.SEARCH_TOP_K_MIN
SEARCH_TOP_K_MAX = config.SEARCH_TOP_K_MAX
SEARCH_SNIPPET_LENGTH = config.SEARCH_SNIPPET_LENGTH

BYTES_PER_MB = 1024 * 1024


# =============================================================================
# Helper Functions
# =============================================================================

def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _bytes_to_mb(value: int) -> float:
    return (value or 0) / BYTES_PER_MB


def _snippet(text: Optional[str], length: int = SEARCH_SNIPPET_LENGTH) -> str:
    if not text:
        return ""
    collapsed = " ".join(text.split())
    if len(collapsed) <= length:
        return collapsed
    return collapsed[:length].rstrip() + "..."


def _normalize_sender(sender_id: Optional[str]) -> Optional[str]:
    if sender_id is None:
        return None
    if not isinstance(sender_id, str):
        raise ValidationIssue("sender_id must be a string", field="sender_id", error_type="invalid_type")
    cleaned = sender_id.strip()
    if len(cleaned) > MAX_SHORT_TEXT_LENGTH:
        raise ValidationIssue(
            f"sender_id exceeds max length {MAX_SHORT_TEXT_LENGTH}",
            field="sender_id",
            error_type="max_length",
        )
    return cleaned or None


def _audit(
    db,
    instance_id: str,
    grant: Optional[AccessGrant],
    *,
    event_type: str,
    target_type: str,
    target_ids: list[Any],
    metadata: Optional[dict] = None,
) -> None:
    actor_type, actor_id = resolve_actor(grant)
    log_event(
        db,
        instance_id=instance_id,
        event_type=event_type,
        actor_type=actor_type,
        actor_id=actor_id,
        target_type=target_type,
        target_ids=target_ids,
        count_affected=len(target_ids),
        request_id=current_request_id(),
        metadata=metadata,
    )


def _log_validation_issue(tool_name: str, exc: ValidationIssue, warn: bool = False) -> None:
    payload = {
        "tool": tool_name,
        "field": exc.field,
        "error_type": exc.error_type,
        "detail": str(exc),
    }
    if warn:
        logger.warning("tool_validation_error", extra=payload)
    else:
        logger.info("tool_validation_error", extra=payload)


def service_tool(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Log domain errors raised by a service operation and let them propagate."""

    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except ValidationIssue as exc:
            _log_validation_issue(fn.__name__, exc, warn=False)
            raise
        except MemoryServiceError as exc:
            logger.info(
                "service_error",
                extra={"tool": fn.__name__, "error_kind": exc.error_kind},
            )
            raise
    return wrapper
