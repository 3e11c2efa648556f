"""
Request-scoped context objects for core services.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
import contextvars

ACTOR_OPERATOR = "operator"
ACTOR_AGENT = "agent"
ACTOR_SYSTEM = "system"


@dataclass(frozen=True)
class AccessGrant:
    """Proof that a caller passed the access guard for one instance."""

    instance_id: str
    actor_type: str
    actor_id: Optional[str] = None

    @property
    def is_operator(self) -> bool:
        return self.actor_type == ACTOR_OPERATOR


@dataclass(frozen=True)
class RequestContext:
    grant: Optional[AccessGrant] = None
    request_id: Optional[str] = None
    source: Optional[str] = None


_CURRENT_REQUEST_CONTEXT: contextvars.ContextVar[Optional["RequestContext"]] = contextvars.ContextVar(
    "instance_memory_request_context",
    default=None,
)


def get_current_request_context() -> Optional["RequestContext"]:
    return _CURRENT_REQUEST_CONTEXT.get()


def set_current_request_context(context: Optional["RequestContext"]) -> contextvars.Token:
    return _CURRENT_REQUEST_CONTEXT.set(context)


def reset_current_request_context(token: contextvars.Token) -> None:
    _CURRENT_REQUEST_CONTEXT.reset(token)


def resolve_actor(grant: Optional[AccessGrant]) -> tuple[str, Optional[str]]:
    """Actor (type, id) for audit records; background work is the system."""
    if grant is None:
        context = get_current_request_context()
        grant = context.grant if context is not None else None
    if grant is None:
        return ACTOR_SYSTEM, None
    return grant.actor_type, grant.actor_id


def current_request_id() -> Optional[str]:
    context = get_current_request_context()
    return context.request_id if context is not None else None


__all__ = [
    "ACTOR_OPERATOR",
    "ACTOR_AGENT",
    "ACTOR_SYSTEM",
    "AccessGrant",
    "RequestContext",
    "get_current_request_context",
    "set_current_request_context",
    "reset_current_request_context",
    "resolve_actor",
    "current_request_id",
]
