"""
Access guard for instance memory.

Two independent ways in: an operator session whose owner owns the instance,
or the instance's memory API key. Policies are tried in order and a denial
never says which one failed.
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from typing import Optional, Sequence

import core.config as config
from core.context import ACTOR_AGENT, ACTOR_OPERATOR, AccessGrant
from core.db import DB
from core.errors import Unauthorized
from core.models import AgentInstance, OperatorSession, utcnow
from core.services.memory_config import find_memory_config

logger = config.logger


@dataclass(frozen=True)
class Credentials:
    """Everything a request presented that could prove access."""

    session_token: Optional[str] = None
    bearer_token: Optional[str] = None
    query_key: Optional[str] = None
    method: str = "GET"

    def memory_key_candidates(self) -> list[str]:
        candidates = []
        if self.bearer_token:
            candidates.append(self.bearer_token)
        # query-string keys are honored on GET only
        if self.query_key and self.method.upper() == "GET":
            candidates.append(self.query_key)
        return candidates


def hash_session_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class AccessPolicy:
    name = "base"

    def authorize(self, db, instance_id: str, credentials: Credentials) -> Optional[AccessGrant]:
        raise NotImplementedError


class SessionOwnershipPolicy(AccessPolicy):
    name = "session"

    def authorize(self, db, instance_id: str, credentials: Credentials) -> Optional[AccessGrant]:
        if not credentials.session_token:
            return None
        session = (
            db.query(OperatorSession)
            .filter(
                OperatorSession.token_hash == hash_session_token(credentials.session_token),
                OperatorSession.expires_at > utcnow(),
            )
            .first()
        )
        if session is None:
            return None
        owned = (
            db.query(AgentInstance.id)
            .filter(AgentInstance.id == instance_id, AgentInstance.owner_id == session.operator_id)
            .first()
        )
        if owned is None:
            return None
        return AccessGrant(instance_id=instance_id, actor_type=ACTOR_OPERATOR, actor_id=session.operator_id)


class MemoryKeyPolicy(AccessPolicy):
    name = "memory_key"

    def authorize(self, db, instance_id: str, credentials: Credentials) -> Optional[AccessGrant]:
        candidates = credentials.memory_key_candidates()
        if not candidates:
            return None
        # Never creates the config: an instance without one has no valid key yet.
        row = find_memory_config(db, instance_id)
        if row is None or not row.memory_api_key:
            return None
        expected = row.memory_api_key.encode("utf-8")
        for candidate in candidates:
            if secrets.compare_digest(candidate.encode("utf-8"), expected):
                return AccessGrant(instance_id=instance_id, actor_type=ACTOR_AGENT, actor_id="memory_key")
        return None


DEFAULT_POLICIES: tuple[AccessPolicy, ...] = (SessionOwnershipPolicy(), MemoryKeyPolicy())


class AccessGuard:
    def __init__(self, policies: Sequence[AccessPolicy] = DEFAULT_POLICIES):
        self._policies = tuple(policies)

    def authorize_with_session(self, db, instance_id: str, credentials: Credentials) -> AccessGrant:
        if instance_id:
            for policy in self._policies:
                grant = policy.authorize(db, instance_id, credentials)
                if grant is not None:
                    return grant
        logger.info("access_denied", extra={"instance_id": instance_id})
        raise Unauthorized()

    def authorize(self, instance_id: str, credentials: Credentials) -> AccessGrant:
        db = DB.SessionLocal()
        try:
            return self.authorize_with_session(db, instance_id, credentials)
        finally:
            db.close()


access_guard = AccessGuard()


def require_operator(grant: AccessGrant) -> AccessGrant:
    if not grant.is_operator:
        raise Unauthorized()
    return grant


def purge_expired_sessions() -> int:
    db = DB.SessionLocal()
    try:
        removed = (
            db.query(OperatorSession)
            .filter(OperatorSession.expires_at <= utcnow())
            .delete(synchronize_session=False)
        )
        db.commit()
        return removed or 0
    finally:
        db.close()


__all__ = [
    "AccessGrant",
    "AccessGuard",
    "AccessPolicy",
    "Credentials",
    "MemoryKeyPolicy",
    "SessionOwnershipPolicy",
    "access_guard",
    "hash_session_token",
    "purge_expired_sessions",
    "require_operator",
]
