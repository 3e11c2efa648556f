"""
Instance memory database models
PostgreSQL + pgvector schema (SQLite for local/dev)
"""

from datetime import datetime, timezone
import uuid
from sqlalchemy import (
    Column, Integer, BigInteger, String, Text, DateTime, ForeignKey,
    Index, UniqueConstraint, JSON,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship, declarative_base

import core.config as config

DB_BACKEND_EFFECTIVE = config.DB_BACKEND_EFFECTIVE
VECTOR_BACKEND_EFFECTIVE = config.VECTOR_BACKEND_EFFECTIVE

try:
    from pgvector.sqlalchemy import Vector as PgVector
    PGVECTOR_AVAILABLE = True
except ImportError:
    PgVector = None
    PGVECTOR_AVAILABLE = False

if (
    DB_BACKEND_EFFECTIVE == "postgres"
    and VECTOR_BACKEND_EFFECTIVE == "pgvector"
    and PGVECTOR_AVAILABLE
):
    EMBEDDING_COLUMN_TYPE = PgVector(config.EMBEDDING_DIM)
    EMBEDDING_IS_VECTOR = True
else:
    EMBEDDING_COLUMN_TYPE = JSON(none_as_null=True)
    EMBEDDING_IS_VECTOR = False

DOCUMENT_STATUS_INDEXING = "indexing"
DOCUMENT_STATUS_READY = "ready"

JSON_TYPE = JSONB if DB_BACKEND_EFFECTIVE == "postgres" else JSON
ID_TYPE = String(36)


def _uuid_default() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp; all stored times are naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


Base = declarative_base()

# =============================================================================
# Instances & operator sessions (provisioned by the outer layers)
# =============================================================================

class AgentInstance(Base):
    __tablename__ = "agent_instances"

    id = Column(ID_TYPE, primary_key=True, default=_uuid_default)
    owner_id = Column(String(255), nullable=False)
    name = Column(String(255))
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_agent_instances_owner_id", "owner_id"),
    )


class OperatorSession(Base):
    __tablename__ = "operator_sessions"

    token_hash = Column(String(64), primary_key=True)  # sha256 hex of the session token
    operator_id = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_operator_sessions_expires_at", "expires_at"),
    )


# =============================================================================
# Memory configuration (one row per instance, created lazily)
# =============================================================================

class MemoryConfig(Base):
    __tablename__ = "memory_configs"

    instance_id = Column(ID_TYPE, primary_key=True)
    memory_api_key = Column(String(128), nullable=False)
    max_documents_mb = Column(Integer, nullable=False, default=config.DEFAULT_MAX_DOCUMENTS_MB)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


# =============================================================================
# Decisions
# =============================================================================

class Decision(Base):
    __tablename__ = "memory_decisions"

    id = Column(ID_TYPE, primary_key=True, default=_uuid_default)
    instance_id = Column(ID_TYPE, nullable=False)
    sender_id = Column(String(255))
    context = Column(Text, nullable=False)
    decision = Column(Text, nullable=False)
    reasoning = Column(JSON_TYPE, nullable=False)  # ordered list of strings
    alternatives_considered = Column(JSON_TYPE, default=list)
    tags = Column(JSON_TYPE, default=list)
    outcome = Column(Text)
    outcome_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    tag_rows = relationship("DecisionTag", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_memory_decisions_instance_created", "instance_id", "created_at"),
    )


class DecisionTag(Base):
    """One row per (decision, tag); backs the tag-intersection filter."""
    __tablename__ = "memory_decision_tags"

    decision_id = Column(
        ID_TYPE, ForeignKey("memory_decisions.id", ondelete="CASCADE"), primary_key=True
    )
    tag = Column(String(255), primary_key=True)
    instance_id = Column(ID_TYPE, nullable=False)

    __table_args__ = (
        Index("ix_memory_decision_tags_instance_tag", "instance_id", "tag"),
    )


# =============================================================================
# Episodes
# =============================================================================

class Episode(Base):
    __tablename__ = "memory_episodes"

    id = Column(ID_TYPE, primary_key=True, default=_uuid_default)
    instance_id = Column(ID_TYPE, nullable=False)
    sender_id = Column(String(255))
    summary = Column(Text, nullable=False)
    tags = Column(JSON_TYPE, default=list)
    happened_at = Column(DateTime, default=utcnow, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_memory_episodes_instance_happened", "instance_id", "happened_at"),
        Index("ix_memory_episodes_instance_sender", "instance_id", "sender_id"),
    )


# =============================================================================
# Profiles (one per counterpart)
# =============================================================================

class Profile(Base):
    __tablename__ = "memory_profiles"

    id = Column(ID_TYPE, primary_key=True, default=_uuid_default)
    instance_id = Column(ID_TYPE, nullable=False)
    sender_id = Column(String(255), nullable=False)
    name = Column(String(255))
    role = Column(String(255))
    timezone = Column(String(100))
    communication_style = Column(Text)
    current_focus = Column(Text)
    relationship_context = Column(Text)
    preferences = Column(JSON_TYPE, default=list)
    metadata_ = Column("metadata", JSON_TYPE, default=dict)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("instance_id", "sender_id", name="uq_memory_profiles_instance_sender"),
    )


# =============================================================================
# Knowledge documents
# =============================================================================

class KnowledgeDocument(Base):
    __tablename__ = "knowledge_documents"

    id = Column(ID_TYPE, primary_key=True, default=_uuid_default)
    instance_id = Column(ID_TYPE, nullable=False)
    filename = Column(String(500), nullable=False)
    mime_type = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    size_bytes = Column(BigInteger, nullable=False)
    status = Column(String(20), default=DOCUMENT_STATUS_INDEXING, nullable=False)
    chunk_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    chunks = relationship(
        "DocumentChunk",
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="DocumentChunk.chunk_index",
    )

    __table_args__ = (
        Index("ix_knowledge_documents_instance_created", "instance_id", "created_at"),
    )


class DocumentChunk(Base):
    """Word window of a document; the unit of embedding and ranking."""
    __tablename__ = "document_chunks"

    id = Column(ID_TYPE, primary_key=True, default=_uuid_default)
    document_id = Column(
        ID_TYPE, ForeignKey("knowledge_documents.id", ondelete="CASCADE"), nullable=False
    )
    instance_id = Column(ID_TYPE, nullable=False)
    chunk_index = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)
    embedding = Column(EMBEDDING_COLUMN_TYPE, nullable=True)
    embedding_model = Column(String(100))
    created_at = Column(DateTime, default=utcnow, nullable=False)

    document = relationship("KnowledgeDocument", back_populates="chunks")

    __table_args__ = (
        UniqueConstraint("document_id", "chunk_index", name="uq_document_chunks_document_index"),
        Index("ix_document_chunks_instance_id", "instance_id"),
    )


# =============================================================================
# Audit Events
# =============================================================================

class AuditEvent(Base):
    __tablename__ = "audit_events"

    event_id = Column(ID_TYPE, primary_key=True, default=_uuid_default)
    instance_id = Column(ID_TYPE, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    event_type = Column(String(100), nullable=False)
    event_version = Column(Integer, default=1, nullable=False)
    actor_type = Column(String(50), nullable=False)
    actor_id = Column(String(255))
    target_type = Column(String(50), nullable=False)
    target_ids = Column(JSON_TYPE, nullable=False)
    count_affected = Column(Integer)
    reason = Column(Text)
    request_id = Column(String(255))
    metadata_ = Column("metadata", JSON_TYPE)

    __table_args__ = (
        Index("ix_audit_events_created_at", "created_at"),
        Index("ix_audit_events_event_type", "event_type"),
        Index("ix_audit_events_instance_id", "instance_id"),
    )


__all__ = [
    "Base",
    "AgentInstance",
    "OperatorSession",
    "MemoryConfig",
    "Decision",
    "DecisionTag",
    "Episode",
    "Profile",
    "KnowledgeDocument",
    "DocumentChunk",
    "AuditEvent",
    "utcnow",
]
