"""Instance memory schema.

Revision ID: 0001_instance_memory
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

import core.config as config


revision = "0001_instance_memory"
down_revision = None
branch_labels = None
depends_on = None


def _embedding_type(is_postgres: bool):
    if is_postgres and config.VECTOR_BACKEND_EFFECTIVE == "pgvector":
        from pgvector.sqlalchemy import Vector

        return Vector(config.EMBEDDING_DIM)
    return sa.JSON()


def upgrade() -> None:
    bind = op.get_bind()
    is_postgres = bind.dialect.name == "postgresql"
    json_type = postgresql.JSONB if is_postgres else sa.JSON
    id_type = sa.String(length=36)

    op.create_table(
        "agent_instances",
        sa.Column("id", id_type, primary_key=True),
        sa.Column("owner_id", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_agent_instances_owner_id", "agent_instances", ["owner_id"])

    op.create_table(
        "operator_sessions",
        sa.Column("token_hash", sa.String(length=64), primary_key=True),
        sa.Column("operator_id", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_operator_sessions_expires_at", "operator_sessions", ["expires_at"])

    op.create_table(
        "memory_configs",
        sa.Column("instance_id", id_type, primary_key=True),
        sa.Column("memory_api_key", sa.String(length=128), nullable=False),
        sa.Column("max_documents_mb", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "memory_decisions",
        sa.Column("id", id_type, primary_key=True),
        sa.Column("instance_id", id_type, nullable=False),
        sa.Column("sender_id", sa.String(length=255)),
        sa.Column("context", sa.Text(), nullable=False),
        sa.Column("decision", sa.Text(), nullable=False),
        sa.Column("reasoning", json_type, nullable=False),
        sa.Column("alternatives_considered", json_type),
        sa.Column("tags", json_type),
        sa.Column("outcome", sa.Text()),
        sa.Column("outcome_at", sa.DateTime()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_memory_decisions_instance_created",
        "memory_decisions",
        ["instance_id", "created_at"],
    )

    op.create_table(
        "memory_decision_tags",
        sa.Column(
            "decision_id",
            id_type,
            sa.ForeignKey("memory_decisions.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("tag", sa.String(length=255), primary_key=True),
        sa.Column("instance_id", id_type, nullable=False),
    )
    op.create_index(
        "ix_memory_decision_tags_instance_tag",
        "memory_decision_tags",
        ["instance_id", "tag"],
    )

    op.create_table(
        "memory_episodes",
        sa.Column("id", id_type, primary_key=True),
        sa.Column("instance_id", id_type, nullable=False),
        sa.Column("sender_id", sa.String(length=255)),
        sa.Column("summary", sa.Text(), nullable=False),
        sa.Column("tags", json_type),
        sa.Column("happened_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_memory_episodes_instance_happened",
        "memory_episodes",
        ["instance_id", "happened_at"],
    )
    op.create_index(
        "ix_memory_episodes_instance_sender",
        "memory_episodes",
        ["instance_id", "sender_id"],
    )

    op.create_table(
        "memory_profiles",
        sa.Column("id", id_type, primary_key=True),
        sa.Column("instance_id", id_type, nullable=False),
        sa.Column("sender_id", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255)),
        sa.Column("role", sa.String(length=255)),
        sa.Column("timezone", sa.String(length=100)),
        sa.Column("communication_style", sa.Text()),
        sa.Column("current_focus", sa.Text()),
        sa.Column("relationship_context", sa.Text()),
        sa.Column("preferences", json_type),
        sa.Column("metadata", json_type),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("instance_id", "sender_id", name="uq_memory_profiles_instance_sender"),
    )

    op.create_table(
        "knowledge_documents",
        sa.Column("id", id_type, primary_key=True),
        sa.Column("instance_id", id_type, nullable=False),
        sa.Column("filename", sa.String(length=500), nullable=False),
        sa.Column("mime_type", sa.String(length=255), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="indexing"),
        sa.Column("chunk_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_knowledge_documents_instance_created",
        "knowledge_documents",
        ["instance_id", "created_at"],
    )

    op.create_table(
        "document_chunks",
        sa.Column("id", id_type, primary_key=True),
        sa.Column(
            "document_id",
            id_type,
            sa.ForeignKey("knowledge_documents.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("instance_id", id_type, nullable=False),
        sa.Column("chunk_index", sa.Integer(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("embedding", _embedding_type(is_postgres), nullable=True),
        sa.Column("embedding_model", sa.String(length=100)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("document_id", "chunk_index", name="uq_document_chunks_document_index"),
    )
    op.create_index("ix_document_chunks_instance_id", "document_chunks", ["instance_id"])

    op.create_table(
        "audit_events",
        sa.Column("event_id", id_type, primary_key=True),
        sa.Column("instance_id", id_type, nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("event_type", sa.String(length=100), nullable=False),
        sa.Column("event_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("actor_type", sa.String(length=50), nullable=False),
        sa.Column("actor_id", sa.String(length=255)),
        sa.Column("target_type", sa.String(length=50), nullable=False),
        sa.Column("target_ids", json_type, nullable=False),
        sa.Column("count_affected", sa.Integer()),
        sa.Column("reason", sa.Text()),
        sa.Column("request_id", sa.String(length=255)),
        sa.Column("metadata", json_type),
    )
    op.create_index("ix_audit_events_created_at", "audit_events", ["created_at"])
    op.create_index("ix_audit_events_event_type", "audit_events", ["event_type"])
    op.create_index("ix_audit_events_instance_id", "audit_events", ["instance_id"])


def downgrade() -> None:
    op.drop_table("audit_events")
    op.drop_table("document_chunks")
    op.drop_table("knowledge_documents")
    op.drop_table("memory_profiles")
    op.drop_table("memory_episodes")
    op.drop_table("memory_decision_tags")
    op.drop_table("memory_decisions")
    op.drop_table("memory_configs")
    op.drop_table("operator_sessions")
    op.drop_table("agent_instances")
