"""
Decision store: audit-tracked choices with ordered reasoning and an outcome loop.
"""

from __future__ import annotations

from typing import Optional, Sequence

from sqlalchemy import select

from core.audit_constants import EVENT_DECISION_OUTCOME_SET, EVENT_DECISION_STORED
from core.context import AccessGrant
from core.db import DB
from core.errors import NotFound, ValidationIssue
from core.models import Decision, DecisionTag, utcnow
from core.services.memory_shared import (
    DEFAULT_LIST_LIMIT,
    MAX_LIST_ITEM_LENGTH,
    MAX_LIST_ITEMS,
    MAX_LIST_LIMIT,
    MAX_TEXT_LENGTH,
    _audit,
    _iso,
    _normalize_sender,
    logger,
    service_tool,
)
from core.validators import (
    clamp_limit,
    clamp_offset,
    normalize_tags,
    parse_timestamp,
    validate_required_text,
    validate_string_list,
)


def _serialize_decision(row: Decision) -> dict:
    return {
        "id": row.id,
        "instance_id": row.instance_id,
        "sender_id": row.sender_id,
        "context": row.context,
        "decision": row.decision,
        "reasoning": list(row.reasoning or []),
        "alternatives_considered": list(row.alternatives_considered or []),
        "tags": list(row.tags or []),
        "outcome": row.outcome,
        "outcome_at": _iso(row.outcome_at),
        "created_at": _iso(row.created_at),
        "updated_at": _iso(row.updated_at),
    }


def _validate_reasoning(reasoning) -> list[str]:
    if reasoning is None or isinstance(reasoning, (str, bytes)):
        raise ValidationIssue(
            "reasoning must be a non-empty list of strings",
            field="reasoning",
            error_type="required",
        )
    validate_string_list(reasoning, "reasoning", MAX_LIST_ITEMS, MAX_LIST_ITEM_LENGTH)
    cleaned = [item.strip() for item in reasoning if item.strip()]
    if not cleaned:
        raise ValidationIssue(
            "reasoning must be a non-empty list of strings",
            field="reasoning",
            error_type="required",
        )
    return cleaned


def _load_decision(db, instance_id: str, decision_id: str) -> Decision:
    row = (
        db.query(Decision)
        .filter(Decision.instance_id == instance_id, Decision.id == decision_id)
        .first()
    )
    if row is None:
        raise NotFound("Decision not found", entity="decision")
    return row


@service_tool
def store_decision(
    instance_id: str,
    *,
    context: str,
    decision: str,
    reasoning: Sequence[str],
    sender_id: Optional[str] = None,
    alternatives_considered: Optional[Sequence[str]] = None,
    tags: Optional[Sequence[str]] = None,
    grant: Optional[AccessGrant] = None,
) -> dict:
    """
    Record a decision with its reasoning chain.

    Args:
        context: What situation prompted the decision
        decision: What was decided
        reasoning: Ordered reasons; at least one is required
        alternatives_considered: Options that were weighed and not taken
        tags: Labels used by the list filter

    Returns:
        The stored decision, including its generated id
    """
    validate_required_text(context, "context", MAX_TEXT_LENGTH)
    validate_required_text(decision, "decision", MAX_TEXT_LENGTH)
    reasons = _validate_reasoning(reasoning)
    validate_string_list(
        alternatives_considered, "alternatives_considered", MAX_LIST_ITEMS, MAX_LIST_ITEM_LENGTH
    )
    alternatives = [item.strip() for item in (alternatives_considered or []) if item.strip()]
    tag_values = normalize_tags(tags)
    sender = _normalize_sender(sender_id)

    db = DB.SessionLocal()
    try:
        row = Decision(
            instance_id=instance_id,
            sender_id=sender,
            context=context.strip(),
            decision=decision.strip(),
            reasoning=reasons,
            alternatives_considered=alternatives,
            tags=tag_values,
        )
        row.tag_rows = [DecisionTag(tag=tag, instance_id=instance_id) for tag in tag_values]
        db.add(row)
        db.flush()
        _audit(
            db,
            instance_id,
            grant,
            event_type=EVENT_DECISION_STORED,
            target_type="decision",
            target_ids=[row.id],
            metadata={"tag_count": len(tag_values), "reason_count": len(reasons)},
        )
        db.commit()
        db.refresh(row)
        logger.info("decision_stored", extra={"instance_id": instance_id, "decision_id": row.id})
        return {"status": "ok", "id": row.id, "decision": _serialize_decision(row)}
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@service_tool
def get_decision(instance_id: str, decision_id: str) -> dict:
    db = DB.SessionLocal()
    try:
        return {"status": "ok", "decision": _serialize_decision(_load_decision(db, instance_id, decision_id))}
    finally:
        db.close()


@service_tool
def list_decisions(
    instance_id: str,
    *,
    tags: Optional[Sequence[str]] = None,
    since=None,
    limit=DEFAULT_LIST_LIMIT,
    offset=0,
) -> dict:
    """
    List decisions newest first.

    ``tags`` keeps decisions sharing at least one of the given tags; ``since``
    keeps decisions created at or after that instant. ``limit`` is clamped to
    the server maximum whatever the caller asks for.
    """
    tag_values = normalize_tags(tags)
    since_dt = parse_timestamp(since, "since")
    effective_limit = clamp_limit(limit, DEFAULT_LIST_LIMIT, MAX_LIST_LIMIT)
    effective_offset = clamp_offset(offset)

    db = DB.SessionLocal()
    try:
        query = db.query(Decision).filter(Decision.instance_id == instance_id)
        if tag_values:
            tagged = select(DecisionTag.decision_id).where(
                DecisionTag.instance_id == instance_id,
                DecisionTag.tag.in_(tag_values),
            )
            query = query.filter(Decision.id.in_(tagged))
        if since_dt is not None:
            query = query.filter(Decision.created_at >= since_dt)
        rows = (
            query.order_by(Decision.created_at.desc(), Decision.id.desc())
            .offset(effective_offset)
            .limit(effective_limit)
            .all()
        )
        return {
            "status": "ok",
            "count": len(rows),
            "limit": effective_limit,
            "offset": effective_offset,
            "decisions": [_serialize_decision(row) for row in rows],
        }
    finally:
        db.close()


def recent_decisions(instance_id: str, limit: int) -> list[dict]:
    """Newest ``limit`` decisions; read path for search."""
    db = DB.SessionLocal()
    try:
        rows = (
            db.query(Decision)
            .filter(Decision.instance_id == instance_id)
            .order_by(Decision.created_at.desc(), Decision.id.desc())
            .limit(limit)
            .all()
        )
        return [_serialize_decision(row) for row in rows]
    finally:
        db.close()


@service_tool
def update_decision_outcome(
    instance_id: str,
    decision_id: str,
    outcome: str,
    grant: Optional[AccessGrant] = None,
) -> dict:
    """Close the loop on a decision. Setting it again replaces the earlier outcome."""
    validate_required_text(outcome, "outcome", MAX_TEXT_LENGTH)
    db = DB.SessionLocal()
    try:
        row = _load_decision(db, instance_id, decision_id)
        replaced = row.outcome is not None
        row.outcome = outcome.strip()
        row.outcome_at = utcnow()
        _audit(
            db,
            instance_id,
            grant,
            event_type=EVENT_DECISION_OUTCOME_SET,
            target_type="decision",
            target_ids=[row.id],
            metadata={"replaced": replaced},
        )
        db.commit()
        db.refresh(row)
        return {"status": "ok", "decision": _serialize_decision(row)}
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

