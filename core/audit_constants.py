"""
Canonical audit event type strings.
"""

EVENT_DECISION_STORED = "decision.stored"
EVENT_DECISION_OUTCOME_SET = "decision.outcome_set"
EVENT_EPISODE_STORED = "episode.stored"
EVENT_PROFILE_UPSERTED = "profile.upserted"
EVENT_PROFILE_DELETED = "profile.deleted"
EVENT_DOCUMENT_INGESTED = "document.ingested"
EVENT_DOCUMENT_DELETED = "document.deleted"
EVENT_KEY_ROTATED = "key.rotated"
EVENT_QUOTA_UPDATED = "config.quota_updated"

__all__ = [
    "EVENT_DECISION_STORED",
    "EVENT_DECISION_OUTCOME_SET",
    "EVENT_EPISODE_STORED",
    "EVENT_PROFILE_UPSERTED",
    "EVENT_PROFILE_DELETED",
    "EVENT_DOCUMENT_INGESTED",
    "EVENT_DOCUMENT_DELETED",
    "EVENT_KEY_ROTATED",
    "EVENT_QUOTA_UPDATED",
]
