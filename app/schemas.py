"""
Request bodies for the memory API.

Field names follow the public camelCase API; services receive snake_case.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class DecisionCreateRequest(_CamelModel):
    context: str
    decision: str
    reasoning: List[str]
    alternatives_considered: Optional[List[str]] = Field(default=None, alias="alternativesConsidered")
    tags: Optional[List[str]] = None
    sender_id: Optional[str] = Field(default=None, alias="senderId")


class DecisionOutcomeRequest(_CamelModel):
    outcome: str


class EpisodeCreateRequest(_CamelModel):
    summary: str
    tags: Optional[List[str]] = None
    sender_id: Optional[str] = Field(default=None, alias="senderId")
    happened_at: Optional[str] = Field(default=None, alias="happenedAt")


class ProfilePatchRequest(_CamelModel):
    """Only fields present in the body are written; explicit nulls clear."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    name: Optional[str] = None
    role: Optional[str] = None
    timezone: Optional[str] = None
    communication_style: Optional[str] = Field(default=None, alias="communicationStyle")
    current_focus: Optional[str] = Field(default=None, alias="currentFocus")
    relationship_context: Optional[str] = Field(default=None, alias="relationshipContext")
    preferences: Optional[List[str]] = None
    metadata: Optional[Dict[str, Any]] = None

    def present_fields(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class SearchRequest(_CamelModel):
    query: str = ""
    top_k: Optional[int] = Field(default=None, alias="topK")
    sender_id: Optional[str] = Field(default=None, alias="senderId")
    include_docs: bool = Field(default=True, alias="includeDocs")
    include_decisions: bool = Field(default=True, alias="includeDecisions")
    include_episodes: bool = Field(default=True, alias="includeEpisodes")
    include_profile: bool = Field(default=True, alias="includeProfile")


class QuotaUpdateRequest(_CamelModel):
    max_documents_mb: int = Field(alias="maxDocumentsMB")
