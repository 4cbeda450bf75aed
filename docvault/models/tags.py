"""Tag models: workspace vocabulary, document associations, LLM suggestions."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class TagCategory(str, Enum):  # noqa: UP042 — StrEnum requires Python 3.11+
    """Fixed category set the auto-tagger is allowed to emit."""

    DOCUMENT_TYPE = "document_type"
    VENDOR = "vendor"
    DATE = "date"
    AMOUNT = "amount"
    PERSON = "person"
    TOPIC = "topic"

    @classmethod
    def parse(cls, value: object) -> TagCategory | None:
        """Return the matching category, or ``None`` for anything unknown."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


class TagSource(str, Enum):  # noqa: UP042 — StrEnum requires Python 3.11+
    """Who created a document-tag association."""

    AI_SUGGESTED = "ai_suggested"
    USER_ADDED = "user_added"
    USER_MODIFIED = "user_modified"


class Tag(BaseModel):
    """A workspace-scoped tag.

    ``usage_count`` always equals the number of document associations
    referencing the tag; it is only changed by the store's associate,
    dissociate and merge operations.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    workspace_id: str
    name: str
    category: TagCategory | None = None
    usage_count: int = Field(default=0, ge=0)
    created_at: datetime | None = None


class DocumentTagView(BaseModel):
    """A tag as attached to one document, with provenance."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    category: TagCategory | None = None
    source: TagSource = TagSource.USER_ADDED
    # Present only for ai_suggested associations.
    confidence: float | None = None


class TagSuggestion(BaseModel):
    """One tag proposed by the auto-tagger."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    category: TagCategory | None = None
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)


class TaggingResult(BaseModel):
    """Outcome of one auto-tagging call.

    An empty ``tags`` list with a ``degraded_reason`` means the call
    failed and ingestion carried on without tags.
    """

    model_config = ConfigDict(frozen=True)

    tags: list[TagSuggestion] = Field(default_factory=list)
    degraded_reason: str | None = None
