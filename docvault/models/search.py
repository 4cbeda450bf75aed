"""Search request/response models for the retriever."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from docvault.models.tags import DocumentTagView

# Hard page-size cap, applied to every search mode.
MAX_SEARCH_LIMIT = 100


class SearchQuery(BaseModel):
    """Parameters for faceted, semantic and combined search.

    ``tags`` entries match tag names; an entry of the form
    ``category:name`` (e.g. ``vendor:acme``) also matches a tag with that
    category and name.  ``document_types`` are mime-type substrings such
    as ``"pdf"`` or ``"image"``.
    """

    model_config = ConfigDict(frozen=True)

    query: str | None = None
    tags: list[str] = Field(default_factory=list)
    document_types: list[str] = Field(default_factory=list)
    date_from: str | None = None
    date_to: str | None = None
    workspace_id: str | None = None
    limit: int = Field(default=20, ge=1)
    offset: int = Field(default=0, ge=0)

    @field_validator("limit")
    @classmethod
    def _cap_limit(cls, value: int) -> int:
        return min(value, MAX_SEARCH_LIMIT)

    @field_validator("query")
    @classmethod
    def _blank_query_is_none(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()


class SearchResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    snippet: str = ""
    tags: list[DocumentTagView] = Field(default_factory=list)
    # Cosine similarity in [0, 1] for semantic hits; None for pure facet hits.
    relevance_score: float | None = None
    mime_type: str = ""
    created_at: datetime | None = None


class SearchPage(BaseModel):
    model_config = ConfigDict(frozen=True)

    results: list[SearchResult] = Field(default_factory=list)
    total: int = 0
    has_more: bool = False


class FacetFilter(BaseModel):
    """Relational filter handed to the metadata store.

    ``candidate_ids`` restricts the filter to a precomputed id set (the
    semantic candidates in combined mode); ``None`` means unrestricted.
    """

    model_config = ConfigDict(frozen=True)

    workspace_ids: list[str]
    text: str | None = None
    tags: list[str] = Field(default_factory=list)
    document_types: list[str] = Field(default_factory=list)
    date_from: str | None = None
    date_to: str | None = None
    candidate_ids: list[str] | None = None
