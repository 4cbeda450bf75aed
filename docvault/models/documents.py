"""Document and chunk models for the DocVault ingestion pipeline.

A :class:`Document` is created on upload in ``pending`` state, advanced by
the ingestion pipeline through ``processing`` to ``ready`` or ``error``,
and destroyed by an explicit delete that cascades to its chunks, tag
links and vector entries.

All models use frozen config; state transitions go through the metadata
store and produce fresh instances on the next read.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from docvault.models.tags import DocumentTagView


class DocumentStatus(str, Enum):  # noqa: UP042 — StrEnum requires Python 3.11+
    """Lifecycle of a document: pending -> processing -> ready | error."""

    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


class Document(BaseModel):
    """One uploaded file and its ingestion state."""

    model_config = ConfigDict(frozen=True)

    id: str
    workspace_id: str
    # The uploader; may delete the document regardless of workspace role.
    user_id: str
    title: str
    # Blob key of the original bytes: documents/{workspace}/{id}/{filename}
    file_key: str
    # Blob key of the extracted text, set when the document reaches ready.
    text_key: str | None = None
    # sha256 hex of the original bytes; unique per workspace.
    content_hash: str
    mime_type: str
    file_size_bytes: int = Field(default=0, ge=0)
    page_count: int | None = None
    status: DocumentStatus = DocumentStatus.PENDING
    error_message: str | None = None
    # Why extraction or tagging fell back (e.g. "unsupported_mime_type").
    degraded_reason: str | None = None
    # Set while a pipeline run holds the document in ``processing``.
    lease_expires_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def filename(self) -> str:
        """Original filename, recovered from the blob key."""
        return self.file_key.rsplit("/", 1)[-1]


class DocumentDetail(BaseModel):
    """A document together with its tag associations."""

    model_config = ConfigDict(frozen=True)

    document: Document
    tags: list[DocumentTagView] = Field(default_factory=list)


class DocumentPage(BaseModel):
    """One page of a document listing."""

    model_config = ConfigDict(frozen=True)

    documents: list[Document] = Field(default_factory=list)
    total: int = 0
    has_more: bool = False


class Chunk(BaseModel):
    """A persisted chunk row.

    ``id`` is always ``f"{document_id}_{chunk_index}"`` so that the chunk
    row and its vector entry share one identity and re-ingestion
    overwrites rather than duplicates.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    document_id: str
    chunk_index: int = Field(ge=0)
    text: str
    token_count: int = Field(default=0, ge=0)
    page_number: int | None = None

    @staticmethod
    def make_id(document_id: str, chunk_index: int) -> str:
        return f"{document_id}_{chunk_index}"
