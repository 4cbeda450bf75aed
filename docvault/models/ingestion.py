"""Ingestion models: extraction strategies, results and pipeline outcomes."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from docvault.models.documents import DocumentStatus


class ExtractionStrategy(str, Enum):  # noqa: UP042 — StrEnum requires Python 3.11+
    """Closed set of text extraction strategies, resolved once per document."""

    PLAIN_TEXT = "plain_text"
    PDF = "pdf"
    IMAGE = "image"
    OFFICE = "office"
    UNSUPPORTED = "unsupported"


class ExtractionResult(BaseModel):
    """Extracted text, or a placeholder plus the reason it degraded."""

    model_config = ConfigDict(frozen=True)

    text: str
    strategy: ExtractionStrategy
    page_count: int | None = None
    degraded_reason: str | None = None

    @property
    def degraded(self) -> bool:
        return self.degraded_reason is not None


class TextChunk(BaseModel):
    """One chunker window over the source words ``[start_word, end_word)``."""

    model_config = ConfigDict(frozen=True)

    index: int = Field(ge=0)
    text: str
    token_count: int = Field(ge=0)
    start_word: int = Field(ge=0)
    end_word: int = Field(ge=0)

    @property
    def word_count(self) -> int:
        return self.end_word - self.start_word


class IngestionOutcome(BaseModel):
    """Terminal state reached by one pipeline run."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    status: DocumentStatus
    chunk_count: int = 0
    tag_count: int = 0
    error_message: str | None = None
    degraded_reasons: list[str] = Field(default_factory=list)


class UploadFile(BaseModel):
    """One file handed to the upload service."""

    model_config = ConfigDict(frozen=True)

    filename: str
    content: bytes
    content_type: str | None = None


class UploadResult(BaseModel):
    """Per-file upload response.

    ``status`` is a :class:`DocumentStatus` value, or ``"duplicate"`` when
    the bytes already exist in the workspace.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    status: str
    error_message: str | None = None
