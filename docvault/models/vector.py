"""Vector index entry and match models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# Length of the chunk text copied into vector metadata for display.
SNIPPET_METADATA_CHARS = 500


class VectorEntry(BaseModel):
    """One embedded chunk, keyed by the chunk id."""

    model_config = ConfigDict(frozen=True)

    id: str
    vector: list[float]
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def for_chunk(
        cls,
        chunk_id: str,
        vector: list[float],
        document_id: str,
        workspace_id: str,
        chunk_index: int,
        text: str,
    ) -> VectorEntry:
        return cls(
            id=chunk_id,
            vector=vector,
            metadata={
                "document_id": document_id,
                "workspace_id": workspace_id,
                "chunk_index": chunk_index,
                "text": text[:SNIPPET_METADATA_CHARS],
            },
        )


class VectorMatch(BaseModel):
    """A nearest-neighbour hit, best first."""

    model_config = ConfigDict(frozen=True)

    id: str
    score: float = Field(ge=0.0, le=1.0)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def document_id(self) -> str | None:
        value = self.metadata.get("document_id")
        return str(value) if value else None

    @property
    def text(self) -> str:
        return str(self.metadata.get("text") or "")
