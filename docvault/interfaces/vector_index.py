"""Abstract base class for vector index providers.

Stores one :class:`~docvault.models.vector.VectorEntry` per chunk, keyed
by the deterministic chunk id, and answers nearest-neighbour queries
scoped by metadata filters.

**Supported filter syntax** (the *filters* dict of :meth:`IVectorIndex.query`):

* ``{"workspace_id": "ws1"}`` -- equality on a metadata key.
* ``{"workspace_id": {"$in": ["ws1", "ws2"]}}`` -- one of a set.
* Several keys are combined with AND.

Concrete providers translate this into their backend-specific syntax.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from docvault.models.vector import VectorEntry, VectorMatch


# Concrete implementation: ChromaDBVectorIndex (docvault/providers/vector_index/)
class IVectorIndex(ABC):
    """Contract for the vector index used by ingestion, retrieval and chat."""

    @abstractmethod
    async def upsert(self, entries: list[VectorEntry]) -> int:
        """Insert or overwrite entries by id.

        Returns
        -------
        int
            The number of entries written.

        Raises
        ------
        docvault.utils.errors.RAGError
            If the write fails.
        """

    @abstractmethod
    async def query(
        self,
        vector: list[float],
        top_k: int = 10,
        filters: dict[str, Any] | None = None,
    ) -> list[VectorMatch]:
        """Return up to *top_k* matches ranked by similarity (descending).

        Scores are cosine similarities clamped to ``[0, 1]``.
        """

    @abstractmethod
    async def delete_by_ids(self, ids: list[str]) -> int:
        """Delete entries by id.  Unknown ids are ignored.

        Returns
        -------
        int
            The number of ids submitted for deletion.
        """

    @abstractmethod
    async def count(self) -> int:
        """Return the total number of stored entries."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"chromadb"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the index is reachable."""
