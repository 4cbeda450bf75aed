"""ChromaDB vector index adapter.

Wraps ``chromadb.PersistentClient`` to implement :class:`IVectorIndex`.
Uses cosine distance; similarity is reported as ``1 - distance`` clamped
to ``[0, 1]``.  Embeddings are always computed by DocVault's own
embedding provider and passed in pre-computed.

The chromadb client is synchronous, so every call runs in
``asyncio.to_thread`` to keep the event loop free.
"""

from __future__ import annotations

import asyncio
import os
from typing import Any

# Telemetry must be off before chromadb is imported: its bundled PostHog
# client breaks on newer posthog releases.
os.environ["ANONYMIZED_TELEMETRY"] = "False"

import posthog

posthog.disabled = True

import chromadb
import structlog

from docvault.interfaces.vector_index import IVectorIndex
from docvault.models.vector import VectorEntry, VectorMatch
from docvault.utils.errors import RAGError

logger = structlog.get_logger(logger_name=__name__)


class _NoopEmbeddingFunction(chromadb.EmbeddingFunction[list[str]]):
    """Stops ChromaDB from loading its default ONNX model.

    DocVault always supplies embeddings, so this is never called.
    """

    def __call__(self, input: list[str]) -> list[list[float]]:
        raise NotImplementedError(
            "DocVault uses pre-computed embeddings; "
            "ChromaDB's built-in embedding should never be called."
        )

    def name(self) -> str:
        return "noop_precomputed"


class ChromaDBVectorIndex(IVectorIndex):
    """Vector index backed by ChromaDB with local persistence.

    Parameters
    ----------
    persist_directory:
        Directory for ChromaDB's on-disk storage.
    collection_name:
        Collection holding the chunk vectors.
    expected_dimension:
        When given, the stored vectors are checked against it at startup
        and a mismatch raises :class:`RAGError`.
    client:
        Optional pre-built client (``chromadb.EphemeralClient()`` in tests).
    """

    def __init__(
        self,
        persist_directory: str = "./data/chromadb",
        collection_name: str = "docvault_chunks",
        expected_dimension: int | None = None,
        client: Any | None = None,
    ) -> None:
        self._persist_directory = persist_directory
        self._collection_name = collection_name
        self._client = client or chromadb.PersistentClient(
            path=persist_directory,
            settings=chromadb.config.Settings(anonymized_telemetry=False),
        )
        # Collections persisted with a different embedding function reject
        # the no-op one; reopen them without specifying a function.
        try:
            self._collection = self._client.get_or_create_collection(
                name=collection_name,
                metadata={"hnsw:space": "cosine"},
                embedding_function=_NoopEmbeddingFunction(),
            )
        except ValueError:
            self._collection = self._client.get_or_create_collection(
                name=collection_name,
                metadata={"hnsw:space": "cosine"},
            )

        if expected_dimension is not None:
            self._validate_embedding_dimensions(expected_dimension)

    def _validate_embedding_dimensions(self, expected_dim: int) -> None:
        """Fail fast if stored vectors have a different dimension than the provider."""
        if self._collection.count() == 0:
            return
        sample = self._collection.peek(limit=1)
        embeddings = sample.get("embeddings") if sample else None
        if embeddings is None or len(embeddings) == 0:
            return

        stored_dim = len(embeddings[0])
        if stored_dim != expected_dim:
            logger.error(
                "embedding_dimension_mismatch",
                stored_dim=stored_dim,
                expected_dim=expected_dim,
                collection=self._collection_name,
            )
            raise RAGError(
                message=(
                    f"Embedding dimension mismatch: collection has {stored_dim}-dim vectors "
                    f"but the embedding provider produces {expected_dim}-dim vectors."
                ),
                provider_name=self.get_provider_name(),
            )

    # ------------------------------------------------------------------
    # IVectorIndex implementation
    # ------------------------------------------------------------------

    async def upsert(self, entries: list[VectorEntry]) -> int:
        if not entries:
            return 0
        try:
            await asyncio.to_thread(
                self._collection.upsert,
                ids=[e.id for e in entries],
                embeddings=[e.vector for e in entries],
                documents=[str(e.metadata.get("text", "")) for e in entries],
                metadatas=[self._clean_metadata(e.metadata) for e in entries],
            )
        except Exception as exc:
            raise RAGError(
                message=f"ChromaDB upsert failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.debug("chromadb_upsert", count=len(entries))
        return len(entries)

    async def query(
        self,
        vector: list[float],
        top_k: int = 10,
        filters: dict[str, Any] | None = None,
    ) -> list[VectorMatch]:
        try:
            total = await asyncio.to_thread(self._collection.count)
            if total == 0 or top_k <= 0:
                return []

            kwargs: dict[str, Any] = {
                "query_embeddings": [vector],
                "n_results": min(top_k, total),
                "include": ["metadatas", "distances"],
            }
            where_clause = self._translate_filters(filters) if filters else None
            if where_clause:
                kwargs["where"] = where_clause

            results = await asyncio.to_thread(self._collection.query, **kwargs)
        except Exception as exc:
            raise RAGError(
                message=f"ChromaDB query failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        ids = results["ids"][0] if results.get("ids") else []
        metadatas = results["metadatas"][0] if results.get("metadatas") else [{}] * len(ids)
        distances = results["distances"][0] if results.get("distances") else [0.0] * len(ids)

        matches = [
            VectorMatch(
                id=chunk_id,
                score=max(0.0, min(1.0, 1.0 - float(distance))),
                metadata=dict(meta or {}),
            )
            for chunk_id, meta, distance in zip(ids, metadatas, distances)
        ]
        matches.sort(key=lambda m: m.score, reverse=True)
        logger.debug(
            "chromadb_query",
            results_count=len(matches),
            top_score=matches[0].score if matches else 0.0,
        )
        return matches

    async def delete_by_ids(self, ids: list[str]) -> int:
        if not ids:
            return 0
        try:
            await asyncio.to_thread(self._collection.delete, ids=list(ids))
        except Exception as exc:
            raise RAGError(
                message=f"ChromaDB delete failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.info("chromadb_delete_by_ids", count=len(ids))
        return len(ids)

    async def count(self) -> int:
        return await asyncio.to_thread(self._collection.count)

    def get_provider_name(self) -> str:
        return "chromadb"

    def is_available(self) -> bool:
        try:
            self._collection.count()
            return True
        except Exception:  # noqa: BLE001
            return False

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _clean_metadata(metadata: dict[str, Any]) -> dict[str, str | int | float | bool]:
        """Drop ``None`` values and stringify anything ChromaDB can't store."""
        clean: dict[str, str | int | float | bool] = {}
        for key, value in metadata.items():
            if value is None:
                continue
            if isinstance(value, (str, int, float, bool)):
                clean[key] = value
            else:
                clean[key] = str(value)
        return clean

    @staticmethod
    def _translate_filters(filters: dict[str, Any]) -> dict[str, Any] | None:
        """Translate the common filter syntax to a ChromaDB ``where`` clause.

        ``{"k": v}`` becomes ``{"k": {"$eq": v}}``, ``{"k": {"$in": [...]}}``
        passes through, and multiple keys are joined with ``$and``.
        """
        clauses: list[dict[str, Any]] = []
        for key, value in filters.items():
            if isinstance(value, dict):
                in_val = value.get("$in")
                if in_val is not None:
                    clauses.append({key: {"$in": list(in_val)}})
                elif "$eq" in value:
                    clauses.append({key: {"$eq": value["$eq"]}})
            elif value is not None:
                clauses.append({key: {"$eq": value}})

        if not clauses:
            return None
        if len(clauses) == 1:
            return clauses[0]
        return {"$and": clauses}
