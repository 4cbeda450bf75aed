"""Timeout-bounded embedding calls for ingestion and retrieval.

Wraps an :class:`IEmbeddingProvider` so that every call has an upper
bound on wall time and every failure surfaces as
:class:`~docvault.utils.errors.InferenceError`, whatever the adapter
raised.  Both the ingestion pipeline and the retriever embed through
this class.
"""

from __future__ import annotations

import structlog

from docvault.interfaces.embedding_provider import IEmbeddingProvider
from docvault.utils.concurrency import with_timeout
from docvault.utils.errors import DocVaultError, InferenceError

logger = structlog.get_logger(logger_name=__name__)


class Embedder:
    """Embeds text through a provider with a per-call timeout."""

    def __init__(self, provider: IEmbeddingProvider, timeout_seconds: float = 25.0) -> None:
        self._provider = provider
        self._timeout = timeout_seconds

    @property
    def dimension(self) -> int:
        return self._provider.get_dimension()

    @property
    def provider_name(self) -> str:
        return self._provider.get_provider_name()

    async def embed(self, text: str) -> list[float]:
        """Return the embedding vector for one text."""
        vectors = await self.embed_batch([text])
        if not vectors:
            raise InferenceError(
                message="Embedding provider returned no vector",
                provider_name=self.provider_name,
            )
        return vectors[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Return one vector per input text, in input order."""
        if not texts:
            return []
        try:
            vectors = await with_timeout(
                self._provider.embed(texts),
                self._timeout,
                on_timeout=lambda: InferenceError(
                    message=f"Embedding timed out after {self._timeout}s",
                    provider_name=self.provider_name,
                ),
            )
        except InferenceError:
            raise
        except DocVaultError as exc:
            logger.warning("embedding_failed", provider=self.provider_name, error=str(exc))
            raise InferenceError(
                message=f"Embedding failed: {exc.message}",
                provider_name=self.provider_name,
            ) from exc

        if len(vectors) != len(texts):
            raise InferenceError(
                message=f"Embedding provider returned {len(vectors)} vectors for {len(texts)} texts",
                provider_name=self.provider_name,
            )
        return vectors
