"""Local chunk embeddings with ``nomic-embed-text`` served by Ollama.

Chosen by the composition root when no OpenAI key is configured, so a
vault can ingest and search entirely offline.  The vectors are 768 wide;
switching to or from this provider needs a fresh ChromaDB collection.
"""

from __future__ import annotations

import httpx
import openai
import structlog

from docvault.config.settings import Settings
from docvault.interfaces.embedding_provider import IEmbeddingProvider
from docvault.utils.errors import RAGError

logger = structlog.get_logger(logger_name=__name__)

_OLLAMA_BATCH_LIMIT = 512
_NOMIC_MODEL = "nomic-embed-text"
_NOMIC_DIMENSION = 768


class NomicEmbeddingProvider(IEmbeddingProvider):
    """Embeds chunk text through Ollama's OpenAI-compatible ``/v1`` endpoint."""

    def __init__(self, settings: Settings) -> None:
        self._base_url = settings.ollama_base_url.rstrip("/")
        self._client = openai.AsyncOpenAI(
            base_url=f"{self._base_url}/v1",
            api_key="ollama",
            timeout=openai.Timeout(settings.inference_timeout_seconds, connect=5.0),
        )

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        vectors: list[list[float]] = []
        for start in range(0, len(texts), _OLLAMA_BATCH_LIMIT):
            batch = texts[start : start + _OLLAMA_BATCH_LIMIT]
            try:
                response = await self._client.embeddings.create(input=batch, model=_NOMIC_MODEL)
            except openai.APIError as exc:
                raise RAGError(
                    message=f"Ollama embedding request failed: {exc}",
                    provider_name=self.get_provider_name(),
                ) from exc
            for item in response.data:
                if len(item.embedding) != _NOMIC_DIMENSION:
                    raise RAGError(
                        message=f"{_NOMIC_MODEL} returned {len(item.embedding)}-dim vectors",
                        provider_name=self.get_provider_name(),
                    )
                vectors.append(item.embedding)
            logger.debug("chunk_embedding_batch", model=_NOMIC_MODEL, provider="ollama", batch_size=len(batch))
        return vectors

    async def embed_single(self, text: str) -> list[float]:
        [vector] = await self.embed([text])
        return vector

    def get_dimension(self) -> int:
        return _NOMIC_DIMENSION

    def get_provider_name(self) -> str:
        return "nomic_embedding"

    def is_available(self) -> bool:
        """Return ``True`` if the Ollama server answers on ``/api/tags``."""
        if not self._base_url:
            return False
        try:
            response = httpx.get(f"{self._base_url}/api/tags", timeout=3.0)
        except (httpx.ConnectError, httpx.TimeoutException):
            return False
        return response.status_code == 200
