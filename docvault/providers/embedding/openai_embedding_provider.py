"""OpenAI embedding adapter for DocVault chunks and search queries.

Every chunk written by the ingestion pipeline and every semantic query
goes through :meth:`OpenAIEmbeddingProvider.embed`.  The vectors land in
a ChromaDB collection whose dimension is fixed at startup, so a response
with the wrong width is rejected here instead of failing later inside
the index.
"""

from __future__ import annotations

import openai
import structlog

from docvault.config.settings import Settings
from docvault.interfaces.embedding_provider import IEmbeddingProvider
from docvault.utils.errors import RAGError

logger = structlog.get_logger(logger_name=__name__)

_OPENAI_BATCH_LIMIT = 2048

# Vector width per model; the ChromaDB collection is created with this.
_MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
    "BAAI/bge-base-en-v1.5": 768,
    "BAAI/bge-large-en-v1.5": 1024,
}

# Input caps (in tokens) for models narrower than a default DocVault chunk
# plus overlap.
_MODEL_MAX_TOKENS: dict[str, int] = {
    "BAAI/bge-base-en-v1.5": 512,
    "BAAI/bge-large-en-v1.5": 512,
}


class OpenAIEmbeddingProvider(IEmbeddingProvider):
    """Embeds chunk text with ``text-embedding-3-small`` (1536 dims) by default.

    ``openai_base_url`` and ``openai_embedding_model`` point the adapter at
    any OpenAI-compatible embeddings endpoint.  Without an API key the
    adapter reports itself unavailable and every call raises
    :class:`RAGError`.
    """

    def __init__(self, settings: Settings) -> None:
        self._api_key = settings.openai_api_key
        self._model = settings.openai_embedding_model or "text-embedding-3-small"
        self._dimension = _MODEL_DIMENSIONS.get(self._model, 768)
        self._max_tokens = _MODEL_MAX_TOKENS.get(self._model, 0)
        self._provider_label = (
            "openai-compatible_embedding" if settings.openai_base_url else "openai_embedding"
        )

        client_kwargs: dict = {
            "api_key": self._api_key,
            "timeout": openai.Timeout(settings.inference_timeout_seconds, connect=5.0),
        }
        if settings.openai_base_url:
            client_kwargs["base_url"] = settings.openai_base_url
        # AsyncOpenAI raises OpenAIError when constructed without a key.
        self._client: openai.AsyncOpenAI | None = (
            openai.AsyncOpenAI(**client_kwargs) if self._api_key else None
        )

    # ------------------------------------------------------------------
    # IEmbeddingProvider implementation
    # ------------------------------------------------------------------

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        if self._client is None:
            raise RAGError(
                message="OPENAI_API_KEY is not configured",
                provider_name=self.get_provider_name(),
            )
        if self._max_tokens > 0:
            texts = [self._truncate_to_token_limit(t) for t in texts]

        vectors: list[list[float]] = []
        for start in range(0, len(texts), _OPENAI_BATCH_LIMIT):
            batch = texts[start : start + _OPENAI_BATCH_LIMIT]
            try:
                response = await self._client.embeddings.create(input=batch, model=self._model)
            except openai.APIError as exc:
                raise RAGError(
                    message=f"{self._provider_label} API error: {exc}",
                    provider_name=self.get_provider_name(),
                ) from exc
            vectors.extend(self._checked(item.embedding) for item in response.data)
            logger.debug(
                "chunk_embedding_batch",
                model=self._model,
                provider=self._provider_label,
                batch_size=len(batch),
                tokens=response.usage.total_tokens if response.usage else None,
            )
        return vectors

    async def embed_single(self, text: str) -> list[float]:
        [vector] = await self.embed([text])
        return vector

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return self._provider_label

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured."""
        return bool(self._api_key)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _checked(self, vector: list[float]) -> list[float]:
        if len(vector) != self._dimension:
            raise RAGError(
                message=(
                    f"{self._model} returned {len(vector)}-dim vectors, "
                    f"expected {self._dimension}"
                ),
                provider_name=self.get_provider_name(),
            )
        return vector

    def _truncate_to_token_limit(self, text: str) -> str:
        """Cut text to the model's input cap at ~1.5 chars/token, on a word boundary."""
        max_chars = int(self._max_tokens * 1.5)
        if len(text) <= max_chars:
            return text
        truncated = text[:max_chars].rsplit(" ", 1)[0]
        logger.debug(
            "truncating_embedding_input_chars",
            original_chars=len(text),
            truncated_chars=len(truncated),
            model=self._model,
        )
        return truncated
