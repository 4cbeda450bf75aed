"""Embedding provider adapters.

Concrete implementations of IEmbeddingProvider:
    - OpenAIEmbeddingProvider -- text-embedding-3-small (1536 dims)
    - NomicEmbeddingProvider  -- nomic-embed-text via Ollama (768 dims)

The chosen provider's dimension must match the existing ChromaDB
collection; switching providers requires a fresh collection.
"""

from docvault.providers.embedding.nomic_embedding_provider import NomicEmbeddingProvider
from docvault.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

__all__ = ["NomicEmbeddingProvider", "OpenAIEmbeddingProvider"]
