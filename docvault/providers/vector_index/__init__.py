"""Vector index adapters (ChromaDB, persistent and local)."""

from docvault.providers.vector_index.chromadb_index import ChromaDBVectorIndex

__all__ = ["ChromaDBVectorIndex"]
