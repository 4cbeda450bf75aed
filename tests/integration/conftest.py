"""Fixtures wiring the services over the real on-disk backends.

SQLite, the filesystem blob store and a persistent ChromaDB collection
all live under the test's ``tmp_path``; only inference is faked.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from docvault.providers.blob.filesystem_blob_store import FilesystemBlobStore
from docvault.providers.metadata.sqlite_metadata_store import SQLiteMetadataStore
from docvault.providers.vector_index.chromadb_index import ChromaDBVectorIndex
from tests.conftest import Harness, MockEmbeddingProvider, build_harness


@pytest.fixture
def blob_root(tmp_path: Path) -> Path:
    return tmp_path / "blobs"


@pytest.fixture
def chroma_index(tmp_path: Path, embedding_provider: MockEmbeddingProvider) -> ChromaDBVectorIndex:
    return ChromaDBVectorIndex(
        persist_directory=str(tmp_path / "chromadb"),
        collection_name="docvault_chunks_test",
        expected_dimension=embedding_provider.get_dimension(),
    )


@pytest.fixture
def stack(
    metadata_store: SQLiteMetadataStore,
    blob_root: Path,
    chroma_index: ChromaDBVectorIndex,
    embedding_provider: MockEmbeddingProvider,
) -> Harness:
    return build_harness(
        metadata_store,
        embeddings=embedding_provider,
        blobs=FilesystemBlobStore(root=blob_root),
        vectors=chroma_index,
    )
