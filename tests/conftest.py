"""Shared pytest fixtures for the DocVault test suite."""

from __future__ import annotations

import asyncio
import hashlib
import math
import re
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest

from docvault.interfaces.blob_store import IBlobStore
from docvault.interfaces.embedding_provider import IEmbeddingProvider
from docvault.interfaces.llm_provider import ChatTurn, ILLMProvider
from docvault.interfaces.vector_index import IVectorIndex
from docvault.models.auth import Principal, Role
from docvault.models.vector import VectorEntry, VectorMatch
from docvault.providers.metadata.sqlite_metadata_store import SQLiteMetadataStore
from docvault.services.chat.chat_service import ChatService
from docvault.services.chat.rag_session import RagSession
from docvault.services.document_service import DocumentService
from docvault.services.ingestion.chunker import TextChunker
from docvault.services.ingestion.dispatcher import IngestionDispatcher, IngestionQueue
from docvault.services.ingestion.embedder import Embedder
from docvault.services.ingestion.extractor import TextExtractor
from docvault.services.ingestion.pipeline import IngestionPipeline
from docvault.services.ingestion.reclaimer import LeaseReclaimer
from docvault.services.ingestion.tagger import Tagger
from docvault.services.ingestion.upload_service import UploadService
from docvault.services.retrieval.retriever import Retriever
from docvault.services.tag_service import TagService
from docvault.utils.errors import InferenceError

WORKSPACE = "ws-main"
OTHER_WORKSPACE = "ws-other"

_WORD_RE = re.compile(r"[a-z0-9]+")


# ---------------------------------------------------------------------------
# In-memory fakes
# ---------------------------------------------------------------------------


class MemoryBlobStore(IBlobStore):
    """Dict-backed blob store."""

    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}

    async def put(self, key: str, data: bytes) -> None:
        self.blobs[key] = bytes(data)

    async def get(self, key: str) -> bytes | None:
        return self.blobs.get(key)

    async def delete(self, key: str) -> None:
        self.blobs.pop(key, None)

    def get_provider_name(self) -> str:
        return "memory"


def _cosine(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


def _matches_filters(metadata: dict[str, Any], filters: dict[str, Any] | None) -> bool:
    for key, condition in (filters or {}).items():
        value = metadata.get(key)
        if isinstance(condition, dict) and "$in" in condition:
            if value not in condition["$in"]:
                return False
        elif value != condition:
            return False
    return True


class MemoryVectorIndex(IVectorIndex):
    """Brute-force cosine index supporting equality and ``$in`` filters."""

    def __init__(self) -> None:
        self.entries: dict[str, VectorEntry] = {}
        self.queries: list[dict[str, Any]] = []

    async def upsert(self, entries: list[VectorEntry]) -> int:
        for entry in entries:
            self.entries[entry.id] = entry
        return len(entries)

    async def query(
        self,
        vector: list[float],
        top_k: int = 10,
        filters: dict[str, Any] | None = None,
    ) -> list[VectorMatch]:
        self.queries.append({"top_k": top_k, "filters": filters})
        scored = [
            VectorMatch(
                id=entry.id,
                score=max(0.0, min(1.0, _cosine(vector, entry.vector))),
                metadata=dict(entry.metadata),
            )
            for entry in self.entries.values()
            if _matches_filters(entry.metadata, filters)
        ]
        scored.sort(key=lambda m: m.score, reverse=True)
        return scored[:top_k]

    async def delete_by_ids(self, ids: list[str]) -> int:
        removed = 0
        for entry_id in ids:
            if self.entries.pop(entry_id, None) is not None:
                removed += 1
        return removed

    async def count(self) -> int:
        return len(self.entries)

    def get_provider_name(self) -> str:
        return "memory"

    def is_available(self) -> bool:
        return True


class MockEmbeddingProvider(IEmbeddingProvider):
    """Deterministic bag-of-words hash embeddings.

    Texts sharing words get a higher cosine similarity, which is enough
    to make semantic ranking meaningful in tests.  ``fail_when`` makes
    ``embed`` raise :class:`InferenceError` for matching texts.
    """

    def __init__(
        self,
        dimension: int = 64,
        fail_when: Callable[[str], bool] | None = None,
    ) -> None:
        self._dimension = dimension
        self.fail_when = fail_when
        self.calls: list[list[str]] = []

    def vector_for(self, text: str) -> list[float]:
        vector = [0.0] * self._dimension
        for word in _WORD_RE.findall(text.lower()):
            bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % self._dimension
            vector[bucket] += 1.0
        norm = math.sqrt(sum(v * v for v in vector))
        if norm == 0:
            vector[0] = 1.0
            return vector
        return [v / norm for v in vector]

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        for text in texts:
            if self.fail_when is not None and self.fail_when(text):
                raise InferenceError(message="mock embedding failure", provider_name="mock")
        return [self.vector_for(t) for t in texts]

    async def embed_single(self, text: str) -> list[float]:
        return (await self.embed([text]))[0]

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return "mock-embedding"

    def is_available(self) -> bool:
        return True


class ScriptedLLM(ILLMProvider):
    """LLM double with scripted replies and call recording.

    ``complete`` returns ``complete_responses`` in order (then
    ``default_completion``); ``chat`` returns ``chat_response``;
    ``stream_chat`` yields ``stream_fragments``, optionally raising
    ``stream_error`` after ``stream_error_after`` fragments or sleeping
    ``stream_delay`` seconds before each fragment.
    """

    def __init__(
        self,
        complete_responses: list[str | Exception] | None = None,
        default_completion: str = "[]",
        chat_response: str = "Here is the answer.",
        stream_fragments: list[str] | None = None,
        vision_response: str | Exception = "transcribed text",
        vision: bool = True,
    ) -> None:
        self.complete_responses = list(complete_responses or [])
        self.default_completion = default_completion
        self.chat_response = chat_response
        self.stream_fragments = list(stream_fragments or ["Here ", "is ", "the ", "answer."])
        self.stream_error: Exception | None = None
        self.stream_error_after: int = 0
        self.stream_delay: float = 0.0
        self.vision_response = vision_response
        self.vision = vision

        self.complete_calls: list[dict[str, Any]] = []
        self.chat_calls: list[list[ChatTurn]] = []
        self.vision_calls: list[bytes] = []
        self.stream_closed = False

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 4000,
    ) -> str:
        self.complete_calls.append({"system_prompt": system_prompt, "user_prompt": user_prompt})
        response: str | Exception = (
            self.complete_responses.pop(0) if self.complete_responses else self.default_completion
        )
        if isinstance(response, Exception):
            raise response
        return response

    async def chat(
        self,
        messages: list[ChatTurn],
        temperature: float = 0.3,
        max_tokens: int = 2000,
    ) -> str:
        self.chat_calls.append(list(messages))
        return self.chat_response

    async def stream_chat(
        self,
        messages: list[ChatTurn],
        temperature: float = 0.3,
        max_tokens: int = 2000,
    ) -> AsyncIterator[str]:
        self.chat_calls.append(list(messages))
        try:
            for index, fragment in enumerate(self.stream_fragments):
                if self.stream_error is not None and index == self.stream_error_after:
                    raise self.stream_error
                if self.stream_delay:
                    await asyncio.sleep(self.stream_delay)
                yield fragment
            if self.stream_error is not None and self.stream_error_after >= len(self.stream_fragments):
                raise self.stream_error
        finally:
            self.stream_closed = True

    async def vision_extract(self, image_bytes: bytes, prompt: str, max_tokens: int = 4000) -> str:
        self.vision_calls.append(image_bytes)
        if isinstance(self.vision_response, Exception):
            raise self.vision_response
        return self.vision_response

    def supports_vision(self) -> bool:
        return self.vision

    def get_provider_name(self) -> str:
        return "scripted"

    def is_available(self) -> bool:
        return True

    async def validate_credentials(self) -> bool:
        return True


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def numbered_words(count: int, prefix: str = "w") -> str:
    """``"w0 w1 w2 ..."`` with *count* distinct words."""
    return " ".join(f"{prefix}{i}" for i in range(count))


@dataclass
class Harness:
    """Real services wired over SQLite and the in-memory fakes."""

    store: SQLiteMetadataStore
    blobs: IBlobStore
    vectors: IVectorIndex
    embeddings: MockEmbeddingProvider
    llm: ScriptedLLM
    pipeline: IngestionPipeline
    dispatcher: IngestionDispatcher
    uploads: UploadService
    documents: DocumentService
    tags: TagService
    retriever: Retriever
    chat: ChatService
    rag: RagSession
    reclaimer: LeaseReclaimer


def build_harness(
    store: SQLiteMetadataStore,
    llm: ScriptedLLM | None = None,
    embeddings: MockEmbeddingProvider | None = None,
    chunker: TextChunker | None = None,
    chat_timeout: float = 5.0,
    blobs: IBlobStore | None = None,
    vectors: IVectorIndex | None = None,
    mode: str = "inline",
    queue: IngestionQueue | None = None,
) -> Harness:
    blobs = blobs or MemoryBlobStore()
    vectors = vectors or MemoryVectorIndex()
    embeddings = embeddings or MockEmbeddingProvider()
    llm = llm or ScriptedLLM()
    embedder = Embedder(embeddings, timeout_seconds=5.0)
    pipeline = IngestionPipeline(
        metadata_store=store,
        blob_store=blobs,
        vector_index=vectors,
        embedder=embedder,
        extractor=TextExtractor(llm, timeout_seconds=5.0),
        chunker=chunker or TextChunker(),
        tagger=Tagger(llm, timeout_seconds=5.0),
    )
    if mode == "queued" and queue is None:
        queue = IngestionQueue(pipeline)
    dispatcher = IngestionDispatcher(pipeline, mode=mode, queue=queue)
    return Harness(
        store=store,
        blobs=blobs,
        vectors=vectors,
        embeddings=embeddings,
        llm=llm,
        pipeline=pipeline,
        dispatcher=dispatcher,
        uploads=UploadService(store, blobs, dispatcher),
        documents=DocumentService(store, blobs, vectors, dispatcher),
        tags=TagService(store),
        retriever=Retriever(store, vectors, embedder),
        chat=ChatService(store),
        rag=RagSession(store, vectors, embedder, llm, timeout_seconds=chat_timeout),
        reclaimer=LeaseReclaimer(store, dispatcher, pending_grace_seconds=0),
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
async def metadata_store(tmp_path: Path) -> SQLiteMetadataStore:
    """An initialised SQLite store in a temp directory."""
    store = SQLiteMetadataStore(db_path=tmp_path / "docvault.db")
    await store.initialize()
    return store


@pytest.fixture
def blob_store() -> MemoryBlobStore:
    return MemoryBlobStore()


@pytest.fixture
def vector_index() -> MemoryVectorIndex:
    return MemoryVectorIndex()


@pytest.fixture
def embedding_provider() -> MockEmbeddingProvider:
    return MockEmbeddingProvider()


@pytest.fixture
def scripted_llm() -> ScriptedLLM:
    return ScriptedLLM()


@pytest.fixture
def harness(metadata_store: SQLiteMetadataStore) -> Harness:
    return build_harness(metadata_store)


@pytest.fixture
def owner() -> Principal:
    return Principal(
        user_id="alice",
        workspace_roles={WORKSPACE: Role.OWNER},
        default_workspace_id=WORKSPACE,
    )


@pytest.fixture
def editor() -> Principal:
    return Principal(
        user_id="bob",
        workspace_roles={WORKSPACE: Role.EDITOR},
        default_workspace_id=WORKSPACE,
    )


@pytest.fixture
def viewer() -> Principal:
    return Principal(
        user_id="carol",
        workspace_roles={WORKSPACE: Role.VIEWER},
        default_workspace_id=WORKSPACE,
    )


@pytest.fixture
def outsider() -> Principal:
    return Principal(
        user_id="mallory",
        workspace_roles={OTHER_WORKSPACE: Role.OWNER},
        default_workspace_id=OTHER_WORKSPACE,
    )


@pytest.fixture
def mock_config() -> dict[str, Any]:
    """Return a minimal configuration mapping for composition tests."""
    return {
        "app": {"name": "docvault", "version": "0.1.0"},
        "auth": {
            "api_keys": {
                "key-owner": {
                    "user_id": "alice",
                    "default_workspace": WORKSPACE,
                    "workspaces": {WORKSPACE: "owner"},
                },
                "key-viewer": {
                    "user_id": "carol",
                    "workspaces": {WORKSPACE: "viewer", OTHER_WORKSPACE: "editor"},
                },
            }
        },
    }
