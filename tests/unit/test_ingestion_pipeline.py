"""Unit tests for IngestionPipeline, IngestionDispatcher/IngestionQueue and LeaseReclaimer.

Runs the real pipeline over a temp SQLite store with in-memory blob and
vector fakes, a hash-based embedding provider and a scripted LLM.
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from docvault.models.documents import Document, DocumentStatus
from docvault.models.ingestion import IngestionOutcome
from docvault.models.tags import TagSource
from docvault.services.ingestion.chunker import TextChunker
from docvault.services.ingestion.dispatcher import IngestionDispatcher, IngestionQueue
from docvault.services.ingestion.pipeline import FILE_NOT_FOUND_MESSAGE, text_key_for
from docvault.services.ingestion.reclaimer import LeaseReclaimer
from docvault.utils.errors import ConfigurationError, NotFoundError
from tests.conftest import WORKSPACE, Harness, MockEmbeddingProvider, ScriptedLLM, build_harness, numbered_words

_TAG_REPLY = json.dumps([
    {"name": "invoice", "category": "document_type", "confidence": 0.95},
    {"name": "Acme Corp", "category": "vendor", "confidence": 0.8},
])


async def _seed(
    harness: Harness,
    text: str | bytes,
    doc_id: str = "doc-1",
    mime_type: str = "text/plain",
    store_blob: bool = True,
) -> Document:
    file_key = f"documents/{WORKSPACE}/{doc_id}/file.txt"
    data = text.encode() if isinstance(text, str) else text
    if store_blob:
        await harness.blobs.put(file_key, data)
    return await harness.store.create_document(
        Document(
            id=doc_id,
            workspace_id=WORKSPACE,
            user_id="alice",
            title="file",
            file_key=file_key,
            content_hash=f"hash-{doc_id}",
            mime_type=mime_type,
            file_size_bytes=len(data),
        )
    )


# ======================================================================
# IngestionPipeline
# ======================================================================


class TestIngestionPipeline:
    @pytest.mark.asyncio
    async def test_happy_path_reaches_ready(self, metadata_store) -> None:
        harness = build_harness(
            metadata_store,
            llm=ScriptedLLM(default_completion=_TAG_REPLY),
            chunker=TextChunker(target_tokens=8, overlap_tokens=0),
        )
        await _seed(harness, "Invoice from Acme " + numbered_words(15))

        outcome = await harness.pipeline.process("doc-1")

        assert outcome.status is DocumentStatus.READY
        assert outcome.chunk_count == 3
        assert outcome.tag_count == 2
        assert outcome.degraded_reasons == []

        doc = await metadata_store.get_document("doc-1")
        assert doc.status is DocumentStatus.READY
        assert doc.text_key == text_key_for("doc-1")
        assert doc.lease_expires_at is None
        assert harness.blobs.blobs[doc.text_key].startswith(b"Invoice from Acme")

        assert await metadata_store.list_chunk_ids("doc-1") == ["doc-1_0", "doc-1_1", "doc-1_2"]
        assert sorted(harness.vectors.entries) == ["doc-1_0", "doc-1_1", "doc-1_2"]
        entry = harness.vectors.entries["doc-1_0"]
        assert entry.metadata["workspace_id"] == WORKSPACE
        assert entry.metadata["document_id"] == "doc-1"

        tags = await metadata_store.get_document_tags("doc-1")
        assert {t.name for t in tags} == {"invoice", "Acme Corp"}
        assert all(t.source is TagSource.AI_SUGGESTED for t in tags)

    @pytest.mark.asyncio
    async def test_embedding_failure_midway_keeps_earlier_chunks(self, metadata_store) -> None:
        words = numbered_words(30).split()
        words[12] = "poison"  # first word of chunk 2
        embeddings = MockEmbeddingProvider(fail_when=lambda text: "poison" in text)
        harness = build_harness(
            metadata_store,
            embeddings=embeddings,
            chunker=TextChunker(target_tokens=8, overlap_tokens=0),
        )
        await _seed(harness, " ".join(words))

        outcome = await harness.pipeline.process("doc-1")

        assert outcome.status is DocumentStatus.ERROR
        assert outcome.chunk_count == 2
        doc = await metadata_store.get_document("doc-1")
        assert doc.status is DocumentStatus.ERROR
        assert doc.error_message
        assert await metadata_store.list_chunk_ids("doc-1") == ["doc-1_0", "doc-1_1"]
        assert "doc-1_2" not in harness.vectors.entries
        # Processing stopped at the failing chunk.
        assert len(embeddings.calls) == 3

    @pytest.mark.asyncio
    async def test_reingestion_is_idempotent(self, metadata_store) -> None:
        harness = build_harness(
            metadata_store,
            llm=ScriptedLLM(default_completion=_TAG_REPLY),
            chunker=TextChunker(target_tokens=8, overlap_tokens=0),
        )
        await _seed(harness, numbered_words(20))

        await harness.pipeline.process("doc-1")
        first_chunks = await metadata_store.list_chunk_ids("doc-1")
        first_counts = {t.name: t.usage_count for t in await metadata_store.list_tags([WORKSPACE])}

        await harness.pipeline.process("doc-1")

        assert await metadata_store.list_chunk_ids("doc-1") == first_chunks
        assert {t.name: t.usage_count for t in await metadata_store.list_tags([WORKSPACE])} == first_counts
        assert len(await metadata_store.get_document_tags("doc-1")) == 2

    @pytest.mark.asyncio
    async def test_shorter_text_on_rerun_removes_stale_chunks(self, metadata_store) -> None:
        harness = build_harness(metadata_store, chunker=TextChunker(target_tokens=8, overlap_tokens=0))
        doc = await _seed(harness, numbered_words(30))
        await harness.pipeline.process("doc-1")
        assert len(await metadata_store.list_chunk_ids("doc-1")) == 5

        await harness.blobs.put(doc.file_key, numbered_words(10).encode())
        outcome = await harness.pipeline.process("doc-1")

        assert outcome.chunk_count == 2
        assert await metadata_store.list_chunk_ids("doc-1") == ["doc-1_0", "doc-1_1"]
        assert sorted(harness.vectors.entries) == ["doc-1_0", "doc-1_1"]

    @pytest.mark.asyncio
    async def test_missing_blob_marks_error(self, metadata_store) -> None:
        harness = build_harness(metadata_store)
        await _seed(harness, "text", store_blob=False)

        outcome = await harness.pipeline.process("doc-1")

        assert outcome.status is DocumentStatus.ERROR
        assert outcome.error_message == FILE_NOT_FOUND_MESSAGE
        assert (await metadata_store.get_document("doc-1")).error_message == FILE_NOT_FOUND_MESSAGE

    @pytest.mark.asyncio
    async def test_degraded_reasons_recorded_on_ready_document(self, metadata_store) -> None:
        harness = build_harness(metadata_store, llm=ScriptedLLM(default_completion="no json here"))
        await _seed(harness, b"PK\x03\x04", mime_type="application/zip")

        outcome = await harness.pipeline.process("doc-1")

        assert outcome.status is DocumentStatus.READY
        assert outcome.degraded_reasons == ["unsupported_mime_type", "tagging_parse_failed"]
        doc = await metadata_store.get_document("doc-1")
        assert doc.degraded_reason == "unsupported_mime_type,tagging_parse_failed"
        assert harness.blobs.blobs[doc.text_key] == b"[Unsupported document type: application/zip]"

    @pytest.mark.asyncio
    async def test_tagging_failure_does_not_block_ready(self, metadata_store) -> None:
        from docvault.utils.errors import InferenceError

        harness = build_harness(
            metadata_store,
            llm=ScriptedLLM(complete_responses=[InferenceError(message="llm down")]),
        )
        await _seed(harness, "quarterly report")

        outcome = await harness.pipeline.process("doc-1")

        assert outcome.status is DocumentStatus.READY
        assert outcome.degraded_reasons == ["tagging_inference_failed"]

    @pytest.mark.asyncio
    async def test_unknown_document(self, metadata_store) -> None:
        harness = build_harness(metadata_store)
        with pytest.raises(NotFoundError):
            await harness.pipeline.process("missing")

    @pytest.mark.asyncio
    async def test_concurrent_embedding_preserves_order(self, metadata_store) -> None:
        harness = build_harness(metadata_store, chunker=TextChunker(target_tokens=8, overlap_tokens=0))
        harness.pipeline._embed_concurrency = 3
        await _seed(harness, numbered_words(30))

        outcome = await harness.pipeline.process("doc-1")

        assert outcome.chunk_count == 5
        assert await metadata_store.list_chunk_ids("doc-1") == [f"doc-1_{i}" for i in range(5)]


# ======================================================================
# IngestionDispatcher / IngestionQueue
# ======================================================================


def _mock_pipeline(*side_effect) -> MagicMock:
    pipeline = MagicMock()
    pipeline.process = AsyncMock(side_effect=list(side_effect))
    return pipeline


def _ready(doc_id: str) -> IngestionOutcome:
    return IngestionOutcome(document_id=doc_id, status=DocumentStatus.READY)


class TestIngestionDispatcher:
    def test_unknown_mode_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            IngestionDispatcher(_mock_pipeline(), mode="batch")

    def test_queued_mode_needs_queue(self) -> None:
        with pytest.raises(ConfigurationError):
            IngestionDispatcher(_mock_pipeline(), mode="queued")

    @pytest.mark.asyncio
    async def test_inline_returns_terminal_outcome(self) -> None:
        pipeline = _mock_pipeline(_ready("d1"))
        outcome = await IngestionDispatcher(pipeline).dispatch("d1")
        assert outcome.status is DocumentStatus.READY
        pipeline.process.assert_awaited_once_with("d1")

    @pytest.mark.asyncio
    async def test_queued_returns_pending_and_workers_process(self, metadata_store) -> None:
        harness = build_harness(metadata_store)
        await _seed(harness, "hello world")
        queue = IngestionQueue(harness.pipeline)
        dispatcher = IngestionDispatcher(harness.pipeline, mode="queued", queue=queue)

        outcome = await dispatcher.dispatch("doc-1")
        assert outcome.status is DocumentStatus.PENDING

        queue.start(workers=2)
        await queue.join()
        await queue.stop()

        assert (await metadata_store.get_document("doc-1")).status is DocumentStatus.READY
        assert queue.running is False

    @pytest.mark.asyncio
    async def test_queue_redelivers_then_succeeds(self) -> None:
        pipeline = _mock_pipeline(RuntimeError("blip"), _ready("d1"))
        queue = IngestionQueue(pipeline, max_attempts=3)
        queue.start(workers=1)
        await queue.enqueue("d1")
        await queue.join()
        await queue.stop()

        assert pipeline.process.await_count == 2
        assert queue.dead_letters == []

    @pytest.mark.asyncio
    async def test_queue_dead_letters_after_max_attempts(self) -> None:
        pipeline = _mock_pipeline(RuntimeError("a"), RuntimeError("b"))
        queue = IngestionQueue(pipeline, max_attempts=2)
        queue.start(workers=1)
        await queue.enqueue("d1")
        await queue.join()
        await queue.stop()

        assert queue.dead_letters == ["d1"]

    @pytest.mark.asyncio
    async def test_queue_drops_deleted_documents(self) -> None:
        pipeline = _mock_pipeline(NotFoundError(message="gone"))
        queue = IngestionQueue(pipeline, max_attempts=3)
        queue.start(workers=1)
        await queue.enqueue("d1")
        await queue.join()
        await queue.stop()

        assert pipeline.process.await_count == 1
        assert queue.dead_letters == []

    @pytest.mark.asyncio
    async def test_is_scheduled_until_processed(self) -> None:
        pipeline = _mock_pipeline(_ready("d1"))
        queue = IngestionQueue(pipeline)
        dispatcher = IngestionDispatcher(pipeline, mode="queued", queue=queue)

        await dispatcher.dispatch("d1")
        assert dispatcher.is_scheduled("d1") is True

        queue.start(workers=1)
        await queue.join()
        await queue.stop()

        assert dispatcher.is_scheduled("d1") is False


# ======================================================================
# LeaseReclaimer
# ======================================================================


class TestLeaseReclaimer:
    @pytest.mark.asyncio
    async def test_sweep_reclaims_and_redispatches(self, metadata_store) -> None:
        harness = build_harness(metadata_store)
        await _seed(harness, "stuck document text")
        await metadata_store.mark_processing("doc-1", lease_seconds=-60)

        reclaimed = await harness.reclaimer.sweep()

        assert reclaimed == ["doc-1"]
        assert (await metadata_store.get_document("doc-1")).status is DocumentStatus.READY

    @pytest.mark.asyncio
    async def test_live_lease_left_alone(self, metadata_store) -> None:
        harness = build_harness(metadata_store)
        await _seed(harness, "in flight")
        await metadata_store.mark_processing("doc-1", lease_seconds=600)

        assert await harness.reclaimer.sweep() == []
        assert (await metadata_store.get_document("doc-1")).status is DocumentStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_dispatch_failure_is_logged_not_raised(self) -> None:
        store = MagicMock()
        store.reclaim_expired_leases = AsyncMock(return_value=["d1", "d2"])
        store.find_stale_pending = AsyncMock(return_value=[])
        dispatcher = MagicMock()
        dispatcher.dispatch = AsyncMock(side_effect=[NotFoundError(message="gone"), _ready("d2")])

        assert await LeaseReclaimer(store, dispatcher).sweep() == ["d1", "d2"]
        assert dispatcher.dispatch.await_count == 2

    @pytest.mark.asyncio
    async def test_pending_dropped_by_stopped_queue_is_redispatched(self, metadata_store) -> None:
        queued = build_harness(metadata_store, mode="queued")
        await _seed(queued, "queued but never run")
        await queued.dispatcher.dispatch("doc-1")
        await queued.dispatcher.queue.stop()
        assert queued.dispatcher.is_scheduled("doc-1") is False

        # A fresh process over the same store.
        restarted = build_harness(metadata_store, blobs=queued.blobs)
        reclaimed = await restarted.reclaimer.sweep()

        assert reclaimed == ["doc-1"]
        assert (await metadata_store.get_document("doc-1")).status is DocumentStatus.READY
        assert await restarted.reclaimer.sweep() == []

    @pytest.mark.asyncio
    async def test_pending_still_queued_is_left_alone(self, metadata_store) -> None:
        harness = build_harness(metadata_store, mode="queued")
        await _seed(harness, "waiting for a worker")
        await harness.dispatcher.dispatch("doc-1")

        assert await harness.reclaimer.sweep() == []
        assert harness.dispatcher.queue.is_scheduled("doc-1") is True

        await harness.dispatcher.queue.stop()

    @pytest.mark.asyncio
    async def test_recent_pending_waits_for_grace_period(self, metadata_store) -> None:
        harness = build_harness(metadata_store)
        await _seed(harness, "just uploaded")

        reclaimer = LeaseReclaimer(metadata_store, harness.dispatcher, pending_grace_seconds=600)

        assert await reclaimer.sweep() == []
        assert (await metadata_store.get_document("doc-1")).status is DocumentStatus.PENDING
