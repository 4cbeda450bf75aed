"""Orchestrator for the per-document ingestion pipeline.

Pipeline stages: **extract -> store text -> chunk -> embed -> index -> tag**.

The :class:`IngestionPipeline` coordinates its collaborators (blob store,
extractor, chunker, embedder, vector index, metadata store, tagger)
without any of them knowing about each other.  One call to
:meth:`IngestionPipeline.process` drives a document through its status
machine::

    pending -> processing -> ready
                          -> error

Extraction and tagging degrade instead of failing; their reasons are
persisted on the document.  Any other failure (blob write, embedding,
index or store errors) moves the document to ``error`` with the
exception text.  Chunks written before the failure stay in place.

Re-running the pipeline on the same document is safe: chunk ids are
deterministic, chunk and vector writes are upserts, stale chunks from an
earlier run are removed, and tag links are insert-if-absent.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

import structlog

from docvault.models.documents import Chunk, Document, DocumentStatus
from docvault.models.ingestion import IngestionOutcome, TextChunk
from docvault.models.tags import TagSource
from docvault.models.vector import VectorEntry
from docvault.services.ingestion.extractor import resolve_strategy
from docvault.utils.concurrency import throttled_gather
from docvault.utils.errors import DocVaultError, NotFoundError

if TYPE_CHECKING:
    from docvault.interfaces.blob_store import IBlobStore
    from docvault.interfaces.metadata_store import IMetadataStore
    from docvault.interfaces.vector_index import IVectorIndex
    from docvault.services.ingestion.chunker import TextChunker
    from docvault.services.ingestion.embedder import Embedder
    from docvault.services.ingestion.extractor import TextExtractor
    from docvault.services.ingestion.tagger import Tagger

logger = structlog.get_logger(logger_name=__name__)

FILE_NOT_FOUND_MESSAGE = "File not found in storage"


def text_key_for(document_id: str) -> str:
    """Blob key of a document's extracted text."""
    return f"text/{document_id}.txt"


class IngestionPipeline:
    """Drives one document from ``pending`` to ``ready`` or ``error``.

    Parameters
    ----------
    metadata_store:
        Document, chunk and tag persistence.
    blob_store:
        Holds the original upload and receives the extracted text.
    vector_index:
        Receives one vector per chunk.
    embedder:
        Timeout-bounded embedding wrapper.
    extractor:
        Turns the original bytes into text (never raises).
    chunker:
        Splits the text into overlapping windows.
    tagger:
        Suggests tags from the text (never raises).
    lease_seconds:
        Length of the processing lease, renewed after each chunk window.
    embed_concurrency:
        Number of chunk embeddings computed concurrently per window.
        Writes always happen in chunk order.
    tag_vocabulary_size:
        Number of existing workspace tags shown to the tagger.
    """

    def __init__(
        self,
        metadata_store: IMetadataStore,
        blob_store: IBlobStore,
        vector_index: IVectorIndex,
        embedder: Embedder,
        extractor: TextExtractor,
        chunker: TextChunker,
        tagger: Tagger,
        lease_seconds: int = 300,
        embed_concurrency: int = 1,
        tag_vocabulary_size: int = 50,
    ) -> None:
        self._store = metadata_store
        self._blobs = blob_store
        self._vectors = vector_index
        self._embedder = embedder
        self._extractor = extractor
        self._chunker = chunker
        self._tagger = tagger
        self._lease_seconds = lease_seconds
        self._embed_concurrency = max(1, embed_concurrency)
        self._tag_vocabulary_size = tag_vocabulary_size

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def process(self, document_id: str) -> IngestionOutcome:
        """Run the full pipeline for one document.

        Returns
        -------
        IngestionOutcome
            The terminal status reached.  Pipeline failures are reported
            here and on the document row, not raised.

        Raises
        ------
        NotFoundError
            If the document does not exist.
        """
        document = await self._store.get_document(document_id)
        if document is None:
            raise NotFoundError(message=f"Document {document_id} not found")

        start = time.monotonic()
        strategy = resolve_strategy(document.mime_type)
        log = logger.bind(document_id=document_id, strategy=strategy.value)

        await self._store.mark_processing(document_id, self._lease_seconds)
        log.info("ingestion_started", mime_type=document.mime_type)

        degraded: list[str] = []
        written: list[str] = []
        try:
            blob = await self._blobs.get(document.file_key)
            if blob is None:
                log.warning("ingestion_blob_missing", file_key=document.file_key)
                await self._store.mark_error(document_id, FILE_NOT_FOUND_MESSAGE)
                return IngestionOutcome(
                    document_id=document_id,
                    status=DocumentStatus.ERROR,
                    error_message=FILE_NOT_FOUND_MESSAGE,
                )

            extraction = await self._extractor.extract(blob, document.mime_type, strategy)
            if extraction.degraded_reason:
                degraded.append(extraction.degraded_reason)

            text_key = text_key_for(document_id)
            await self._blobs.put(text_key, extraction.text.encode("utf-8"))

            await self._index_chunks(document, extraction.text, written)

            tag_count, tagging_reason = await self._auto_tag(document, extraction.text)
            if tagging_reason:
                degraded.append(tagging_reason)

            degraded_reason = ",".join(degraded) or None
            await self._store.mark_ready(
                document_id,
                text_key=text_key,
                page_count=extraction.page_count,
                degraded_reason=degraded_reason,
            )
        except Exception as exc:
            error_message = str(exc) or exc.__class__.__name__
            log.error(
                "ingestion_failed",
                error=error_message,
                error_type=exc.__class__.__name__,
                chunks_written=len(written),
            )
            await self._store.mark_error(
                document_id,
                error_message,
                degraded_reason=",".join(degraded) or None,
            )
            return IngestionOutcome(
                document_id=document_id,
                status=DocumentStatus.ERROR,
                chunk_count=len(written),
                error_message=error_message,
                degraded_reasons=degraded,
            )

        log.info(
            "ingestion_complete",
            chunk_count=len(written),
            tag_count=tag_count,
            degraded=degraded or None,
            elapsed_s=round(time.monotonic() - start, 2),
        )
        return IngestionOutcome(
            document_id=document_id,
            status=DocumentStatus.READY,
            chunk_count=len(written),
            tag_count=tag_count,
            degraded_reasons=degraded,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _index_chunks(self, document: Document, text: str, written: list[str]) -> None:
        """Embed, index and persist every chunk in order.

        Appends each persisted chunk id to *written*.  Stops at the first
        chunk whose embedding or write fails, leaving the earlier chunks in
        place, and re-raises that failure.  Chunks
        from an earlier run that this run did not rewrite are removed
        either way.
        """
        chunks = self._chunker.chunk(text)
        previous_ids = set(await self._store.list_chunk_ids(document.id))

        try:
            for window_start in range(0, len(chunks), self._embed_concurrency):
                window = chunks[window_start : window_start + self._embed_concurrency]
                vectors = await throttled_gather(
                    [self._embedder.embed(c.text) for c in window],
                    limit=self._embed_concurrency,
                )
                for text_chunk, vector in zip(window, vectors):
                    if isinstance(vector, BaseException):
                        logger.warning(
                            "chunk_embedding_failed",
                            document_id=document.id,
                            chunk_index=text_chunk.index,
                            error=str(vector),
                        )
                        raise vector
                    await self._write_chunk(document, text_chunk, vector)
                    written.append(Chunk.make_id(document.id, text_chunk.index))
                await self._store.renew_lease(document.id, self._lease_seconds)
        finally:
            await self._remove_stale_chunks(document.id, previous_ids - set(written))

    async def _write_chunk(self, document: Document, text_chunk: TextChunk, vector: list[float]) -> None:
        chunk_id = Chunk.make_id(document.id, text_chunk.index)
        await self._vectors.upsert([
            VectorEntry.for_chunk(
                chunk_id=chunk_id,
                vector=vector,
                document_id=document.id,
                workspace_id=document.workspace_id,
                chunk_index=text_chunk.index,
                text=text_chunk.text,
            )
        ])
        await self._store.upsert_chunk(
            Chunk(
                id=chunk_id,
                document_id=document.id,
                chunk_index=text_chunk.index,
                text=text_chunk.text,
                token_count=text_chunk.token_count,
            )
        )

    async def _remove_stale_chunks(self, document_id: str, stale_ids: set[str]) -> None:
        if not stale_ids:
            return
        ordered = sorted(stale_ids)
        try:
            await self._vectors.delete_by_ids(ordered)
            await self._store.delete_chunks(ordered)
        except DocVaultError as exc:
            # Orphans are picked up as stale ids by the next run.
            logger.warning("stale_chunk_cleanup_failed", document_id=document_id, error=str(exc))
            return
        logger.info("stale_chunks_removed", document_id=document_id, count=len(ordered))

    async def _auto_tag(self, document: Document, text: str) -> tuple[int, str | None]:
        """Apply tagger suggestions as ``ai_suggested`` links.

        Returns the number of suggestions applied and the tagger's
        degraded reason, if any.
        """
        vocabulary = await self._store.list_top_tags(document.workspace_id, self._tag_vocabulary_size)
        result = await self._tagger.suggest_tags(text, vocabulary)

        applied = 0
        for suggestion in result.tags:
            try:
                tag = await self._store.find_or_create_tag(
                    document.workspace_id, suggestion.name, suggestion.category
                )
                await self._store.associate_tag(
                    document.id,
                    tag.id,
                    TagSource.AI_SUGGESTED,
                    suggestion.confidence,
                )
            except DocVaultError as exc:
                logger.warning(
                    "tag_application_failed",
                    document_id=document.id,
                    tag=suggestion.name,
                    error=str(exc),
                )
                continue
            applied += 1
        return applied, result.degraded_reason
