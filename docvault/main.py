"""DocVault composition root.

Wires together all providers and services via constructor injection.
Loads configuration from ``.env`` and ``config/config.yaml`` and selects
the inference providers from the configured keys:

* LLM: OpenAI when ``OPENAI_API_KEY`` is set, otherwise a local Ollama.
* Embeddings: OpenAI when the key is set, otherwise Nomic through Ollama.

Callers (the CLI, tests, an HTTP layer) build a :class:`DocVaultServices`
once, ``await startup()``, use the services, and ``await shutdown()``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import structlog

from docvault.config.loader import load_config
from docvault.config.settings import Settings
from docvault.interfaces.authorizer import IAuthorizer
from docvault.interfaces.blob_store import IBlobStore
from docvault.interfaces.embedding_provider import IEmbeddingProvider
from docvault.interfaces.llm_provider import ILLMProvider
from docvault.interfaces.metadata_store import IMetadataStore
from docvault.interfaces.vector_index import IVectorIndex
from docvault.providers.auth.static_authorizer import StaticAuthorizer
from docvault.providers.blob.filesystem_blob_store import FilesystemBlobStore
from docvault.providers.embedding.nomic_embedding_provider import NomicEmbeddingProvider
from docvault.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from docvault.providers.llm.ollama_provider import OllamaLLMProvider
from docvault.providers.llm.openai_provider import OpenAILLMProvider
from docvault.providers.metadata.sqlite_metadata_store import SQLiteMetadataStore
from docvault.providers.vector_index.chromadb_index import ChromaDBVectorIndex
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
from docvault.utils.errors import ProviderUnavailableError

logger = structlog.get_logger(logger_name=__name__)


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------


def _build_llm_provider(app_settings: Settings) -> ILLMProvider:
    """Priority: OpenAI (key set) -> Ollama (always constructible)."""
    if app_settings.openai_api_key:
        return OpenAILLMProvider(settings=app_settings)
    return OllamaLLMProvider(settings=app_settings)


def _build_embedding_provider(app_settings: Settings) -> IEmbeddingProvider:
    """Priority: OpenAI (key set) -> Nomic via Ollama."""
    if app_settings.openai_api_key:
        return OpenAIEmbeddingProvider(settings=app_settings)
    return NomicEmbeddingProvider(settings=app_settings)


# ---------------------------------------------------------------------------
# Service container
# ---------------------------------------------------------------------------


@dataclass
class DocVaultServices:
    """Every provider and service instance, built once per process."""

    settings: Settings
    config: dict[str, Any]
    authorizer: IAuthorizer
    llm: ILLMProvider
    embedding_provider: IEmbeddingProvider
    metadata_store: IMetadataStore
    blob_store: IBlobStore
    vector_index: IVectorIndex
    pipeline: IngestionPipeline
    dispatcher: IngestionDispatcher
    reclaimer: LeaseReclaimer
    uploads: UploadService
    documents: DocumentService
    tags: TagService
    retriever: Retriever
    chat: ChatService
    rag: RagSession
    queue: IngestionQueue | None = None
    _reclaim_task: asyncio.Task[None] | None = field(default=None, repr=False)

    async def startup(self, run_reclaimer: bool = False) -> None:
        """Create tables, start queue workers and optionally the lease sweeper."""
        await self.metadata_store.initialize()
        if self.queue is not None and not self.queue.running:
            self.queue.start(workers=self.settings.ingestion_workers)
        if run_reclaimer and self._reclaim_task is None:
            self._reclaim_task = asyncio.create_task(
                self.reclaimer.run_forever(self.settings.reclaim_interval_seconds)
            )
        logger.info(
            "docvault_started",
            llm=self.llm.get_provider_name(),
            embeddings=self.embedding_provider.get_provider_name(),
            vector_index=self.vector_index.get_provider_name(),
            ingestion_mode=self.dispatcher.mode,
        )

    async def shutdown(self, drain: bool = True) -> None:
        """Stop background work; with *drain*, finish queued ingestion first."""
        if self._reclaim_task is not None:
            self._reclaim_task.cancel()
            try:
                await self._reclaim_task
            except asyncio.CancelledError:
                pass
            self._reclaim_task = None
        if self.queue is not None and self.queue.running:
            if drain:
                await self.queue.join()
            await self.queue.stop()
        logger.info("docvault_stopped")

    async def check_providers(self) -> dict[str, bool]:
        """Check the LLM credentials and the embedding backend.

        Returns
        -------
        dict[str, bool]
            Availability keyed by provider name.

        Raises
        ------
        ProviderUnavailableError
            If either provider does not respond.
        """
        status = {
            self.llm.get_provider_name(): await self.llm.validate_credentials(),
            self.embedding_provider.get_provider_name(): await asyncio.to_thread(
                self.embedding_provider.is_available
            ),
        }
        logger.info("provider_health_checked", providers=status)
        down = [name for name, available in status.items() if not available]
        if down:
            raise ProviderUnavailableError(
                message=f"Provider(s) not responding: {', '.join(down)}",
                provider_name=down[0],
            )
        return status


# ---------------------------------------------------------------------------
# Full DI assembly
# ---------------------------------------------------------------------------


def build_services(
    settings: Settings | None = None,
    config: dict[str, Any] | None = None,
) -> DocVaultServices:
    """Construct every provider and service from settings and YAML config."""
    app_settings = settings or Settings()
    app_config = config if config is not None else load_config(settings=app_settings)

    # -- Inference --
    llm = _build_llm_provider(app_settings)
    embedding_provider = _build_embedding_provider(app_settings)
    if not embedding_provider.is_available():
        logger.warning(
            "embedding_provider_unavailable",
            provider=embedding_provider.get_provider_name(),
        )

    # -- Storage --
    metadata_store = SQLiteMetadataStore(db_path=app_settings.metadata_db_path)
    blob_store = FilesystemBlobStore(root=app_settings.blob_root)
    vector_index = ChromaDBVectorIndex(
        persist_directory=app_settings.chromadb_persist_dir,
        collection_name=app_settings.chromadb_collection,
        expected_dimension=embedding_provider.get_dimension(),
    )
    authorizer = StaticAuthorizer.from_config(app_config)

    # -- Ingestion --
    timeout = app_settings.inference_timeout_seconds
    embedder = Embedder(embedding_provider, timeout_seconds=timeout)
    pipeline = IngestionPipeline(
        metadata_store=metadata_store,
        blob_store=blob_store,
        vector_index=vector_index,
        embedder=embedder,
        extractor=TextExtractor(
            llm,
            timeout_seconds=timeout,
            pdf_vision_max_pages=app_settings.pdf_vision_max_pages,
        ),
        chunker=TextChunker(
            target_tokens=app_settings.chunk_target_tokens,
            overlap_tokens=app_settings.chunk_overlap_tokens,
        ),
        tagger=Tagger(llm, timeout_seconds=timeout, max_chars=app_settings.tag_text_chars),
        lease_seconds=app_settings.processing_lease_seconds,
        embed_concurrency=app_settings.embed_concurrency,
        tag_vocabulary_size=app_settings.tag_vocabulary_size,
    )

    queue: IngestionQueue | None = None
    if app_settings.ingestion_mode == "queued":
        queue = IngestionQueue(pipeline, max_attempts=app_settings.ingestion_max_attempts)
    dispatcher = IngestionDispatcher(pipeline, mode=app_settings.ingestion_mode, queue=queue)

    # -- Services --
    services = DocVaultServices(
        settings=app_settings,
        config=app_config,
        authorizer=authorizer,
        llm=llm,
        embedding_provider=embedding_provider,
        metadata_store=metadata_store,
        blob_store=blob_store,
        vector_index=vector_index,
        pipeline=pipeline,
        dispatcher=dispatcher,
        reclaimer=LeaseReclaimer(
            metadata_store,
            dispatcher,
            pending_grace_seconds=app_settings.pending_reclaim_seconds,
        ),
        uploads=UploadService(
            metadata_store,
            blob_store,
            dispatcher,
            max_upload_bytes=app_settings.max_upload_bytes,
            max_files=app_settings.max_files_per_upload,
        ),
        documents=DocumentService(metadata_store, blob_store, vector_index, dispatcher),
        tags=TagService(metadata_store),
        retriever=Retriever(metadata_store, vector_index, embedder),
        chat=ChatService(metadata_store),
        rag=RagSession(
            metadata_store,
            vector_index,
            embedder,
            llm,
            timeout_seconds=app_settings.chat_timeout_seconds,
            top_k=app_settings.chat_context_top_k,
            max_documents=app_settings.chat_max_context_documents,
            history_messages=app_settings.chat_history_messages,
        ),
        queue=queue,
    )

    logger.info(
        "services_built",
        llm=llm.get_provider_name(),
        embeddings=embedding_provider.get_provider_name(),
        ingestion_mode=app_settings.ingestion_mode,
    )
    return services
