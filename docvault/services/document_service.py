"""Document reads and mutations on behalf of a principal.

Visibility follows workspace membership: a document in a workspace the
caller has no role in is reported as *not found*.  Mutations need
``editor`` or better, except delete, which is reserved for the uploader
or a workspace owner.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from docvault.models.auth import Principal, Role
from docvault.models.documents import Document, DocumentDetail, DocumentPage, DocumentStatus
from docvault.models.ingestion import IngestionOutcome
from docvault.services.access import accessible_workspaces, require_role, require_visible
from docvault.services.ingestion.pipeline import FILE_NOT_FOUND_MESSAGE, text_key_for
from docvault.utils.errors import InvalidRequestError, NotFoundError, PermissionDeniedError

if TYPE_CHECKING:
    from docvault.interfaces.blob_store import IBlobStore
    from docvault.interfaces.metadata_store import IMetadataStore
    from docvault.interfaces.vector_index import IVectorIndex
    from docvault.services.ingestion.dispatcher import IngestionDispatcher

logger = structlog.get_logger(logger_name=__name__)

MAX_PAGE_SIZE = 100
TEXT_NOT_EXTRACTED_MESSAGE = "Text not yet extracted"


class DocumentService:
    """List, read, rename, delete and reprocess documents.

    Parameters
    ----------
    metadata_store:
        Document rows, chunks and tag links.
    blob_store:
        Original bytes and extracted text.
    vector_index:
        Chunk vectors, removed on delete.
    dispatcher:
        Re-runs ingestion on reprocess.
    """

    def __init__(
        self,
        metadata_store: IMetadataStore,
        blob_store: IBlobStore,
        vector_index: IVectorIndex,
        dispatcher: IngestionDispatcher,
    ) -> None:
        self._store = metadata_store
        self._blobs = blob_store
        self._vectors = vector_index
        self._dispatcher = dispatcher

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_documents(
        self,
        principal: Principal,
        workspace_id: str | None = None,
        status: DocumentStatus | str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> DocumentPage:
        workspace_ids = accessible_workspaces(principal, workspace_id)
        if not workspace_ids:
            return DocumentPage()
        if status is not None and not isinstance(status, DocumentStatus):
            try:
                status = DocumentStatus(status)
            except ValueError as exc:
                raise InvalidRequestError(message=f"Unknown status: {status}") from exc
        return await self._store.list_documents(
            workspace_ids,
            status=status,
            limit=max(1, min(limit, MAX_PAGE_SIZE)),
            offset=max(0, offset),
        )

    async def get_document(self, principal: Principal, document_id: str) -> DocumentDetail:
        document = await self._visible_document(principal, document_id)
        tags = await self._store.get_document_tags(document.id)
        return DocumentDetail(document=document, tags=tags)

    async def download(self, principal: Principal, document_id: str) -> tuple[bytes, str, str]:
        """Return ``(bytes, mime_type, filename)`` of the original upload."""
        document = await self._visible_document(principal, document_id)
        data = await self._blobs.get(document.file_key)
        if data is None:
            raise NotFoundError(message=FILE_NOT_FOUND_MESSAGE)
        return data, document.mime_type, document.filename

    async def get_text(self, principal: Principal, document_id: str) -> str:
        """Return the extracted text of a ``ready`` document."""
        document = await self._visible_document(principal, document_id)
        if document.status is not DocumentStatus.READY or not document.text_key:
            raise InvalidRequestError(message=TEXT_NOT_EXTRACTED_MESSAGE)
        data = await self._blobs.get(document.text_key)
        if data is None:
            raise NotFoundError(message="Text not found in storage")
        return data.decode("utf-8", errors="replace")

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def update_title(self, principal: Principal, document_id: str, title: str) -> Document:
        document = await self._visible_document(principal, document_id)
        require_role(principal, document.workspace_id, Role.EDITOR)
        title = (title or "").strip()
        if not title:
            raise InvalidRequestError(message="Title is required")
        await self._store.update_document_title(document.id, title)
        logger.info("document_renamed", document_id=document.id)
        return document.model_copy(update={"title": title})

    async def delete_document(self, principal: Principal, document_id: str) -> None:
        """Remove the document everywhere: blobs, vectors, chunks, tag links, row."""
        document = await self._visible_document(principal, document_id)
        role = principal.role_in(document.workspace_id)
        if document.user_id != principal.user_id and role is not Role.OWNER:
            raise PermissionDeniedError(message="Insufficient permissions")

        chunk_ids = await self._store.delete_document(document.id)
        if chunk_ids:
            await self._vectors.delete_by_ids(chunk_ids)
        await self._blobs.delete(document.file_key)
        await self._blobs.delete(document.text_key or text_key_for(document.id))
        logger.info("document_deleted", document_id=document.id, chunk_count=len(chunk_ids))

    async def reprocess(self, principal: Principal, document_id: str) -> IngestionOutcome:
        """Reset the document to ``pending`` and dispatch ingestion again."""
        document = await self._visible_document(principal, document_id)
        require_role(principal, document.workspace_id, Role.EDITOR)
        if document.status is DocumentStatus.PROCESSING:
            raise InvalidRequestError(message="Document is already processing")
        await self._store.reset_to_pending(document.id)
        logger.info("document_reprocess_requested", document_id=document.id)
        return await self._dispatcher.dispatch(document.id)

    async def _visible_document(self, principal: Principal, document_id: str) -> Document:
        document = await self._store.get_document(document_id)
        if document is None:
            raise NotFoundError(message="Document not found")
        require_visible(principal, document.workspace_id)
        return document
