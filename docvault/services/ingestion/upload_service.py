"""Upload handling: validation, dedup, blob placement and dispatch.

Each accepted file becomes a ``pending`` document whose original bytes
live at ``documents/{workspace}/{doc_id}/{filename}``, and is then handed
to the :class:`IngestionDispatcher`.  Identical bytes uploaded again to
the same workspace resolve to the existing document with status
``"duplicate"`` instead of creating a second one.
"""

from __future__ import annotations

import hashlib
import uuid
from pathlib import PurePosixPath
from typing import TYPE_CHECKING

import structlog

from docvault.models.auth import Principal
from docvault.models.documents import Document, DocumentStatus
from docvault.models.ingestion import UploadFile, UploadResult
from docvault.services.access import choose_writable_workspace
from docvault.services.ingestion.extractor import DOCX_MIME, XLSX_MIME
from docvault.utils.errors import ConflictError, DocVaultError, InvalidRequestError, StorageError

if TYPE_CHECKING:
    from docvault.interfaces.blob_store import IBlobStore
    from docvault.interfaces.metadata_store import IMetadataStore
    from docvault.services.ingestion.dispatcher import IngestionDispatcher

logger = structlog.get_logger(logger_name=__name__)

DUPLICATE_STATUS = "duplicate"

ALLOWED_MIME_TYPES = frozenset({
    "application/pdf",
    DOCX_MIME,
    XLSX_MIME,
    "image/jpeg",
    "image/png",
    "text/plain",
    "message/rfc822",
})

_EXTENSION_MIME_TYPES: dict[str, str] = {
    "pdf": "application/pdf",
    "docx": DOCX_MIME,
    "xlsx": XLSX_MIME,
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "txt": "text/plain",
    "eml": "message/rfc822",
}

_GENERIC_MIME = "application/octet-stream"


def guess_mime_type(filename: str, declared: str | None = None) -> str:
    """Use the declared type unless it is missing or generic, else the extension."""
    if declared:
        declared = declared.split(";", 1)[0].strip().lower()
        if declared and declared != _GENERIC_MIME:
            return declared
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    return _EXTENSION_MIME_TYPES.get(ext, _GENERIC_MIME)


def _safe_filename(filename: str) -> str:
    """Strip directory parts so the name cannot escape its blob prefix."""
    name = PurePosixPath(filename.replace("\\", "/")).name
    return name or "untitled"


class UploadService:
    """Accepts uploads on behalf of a principal.

    Parameters
    ----------
    metadata_store:
        Receives the new document rows.
    blob_store:
        Receives the original bytes.
    dispatcher:
        Schedules the ingestion run for each new document.
    max_upload_bytes:
        Per-file size limit.
    max_files:
        Files accepted per call.
    """

    def __init__(
        self,
        metadata_store: IMetadataStore,
        blob_store: IBlobStore,
        dispatcher: IngestionDispatcher,
        max_upload_bytes: int = 50 * 1024 * 1024,
        max_files: int = 100,
    ) -> None:
        self._store = metadata_store
        self._blobs = blob_store
        self._dispatcher = dispatcher
        self._max_upload_bytes = max_upload_bytes
        self._max_files = max_files

    async def upload(
        self,
        principal: Principal,
        files: list[UploadFile],
        workspace_id: str | None = None,
    ) -> list[UploadResult]:
        """Store and dispatch *files*; one result per file, in order.

        All files are validated before any is stored, so a rejected batch
        leaves no partial uploads behind.

        Raises
        ------
        PermissionDeniedError
            If the principal has no writable workspace.
        InvalidRequestError
            On an empty or oversized batch, an oversized file, or an
            unsupported file type.
        """
        target_workspace = choose_writable_workspace(principal, workspace_id)

        if not files:
            raise InvalidRequestError(message="No files provided")
        if len(files) > self._max_files:
            raise InvalidRequestError(message=f"Maximum {self._max_files} files per upload")

        limit_mb = self._max_upload_bytes // (1024 * 1024)
        mime_types: list[str] = []
        for file in files:
            if len(file.content) > self._max_upload_bytes:
                raise InvalidRequestError(message=f"File {file.filename} exceeds {limit_mb}MB limit")
            mime_type = guess_mime_type(file.filename, file.content_type)
            if mime_type not in ALLOWED_MIME_TYPES:
                raise InvalidRequestError(message=f"Unsupported file type: {mime_type}")
            mime_types.append(mime_type)

        results: list[UploadResult] = []
        for file, mime_type in zip(files, mime_types):
            results.append(await self._upload_one(principal, target_workspace, file, mime_type))

        logger.info(
            "upload_complete",
            workspace_id=target_workspace,
            file_count=len(files),
            duplicates=sum(1 for r in results if r.status == DUPLICATE_STATUS),
        )
        return results

    async def _upload_one(
        self,
        principal: Principal,
        workspace_id: str,
        file: UploadFile,
        mime_type: str,
    ) -> UploadResult:
        content_hash = hashlib.sha256(file.content).hexdigest()

        existing = await self._store.find_document_by_hash(workspace_id, content_hash)
        if existing is not None:
            logger.info("upload_duplicate", document_id=existing.id, workspace_id=workspace_id)
            return UploadResult(id=existing.id, title=existing.title, status=DUPLICATE_STATUS)

        document_id = str(uuid.uuid4())
        filename = _safe_filename(file.filename)
        file_key = f"documents/{workspace_id}/{document_id}/{filename}"
        title = PurePosixPath(filename).stem or filename

        await self._blobs.put(file_key, file.content)
        try:
            await self._store.create_document(
                Document(
                    id=document_id,
                    workspace_id=workspace_id,
                    user_id=principal.user_id,
                    title=title,
                    file_key=file_key,
                    content_hash=content_hash,
                    mime_type=mime_type,
                    file_size_bytes=len(file.content),
                )
            )
        except ConflictError:
            # A concurrent upload of the same bytes won the unique index.
            await self._blobs.delete(file_key)
            winner = await self._store.find_document_by_hash(workspace_id, content_hash)
            if winner is None:
                raise
            return UploadResult(id=winner.id, title=winner.title, status=DUPLICATE_STATUS)
        except StorageError:
            await self._blobs.delete(file_key)
            raise

        try:
            outcome = await self._dispatcher.dispatch(document_id)
        except DocVaultError as exc:
            logger.error("upload_dispatch_failed", document_id=document_id, error=str(exc))
            return UploadResult(
                id=document_id,
                title=title,
                status=DocumentStatus.ERROR.value,
                error_message=str(exc),
            )
        return UploadResult(
            id=document_id,
            title=title,
            status=DocumentStatus(outcome.status).value,
            error_message=outcome.error_message,
        )
