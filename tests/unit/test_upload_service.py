"""Unit tests for UploadService: validation, dedup, blob placement and dispatch."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from docvault.models.documents import DocumentStatus
from docvault.models.ingestion import UploadFile
from docvault.services.ingestion.upload_service import DUPLICATE_STATUS, UploadService, guess_mime_type
from docvault.utils.errors import InvalidRequestError, PermissionDeniedError, StorageError
from tests.conftest import WORKSPACE


def _file(name: str = "invoice.txt", content: bytes = b"Invoice total 42", content_type: str | None = None) -> UploadFile:
    return UploadFile(filename=name, content=content, content_type=content_type)


class TestGuessMimeType:
    @pytest.mark.parametrize(
        ("filename", "declared", "expected"),
        [
            ("a.pdf", None, "application/pdf"),
            ("a.PDF", "application/octet-stream", "application/pdf"),
            ("scan.jpeg", None, "image/jpeg"),
            ("mail.eml", None, "message/rfc822"),
            ("notes", None, "application/octet-stream"),
            ("a.bin", "text/plain; charset=utf-8", "text/plain"),
        ],
    )
    def test_guess(self, filename, declared, expected) -> None:
        assert guess_mime_type(filename, declared) == expected


class TestUploadService:
    @pytest.mark.asyncio
    async def test_upload_stores_and_ingests(self, harness, editor) -> None:
        [result] = await harness.uploads.upload(editor, [_file("March Invoice.txt")])

        assert result.title == "March Invoice"
        assert result.status == DocumentStatus.READY.value
        doc = await harness.store.get_document(result.id)
        assert doc.workspace_id == WORKSPACE
        assert doc.user_id == editor.user_id
        assert doc.file_key == f"documents/{WORKSPACE}/{doc.id}/March Invoice.txt"
        assert doc.mime_type == "text/plain"
        assert harness.blobs.blobs[doc.file_key] == b"Invoice total 42"

    @pytest.mark.asyncio
    async def test_duplicate_resolves_to_existing(self, harness, editor) -> None:
        [first] = await harness.uploads.upload(editor, [_file("a.txt")])
        [second] = await harness.uploads.upload(editor, [_file("copy.txt")])

        assert second.status == DUPLICATE_STATUS
        assert second.id == first.id
        page = await harness.store.list_documents([WORKSPACE])
        assert page.total == 1

    @pytest.mark.asyncio
    async def test_same_bytes_in_other_workspace_is_new(self, harness, editor, outsider) -> None:
        [first] = await harness.uploads.upload(editor, [_file()])
        [second] = await harness.uploads.upload(outsider, [_file()])
        assert second.status != DUPLICATE_STATUS
        assert second.id != first.id

    @pytest.mark.asyncio
    async def test_directory_parts_stripped_from_filename(self, harness, editor) -> None:
        [result] = await harness.uploads.upload(editor, [_file("../../etc/evil.txt")])
        doc = await harness.store.get_document(result.id)
        assert doc.file_key.endswith(f"/{doc.id}/evil.txt")

    @pytest.mark.asyncio
    async def test_viewer_cannot_upload(self, harness, viewer) -> None:
        with pytest.raises(PermissionDeniedError):
            await harness.uploads.upload(viewer, [_file()])

    @pytest.mark.asyncio
    async def test_empty_batch_rejected(self, harness, editor) -> None:
        with pytest.raises(InvalidRequestError, match="No files provided"):
            await harness.uploads.upload(editor, [])

    @pytest.mark.asyncio
    async def test_unsupported_type_rejects_whole_batch(self, harness, editor) -> None:
        with pytest.raises(InvalidRequestError, match="Unsupported file type"):
            await harness.uploads.upload(editor, [_file("ok.txt"), _file("archive.zip", b"PK")])
        assert harness.blobs.blobs == {}

    @pytest.mark.asyncio
    async def test_size_and_count_limits(self, harness, editor) -> None:
        service = UploadService(harness.store, harness.blobs, harness.dispatcher, max_upload_bytes=4, max_files=1)
        with pytest.raises(InvalidRequestError, match="exceeds"):
            await service.upload(editor, [_file(content=b"12345")])
        with pytest.raises(InvalidRequestError, match="Maximum 1 files"):
            await service.upload(editor, [_file("a.txt", b"1"), _file("b.txt", b"2")])

    @pytest.mark.asyncio
    async def test_dispatch_error_reported_per_file(self, harness, editor) -> None:
        harness.dispatcher.dispatch = AsyncMock(side_effect=StorageError(message="disk full"))
        service = UploadService(harness.store, harness.blobs, harness.dispatcher)

        [result] = await service.upload(editor, [_file()])

        assert result.status == DocumentStatus.ERROR.value
        assert "disk full" in result.error_message
