"""Local-filesystem blob store.

Maps blob keys such as ``documents/{ws}/{doc_id}/{filename}`` onto files
under a root directory.  File I/O runs in ``asyncio.to_thread`` so large
uploads do not block the event loop.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import structlog

from docvault.interfaces.blob_store import IBlobStore
from docvault.utils.errors import StorageError

logger = structlog.get_logger(logger_name=__name__)


class FilesystemBlobStore(IBlobStore):
    """Blob store rooted at a local directory."""

    def __init__(self, root: str | Path = "data/blobs") -> None:
        self._root = Path(root).resolve()

    def _path_for(self, key: str) -> Path:
        """Resolve *key* under the root, rejecting keys that escape it."""
        if not key or key.startswith("/"):
            raise StorageError(message=f"Invalid blob key: {key!r}", provider_name=self.get_provider_name())
        path = (self._root / key).resolve()
        if self._root not in path.parents:
            raise StorageError(message=f"Invalid blob key: {key!r}", provider_name=self.get_provider_name())
        return path

    async def put(self, key: str, data: bytes) -> None:
        path = self._path_for(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_name(path.name + ".tmp")
            tmp_path.write_bytes(data)
            tmp_path.replace(path)

        try:
            await asyncio.to_thread(_write)
        except OSError as exc:
            raise StorageError(
                message=f"Failed to write blob {key}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.debug("blob_written", key=key, size_bytes=len(data))

    async def get(self, key: str) -> bytes | None:
        path = self._path_for(key)

        def _read() -> bytes | None:
            if not path.is_file():
                return None
            return path.read_bytes()

        try:
            return await asyncio.to_thread(_read)
        except OSError as exc:
            raise StorageError(
                message=f"Failed to read blob {key}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def delete(self, key: str) -> None:
        path = self._path_for(key)
        try:
            await asyncio.to_thread(path.unlink, missing_ok=True)
        except OSError as exc:
            raise StorageError(
                message=f"Failed to delete blob {key}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.debug("blob_deleted", key=key)

    def get_provider_name(self) -> str:
        return "filesystem"
