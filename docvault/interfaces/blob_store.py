"""Abstract base class for blob storage.

Holds original upload bytes under ``documents/{workspace}/{doc_id}/{filename}``
and extracted text under ``text/{doc_id}.txt``.  Keys are opaque strings
to the store.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementation: FilesystemBlobStore (docvault/providers/blob/)
class IBlobStore(ABC):
    """Contract for byte storage keyed by opaque string keys."""

    @abstractmethod
    async def put(self, key: str, data: bytes) -> None:
        """Write *data* under *key*, replacing any existing value.

        Raises
        ------
        docvault.utils.errors.StorageError
            If the write fails.
        """

    @abstractmethod
    async def get(self, key: str) -> bytes | None:
        """Return the bytes stored under *key*, or ``None`` if absent."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove *key*.  Deleting a missing key is not an error."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"filesystem"``."""
