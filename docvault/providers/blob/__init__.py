"""Blob storage adapters."""

from docvault.providers.blob.filesystem_blob_store import FilesystemBlobStore

__all__ = ["FilesystemBlobStore"]
