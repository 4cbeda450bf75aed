"""Utility modules for DocVault.

- **errors** -- Domain exception hierarchy rooted at DocVaultError; every
  caller-facing error carries a stable message and a ``status_code``.
- **logging** -- structlog setup with a dual-renderer pattern: coloured
  console output in development, structured JSON in production.
- **concurrency** -- semaphore-bounded gather and timeout helpers that
  keep parallel inference calls under provider limits.
- **sse** -- ``data: {json}`` framing for streamed chat events.
"""

from docvault.utils.errors import (
    ConfigurationError,
    ConflictError,
    DocVaultError,
    InferenceError,
    InvalidRequestError,
    NotFoundError,
    PermissionDeniedError,
    ProviderUnavailableError,
    RAGError,
    StorageError,
)
from docvault.utils.logging import configure_logging, get_logger

__all__ = [
    "ConfigurationError",
    "ConflictError",
    "DocVaultError",
    "InferenceError",
    "InvalidRequestError",
    "NotFoundError",
    "PermissionDeniedError",
    "ProviderUnavailableError",
    "RAGError",
    "StorageError",
    "configure_logging",
    "get_logger",
]
