"""Custom exception hierarchy for DocVault.

All application exceptions inherit from :class:`DocVaultError`, which
carries an optional ``provider_name`` so error handlers can identify which
backing service (e.g. "openai", "chromadb", "sqlite") caused the failure,
and a class-level ``status_code`` so every caller-facing failure maps to a
stable status class.

The hierarchy is organized by concern:

    DocVaultError  (base -- catch-all for any DocVault error)
    +-- NotFoundError            (document/tag/session missing or not visible)
    +-- PermissionDeniedError    (role insufficient for a mutation)
    +-- ConflictError            (uniqueness violation, e.g. tag name)
    +-- InvalidRequestError      (bad upload, unsupported type, bad state)
    +-- InferenceError           (embedding / generation / tagging failure)
    +-- StorageError             (blob or metadata store failure)
    +-- RAGError                 (vector index or embedding adapter failure)
    +-- ConfigurationError       (startup / missing config)
    +-- ProviderUnavailableError (external service down / unreachable)

Adapters wrap SDK exceptions into these types with ``raise ... from exc``
so the services never import ``openai`` or ``chromadb`` to catch errors.
Degraded text extraction is not an error: it is reported through
``ExtractionResult.degraded_reason``.
"""


class DocVaultError(Exception):
    """Base exception for all DocVault errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which backing service triggered the
    error.  The ``__str__`` method prefixes the provider name in brackets
    for structured log output, e.g. ``[openai] Request timed out``.
    """

    status_code: int = 500

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Caller-facing errors (surfaced directly, never retried)
# ---------------------------------------------------------------------------

class NotFoundError(DocVaultError):
    """Raised when a record does not exist or lies outside the caller's workspaces."""

    status_code = 404

    def __init__(
        self,
        message: str = "Not found",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class PermissionDeniedError(DocVaultError):
    """Raised when the caller's workspace role is insufficient for a mutation."""

    status_code = 403

    def __init__(
        self,
        message: str = "Insufficient permissions",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ConflictError(DocVaultError):
    """Raised when a write would violate a uniqueness rule."""

    status_code = 409

    def __init__(
        self,
        message: str = "Resource already exists",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class InvalidRequestError(DocVaultError):
    """Raised for malformed input or an operation invalid in the current state."""

    status_code = 400

    def __init__(
        self,
        message: str = "Invalid request",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Inference errors
# ---------------------------------------------------------------------------

class InferenceError(DocVaultError):
    """Raised when an embedding, generation, or tagging call fails or times out.

    Fatal during the embedding phase of ingestion, non-fatal during
    tagging, and turned into a stream error event during chat.
    """

    status_code = 502

    def __init__(
        self,
        message: str = "Inference call failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Storage / provider errors
# ---------------------------------------------------------------------------

class StorageError(DocVaultError):
    """Raised when the blob store or metadata store fails."""

    def __init__(
        self,
        message: str = "Storage operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class RAGError(DocVaultError):
    """Raised when a vector index or embedding adapter operation fails."""

    def __init__(
        self,
        message: str = "RAG pipeline operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ProviderUnavailableError(DocVaultError):
    """Raised when an external service or provider is unreachable."""

    status_code = 503

    def __init__(
        self,
        message: str = "External service is unavailable",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ConfigurationError(DocVaultError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
