"""Abstract base class for the relational metadata store.

Holds Document, Chunk, Tag, DocumentTag, ChatSession and ChatMessage
records and enforces their invariants:

* ``content_hash`` unique per workspace (duplicate insert -> ConflictError).
* Tag ``name`` unique per workspace.
* At most one DocumentTag per (document, tag); :meth:`associate_tag` is
  the single insert-if-absent operation and the only place usage counts
  are incremented.  :meth:`dissociate_tag` decrements with a floor of 0.

All methods are async; implementations must be safe to call from
concurrent tasks (one connection per operation is sufficient).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from docvault.models.chat import (
    ChatMessage,
    ChatSession,
    ChatSessionPage,
    Feedback,
)
from docvault.models.documents import Chunk, Document, DocumentPage, DocumentStatus
from docvault.models.search import FacetFilter
from docvault.models.tags import DocumentTagView, Tag, TagCategory, TagSource


# Concrete implementation: SQLiteMetadataStore (docvault/providers/metadata/)
class IMetadataStore(ABC):
    """Contract for document, tag, chunk and chat persistence."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables and indices if they do not exist."""

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    @abstractmethod
    async def create_document(self, document: Document) -> Document:
        """Insert a new document.

        Raises
        ------
        docvault.utils.errors.ConflictError
            If the workspace already holds a document with the same hash.
        """

    @abstractmethod
    async def get_document(self, document_id: str) -> Document | None:
        """Return the document, or ``None``."""

    @abstractmethod
    async def get_documents(self, document_ids: list[str]) -> list[Document]:
        """Return the documents that exist among *document_ids* (any order)."""

    @abstractmethod
    async def find_document_by_hash(self, workspace_id: str, content_hash: str) -> Document | None:
        """Return the workspace's document with this content hash, if any."""

    @abstractmethod
    async def list_documents(
        self,
        workspace_ids: list[str],
        status: DocumentStatus | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> DocumentPage:
        """List documents newest first; ``has_more`` from a ``limit+1`` fetch."""

    @abstractmethod
    async def update_document_title(self, document_id: str, title: str) -> None:
        """Rename a document."""

    @abstractmethod
    async def mark_processing(self, document_id: str, lease_seconds: int) -> None:
        """Set ``processing`` and take a lease expiring *lease_seconds* from now."""

    @abstractmethod
    async def renew_lease(self, document_id: str, lease_seconds: int) -> None:
        """Extend the processing lease (heartbeat)."""

    @abstractmethod
    async def mark_ready(
        self,
        document_id: str,
        text_key: str,
        page_count: int | None = None,
        degraded_reason: str | None = None,
    ) -> None:
        """Set ``ready``, record the text blob key and release the lease."""

    @abstractmethod
    async def mark_error(
        self,
        document_id: str,
        error_message: str,
        degraded_reason: str | None = None,
    ) -> None:
        """Set ``error`` with a user-visible message and release the lease."""

    @abstractmethod
    async def reset_to_pending(self, document_id: str) -> None:
        """Set ``pending``, clearing error, lease and degradation fields."""

    @abstractmethod
    async def reclaim_expired_leases(self, now: datetime | None = None) -> list[str]:
        """Move ``processing`` documents with lapsed leases back to ``pending``.

        Returns
        -------
        list[str]
            The ids of the reclaimed documents.
        """

    @abstractmethod
    async def find_stale_pending(self, older_than_seconds: int, now: datetime | None = None) -> list[str]:
        """Return ids of ``pending`` documents untouched for *older_than_seconds*.

        These were queued for ingestion but never picked up, for example
        because the worker queue was stopped or the process died.
        """

    @abstractmethod
    async def delete_document(self, document_id: str) -> list[str]:
        """Delete a document, its chunks and its tag links (decrementing usage).

        Returns
        -------
        list[str]
            The ids of the chunks that were deleted.
        """

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    @abstractmethod
    async def upsert_chunk(self, chunk: Chunk) -> None:
        """Insert or overwrite a chunk by id."""

    @abstractmethod
    async def list_chunk_ids(self, document_id: str) -> list[str]:
        """Return the document's chunk ids ordered by chunk index."""

    @abstractmethod
    async def delete_chunks(self, chunk_ids: list[str]) -> None:
        """Delete chunks by id."""

    @abstractmethod
    async def get_first_chunk_texts(self, document_ids: list[str]) -> dict[str, str]:
        """Map document id to the text of its chunk 0 (for snippets)."""

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    @abstractmethod
    async def list_tags(
        self,
        workspace_ids: list[str],
        category: TagCategory | None = None,
    ) -> list[Tag]:
        """List tags ordered by ``usage_count`` DESC, then ``name`` ASC."""

    @abstractmethod
    async def list_top_tags(self, workspace_id: str, limit: int = 50) -> list[Tag]:
        """Return the workspace's most-used tags."""

    @abstractmethod
    async def get_tag(self, tag_id: str) -> Tag | None:
        """Return the tag, or ``None``."""

    @abstractmethod
    async def get_tag_by_name(self, workspace_id: str, name: str) -> Tag | None:
        """Return the workspace tag with exactly this name, or ``None``."""

    @abstractmethod
    async def create_tag(self, tag: Tag) -> Tag:
        """Insert a tag.

        Raises
        ------
        docvault.utils.errors.ConflictError
            If the name already exists in the workspace.
        """

    @abstractmethod
    async def find_or_create_tag(
        self,
        workspace_id: str,
        name: str,
        category: TagCategory | None = None,
    ) -> Tag:
        """Return the named tag, creating it with *category* if absent."""

    @abstractmethod
    async def update_tag(
        self,
        tag_id: str,
        name: str | None = None,
        category: TagCategory | None = None,
    ) -> Tag:
        """Rename and/or recategorise a tag.

        Raises
        ------
        docvault.utils.errors.ConflictError
            If the new name is taken in the workspace.
        """

    @abstractmethod
    async def delete_tag(self, tag_id: str) -> None:
        """Delete a tag and all of its document links."""

    @abstractmethod
    async def associate_tag(
        self,
        document_id: str,
        tag_id: str,
        source: TagSource,
        confidence: float | None = None,
    ) -> bool:
        """Link a tag to a document if not already linked.

        Increments the tag's ``usage_count`` only when a link was created.

        Returns
        -------
        bool
            ``True`` if a new link was created.
        """

    @abstractmethod
    async def dissociate_tag(self, document_id: str, tag_id: str) -> bool:
        """Remove a link, decrementing ``usage_count`` with a floor of 0.

        Returns
        -------
        bool
            ``True`` if a link existed and was removed.
        """

    @abstractmethod
    async def get_document_tags(self, document_id: str) -> list[DocumentTagView]:
        """Return the tags linked to one document, with source and confidence."""

    @abstractmethod
    async def get_tags_for_documents(
        self,
        document_ids: list[str],
    ) -> dict[str, list[DocumentTagView]]:
        """Batch variant of :meth:`get_document_tags`."""

    @abstractmethod
    async def merge_tags(self, target_id: str, source_ids: list[str]) -> Tag:
        """Move every link from *source_ids* onto *target_id* and delete the sources.

        Links the target already has are dropped rather than duplicated;
        the target's ``usage_count`` is recomputed from its links.
        """

    # ------------------------------------------------------------------
    # Faceted search
    # ------------------------------------------------------------------

    @abstractmethod
    async def faceted_search(
        self,
        facets: FacetFilter,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Document]:
        """Return ``ready`` documents matching *facets*, newest first.

        ``limit=None`` returns every match (used for candidate filtering).
        """

    @abstractmethod
    async def count_faceted(self, facets: FacetFilter) -> int:
        """Return the number of distinct documents matching *facets*."""

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    @abstractmethod
    async def create_session(self, session: ChatSession) -> ChatSession:
        """Insert a chat session."""

    @abstractmethod
    async def get_session(self, session_id: str) -> ChatSession | None:
        """Return the session, or ``None``."""

    @abstractmethod
    async def list_sessions(
        self,
        user_id: str,
        workspace_ids: list[str],
        limit: int = 20,
        offset: int = 0,
    ) -> ChatSessionPage:
        """List a user's sessions, most recently updated first."""

    @abstractmethod
    async def delete_session(self, session_id: str) -> None:
        """Delete a session and its messages."""

    @abstractmethod
    async def touch_session(self, session_id: str) -> None:
        """Set the session's ``updated_at`` to now."""

    @abstractmethod
    async def add_message(self, message: ChatMessage) -> ChatMessage:
        """Insert a chat message (sources stored as a JSON snapshot)."""

    @abstractmethod
    async def get_message(self, message_id: str) -> ChatMessage | None:
        """Return the message, or ``None``."""

    @abstractmethod
    async def list_messages(self, session_id: str) -> list[ChatMessage]:
        """Return all messages of a session, oldest first."""

    @abstractmethod
    async def recent_messages(
        self,
        session_id: str,
        limit: int = 10,
        exclude_ids: list[str] | None = None,
    ) -> list[ChatMessage]:
        """Return the last *limit* messages (oldest first), skipping *exclude_ids*."""

    @abstractmethod
    async def set_feedback(self, message_id: str, feedback: Feedback) -> None:
        """Record thumbs up/down on a message."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"sqlite"``."""
