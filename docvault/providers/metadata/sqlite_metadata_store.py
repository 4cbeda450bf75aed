"""SQLite-backed metadata store.

Persists documents, chunks, tags, document-tag links, chat sessions and
chat messages in a single local SQLite database (``data/docvault.db`` by
default).  Uses ``aiosqlite`` for async I/O with one connection per
operation, so the store is safe to share between concurrent pipeline
runs.

Timestamps are ISO-8601 UTC strings with millisecond precision, which
sort lexicographically; ``rowid`` breaks ties between rows written in
the same millisecond.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any
from uuid import uuid4

import aiosqlite
import structlog

from docvault.interfaces.metadata_store import IMetadataStore
from docvault.models.chat import (
    ChatMessage,
    ChatRole,
    ChatSession,
    ChatSessionPage,
    ChatSessionSummary,
    Feedback,
    Source,
)
from docvault.models.documents import Chunk, Document, DocumentPage, DocumentStatus
from docvault.models.search import FacetFilter
from docvault.models.tags import DocumentTagView, Tag, TagCategory, TagSource
from docvault.utils.errors import ConflictError, NotFoundError, StorageError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/docvault.db")

_CREATE_TABLES = [
    """\
CREATE TABLE IF NOT EXISTS documents (
    id                TEXT    PRIMARY KEY,
    workspace_id      TEXT    NOT NULL,
    user_id           TEXT    NOT NULL,
    title             TEXT    NOT NULL,
    file_key          TEXT    NOT NULL,
    text_key          TEXT,
    content_hash      TEXT    NOT NULL,
    mime_type         TEXT    NOT NULL,
    file_size_bytes   INTEGER NOT NULL DEFAULT 0,
    page_count        INTEGER,
    status            TEXT    NOT NULL DEFAULT 'pending',
    error_message     TEXT,
    degraded_reason   TEXT,
    lease_expires_at  TEXT,
    created_at        TEXT    NOT NULL,
    updated_at        TEXT    NOT NULL,
    UNIQUE(workspace_id, content_hash)
);
""",
    """\
CREATE TABLE IF NOT EXISTS chunks (
    id           TEXT    PRIMARY KEY,
    document_id  TEXT    NOT NULL,
    chunk_index  INTEGER NOT NULL,
    text         TEXT    NOT NULL,
    token_count  INTEGER NOT NULL DEFAULT 0,
    page_number  INTEGER
);
""",
    """\
CREATE TABLE IF NOT EXISTS tags (
    id            TEXT    PRIMARY KEY,
    workspace_id  TEXT    NOT NULL,
    name          TEXT    NOT NULL COLLATE NOCASE,
    category      TEXT,
    usage_count   INTEGER NOT NULL DEFAULT 0,
    created_at    TEXT    NOT NULL,
    UNIQUE(workspace_id, name)
);
""",
    """\
CREATE TABLE IF NOT EXISTS document_tags (
    document_id  TEXT NOT NULL,
    tag_id       TEXT NOT NULL,
    source       TEXT NOT NULL,
    confidence   REAL,
    created_at   TEXT NOT NULL,
    PRIMARY KEY (document_id, tag_id)
);
""",
    """\
CREATE TABLE IF NOT EXISTS chat_sessions (
    id            TEXT PRIMARY KEY,
    workspace_id  TEXT NOT NULL,
    user_id       TEXT NOT NULL,
    title         TEXT NOT NULL DEFAULT 'New Chat',
    created_at    TEXT NOT NULL,
    updated_at    TEXT NOT NULL
);
""",
    """\
CREATE TABLE IF NOT EXISTS chat_messages (
    id          TEXT PRIMARY KEY,
    session_id  TEXT NOT NULL,
    role        TEXT NOT NULL,
    content     TEXT NOT NULL,
    sources     TEXT NOT NULL DEFAULT '[]',
    feedback    TEXT,
    created_at  TEXT NOT NULL
);
""",
]

_CREATE_INDICES = [
    "CREATE INDEX IF NOT EXISTS idx_documents_ws_created ON documents(workspace_id, created_at);",
    "CREATE INDEX IF NOT EXISTS idx_documents_status ON documents(status);",
    "CREATE INDEX IF NOT EXISTS idx_chunks_document ON chunks(document_id, chunk_index);",
    "CREATE INDEX IF NOT EXISTS idx_tags_ws_usage ON tags(workspace_id, usage_count);",
    "CREATE INDEX IF NOT EXISTS idx_document_tags_tag ON document_tags(tag_id);",
    "CREATE INDEX IF NOT EXISTS idx_sessions_user ON chat_sessions(user_id, updated_at);",
    "CREATE INDEX IF NOT EXISTS idx_messages_session ON chat_messages(session_id, created_at);",
]

_DOCUMENT_COLUMNS = (
    "id, workspace_id, user_id, title, file_key, text_key, content_hash, mime_type, "
    "file_size_bytes, page_count, status, error_message, degraded_reason, "
    "lease_expires_at, created_at, updated_at"
)

_DOCUMENT_COLUMNS_D = ", ".join(f"d.{c.strip()}" for c in _DOCUMENT_COLUMNS.split(","))

_INSERT_DOCUMENT = f"""\
INSERT INTO documents ({_DOCUMENT_COLUMNS})
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
"""

_UPSERT_CHUNK = """\
INSERT INTO chunks (id, document_id, chunk_index, text, token_count, page_number)
VALUES (?, ?, ?, ?, ?, ?)
ON CONFLICT(id)
DO UPDATE SET text        = excluded.text,
              token_count = excluded.token_count,
              page_number = excluded.page_number;
"""

_TAG_COLUMNS = "id, workspace_id, name, category, usage_count, created_at"

_DOCUMENT_TAG_VIEW_SQL = """\
SELECT dt.document_id, t.id, t.name, t.category, dt.source, dt.confidence
FROM document_tags dt
JOIN tags t ON t.id = dt.tag_id
WHERE dt.document_id IN ({placeholders})
ORDER BY t.name ASC;
"""

_MESSAGE_COLUMNS = "id, session_id, role, content, sources, feedback, created_at"


def _utc_iso(moment: datetime | None = None) -> str:
    """Format *moment* (default: now) as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    moment = (moment or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def _placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))


def _date_upper_bound(value: str) -> str:
    """Make a bare ``YYYY-MM-DD`` upper bound include that whole day."""
    if len(value) == 10:
        return f"{value}T23:59:59.999Z"
    return value


class SQLiteMetadataStore(IMetadataStore):
    """SQLite-backed document, tag and chat persistence."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    def _connect(self) -> aiosqlite.Connection:
        return aiosqlite.connect(str(self._db_path))

    async def initialize(self) -> None:
        """Create all tables and indices if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with self._connect() as db:
            # WAL mode lets readers proceed while an ingestion run writes.
            await db.execute("PRAGMA journal_mode=WAL;")
            for table_sql in _CREATE_TABLES:
                await db.execute(table_sql)
            for idx_sql in _CREATE_INDICES:
                await db.execute(idx_sql)
            await db.commit()
        logger.info("metadata_db_initialized", path=str(self._db_path))

    def get_provider_name(self) -> str:
        return "sqlite"

    # ── Documents ──────────────────────────────────────────────────────

    async def create_document(self, document: Document) -> Document:
        now = _utc_iso()
        created_at = _utc_iso(document.created_at) if document.created_at else now
        try:
            async with self._connect() as db:
                await db.execute(_INSERT_DOCUMENT, (
                    document.id,
                    document.workspace_id,
                    document.user_id,
                    document.title,
                    document.file_key,
                    document.text_key,
                    document.content_hash,
                    document.mime_type,
                    document.file_size_bytes,
                    document.page_count,
                    document.status.value,
                    document.error_message,
                    document.degraded_reason,
                    None,
                    created_at,
                    now,
                ))
                await db.commit()
        except aiosqlite.IntegrityError as exc:
            raise ConflictError(
                message="A document with this content already exists in the workspace",
                provider_name=self.get_provider_name(),
            ) from exc

        logger.info(
            "document_created",
            document_id=document.id,
            workspace_id=document.workspace_id,
            mime_type=document.mime_type,
        )
        stored = await self.get_document(document.id)
        if stored is None:
            raise StorageError(
                message=f"Document {document.id} vanished after insert",
                provider_name=self.get_provider_name(),
            )
        return stored

    async def get_document(self, document_id: str) -> Document | None:
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE id = ?;",
                (document_id,),
            )
            row = await cursor.fetchone()
        return self._row_to_document(row) if row else None

    async def get_documents(self, document_ids: list[str]) -> list[Document]:
        if not document_ids:
            return []
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents "
                f"WHERE id IN ({_placeholders(len(document_ids))});",
                list(document_ids),
            )
            rows = await cursor.fetchall()
        return [self._row_to_document(r) for r in rows]

    async def find_document_by_hash(self, workspace_id: str, content_hash: str) -> Document | None:
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents "
                "WHERE workspace_id = ? AND content_hash = ?;",
                (workspace_id, content_hash),
            )
            row = await cursor.fetchone()
        return self._row_to_document(row) if row else None

    async def list_documents(
        self,
        workspace_ids: list[str],
        status: DocumentStatus | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> DocumentPage:
        if not workspace_ids:
            return DocumentPage()

        conditions = [f"workspace_id IN ({_placeholders(len(workspace_ids))})"]
        params: list[Any] = list(workspace_ids)
        if status is not None:
            conditions.append("status = ?")
            params.append(DocumentStatus(status).value)
        where_clause = " AND ".join(conditions)

        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE {where_clause} "
                "ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?;",
                [*params, limit + 1, offset],
            )
            rows = await cursor.fetchall()
            cursor = await db.execute(
                f"SELECT COUNT(*) FROM documents WHERE {where_clause};",
                params,
            )
            total_row = await cursor.fetchone()

        documents = [self._row_to_document(r) for r in rows]
        return DocumentPage(
            documents=documents[:limit],
            total=total_row[0] if total_row else 0,
            has_more=len(documents) > limit,
        )

    async def update_document_title(self, document_id: str, title: str) -> None:
        await self._update_document(document_id, "title = ?", (title,))

    async def mark_processing(self, document_id: str, lease_seconds: int) -> None:
        await self._update_document(
            document_id,
            "status = ?, error_message = NULL, lease_expires_at = ?",
            (DocumentStatus.PROCESSING.value, self._lease_deadline(lease_seconds)),
        )

    async def renew_lease(self, document_id: str, lease_seconds: int) -> None:
        await self._update_document(
            document_id,
            "lease_expires_at = ?",
            (self._lease_deadline(lease_seconds),),
        )

    async def mark_ready(
        self,
        document_id: str,
        text_key: str,
        page_count: int | None = None,
        degraded_reason: str | None = None,
    ) -> None:
        await self._update_document(
            document_id,
            "status = ?, text_key = ?, page_count = ?, degraded_reason = ?, "
            "error_message = NULL, lease_expires_at = NULL",
            (DocumentStatus.READY.value, text_key, page_count, degraded_reason),
        )

    async def mark_error(
        self,
        document_id: str,
        error_message: str,
        degraded_reason: str | None = None,
    ) -> None:
        await self._update_document(
            document_id,
            "status = ?, error_message = ?, degraded_reason = ?, lease_expires_at = NULL",
            (DocumentStatus.ERROR.value, error_message, degraded_reason),
        )

    async def reset_to_pending(self, document_id: str) -> None:
        await self._update_document(
            document_id,
            "status = ?, error_message = NULL, degraded_reason = NULL, lease_expires_at = NULL",
            (DocumentStatus.PENDING.value,),
        )

    async def reclaim_expired_leases(self, now: datetime | None = None) -> list[str]:
        cutoff = _utc_iso(now)
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT id FROM documents WHERE status = ? "
                "AND (lease_expires_at IS NULL OR lease_expires_at < ?);",
                (DocumentStatus.PROCESSING.value, cutoff),
            )
            ids = [row[0] for row in await cursor.fetchall()]
            if ids:
                await db.execute(
                    "UPDATE documents SET status = ?, lease_expires_at = NULL, updated_at = ? "
                    f"WHERE id IN ({_placeholders(len(ids))});",
                    [DocumentStatus.PENDING.value, _utc_iso(), *ids],
                )
                await db.commit()

        if ids:
            logger.warning("expired_leases_reclaimed", count=len(ids), document_ids=ids)
        return ids

    async def find_stale_pending(self, older_than_seconds: int, now: datetime | None = None) -> list[str]:
        cutoff = _utc_iso((now or datetime.now(timezone.utc)) - timedelta(seconds=older_than_seconds))
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT id FROM documents WHERE status = ? AND updated_at <= ? "
                "ORDER BY created_at, rowid;",
                (DocumentStatus.PENDING.value, cutoff),
            )
            return [row[0] for row in await cursor.fetchall()]

    async def delete_document(self, document_id: str) -> list[str]:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT id FROM chunks WHERE document_id = ? ORDER BY chunk_index;",
                (document_id,),
            )
            chunk_ids = [row[0] for row in await cursor.fetchall()]

            await db.execute(
                "UPDATE tags SET usage_count = MAX(usage_count - 1, 0) "
                "WHERE id IN (SELECT tag_id FROM document_tags WHERE document_id = ?);",
                (document_id,),
            )
            await db.execute("DELETE FROM document_tags WHERE document_id = ?;", (document_id,))
            await db.execute("DELETE FROM chunks WHERE document_id = ?;", (document_id,))
            await db.execute("DELETE FROM documents WHERE id = ?;", (document_id,))
            await db.commit()

        logger.info("document_deleted", document_id=document_id, chunk_count=len(chunk_ids))
        return chunk_ids

    # ── Chunks ─────────────────────────────────────────────────────────

    async def upsert_chunk(self, chunk: Chunk) -> None:
        async with self._connect() as db:
            await db.execute(_UPSERT_CHUNK, (
                chunk.id,
                chunk.document_id,
                chunk.chunk_index,
                chunk.text,
                chunk.token_count,
                chunk.page_number,
            ))
            await db.commit()

    async def list_chunk_ids(self, document_id: str) -> list[str]:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT id FROM chunks WHERE document_id = ? ORDER BY chunk_index;",
                (document_id,),
            )
            rows = await cursor.fetchall()
        return [row[0] for row in rows]

    async def delete_chunks(self, chunk_ids: list[str]) -> None:
        if not chunk_ids:
            return
        async with self._connect() as db:
            await db.execute(
                f"DELETE FROM chunks WHERE id IN ({_placeholders(len(chunk_ids))});",
                list(chunk_ids),
            )
            await db.commit()

    async def get_first_chunk_texts(self, document_ids: list[str]) -> dict[str, str]:
        if not document_ids:
            return {}
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT document_id, text FROM chunks WHERE chunk_index = 0 "
                f"AND document_id IN ({_placeholders(len(document_ids))});",
                list(document_ids),
            )
            rows = await cursor.fetchall()
        return {row[0]: row[1] for row in rows}

    # ── Tags ───────────────────────────────────────────────────────────

    async def list_tags(
        self,
        workspace_ids: list[str],
        category: TagCategory | None = None,
    ) -> list[Tag]:
        if not workspace_ids:
            return []
        conditions = [f"workspace_id IN ({_placeholders(len(workspace_ids))})"]
        params: list[Any] = list(workspace_ids)
        if category is not None:
            conditions.append("category = ?")
            params.append(TagCategory(category).value)

        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT {_TAG_COLUMNS} FROM tags WHERE {' AND '.join(conditions)} "
                "ORDER BY usage_count DESC, name ASC;",
                params,
            )
            rows = await cursor.fetchall()
        return [self._row_to_tag(r) for r in rows]

    async def list_top_tags(self, workspace_id: str, limit: int = 50) -> list[Tag]:
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT {_TAG_COLUMNS} FROM tags WHERE workspace_id = ? "
                "ORDER BY usage_count DESC, name ASC LIMIT ?;",
                (workspace_id, limit),
            )
            rows = await cursor.fetchall()
        return [self._row_to_tag(r) for r in rows]

    async def get_tag(self, tag_id: str) -> Tag | None:
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(f"SELECT {_TAG_COLUMNS} FROM tags WHERE id = ?;", (tag_id,))
            row = await cursor.fetchone()
        return self._row_to_tag(row) if row else None

    async def get_tag_by_name(self, workspace_id: str, name: str) -> Tag | None:
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT {_TAG_COLUMNS} FROM tags WHERE workspace_id = ? AND name = ?;",
                (workspace_id, name),
            )
            row = await cursor.fetchone()
        return self._row_to_tag(row) if row else None

    async def create_tag(self, tag: Tag) -> Tag:
        try:
            async with self._connect() as db:
                await db.execute(
                    f"INSERT INTO tags ({_TAG_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?);",
                    (
                        tag.id,
                        tag.workspace_id,
                        tag.name,
                        tag.category.value if tag.category else None,
                        tag.usage_count,
                        _utc_iso(tag.created_at) if tag.created_at else _utc_iso(),
                    ),
                )
                await db.commit()
        except aiosqlite.IntegrityError as exc:
            raise ConflictError(
                message="Tag already exists",
                provider_name=self.get_provider_name(),
            ) from exc

        created = await self.get_tag(tag.id)
        if created is None:
            raise StorageError(
                message=f"Tag {tag.id} vanished after insert",
                provider_name=self.get_provider_name(),
            )
        logger.debug("tag_created", tag_id=tag.id, name=tag.name)
        return created

    async def find_or_create_tag(
        self,
        workspace_id: str,
        name: str,
        category: TagCategory | None = None,
    ) -> Tag:
        existing = await self.get_tag_by_name(workspace_id, name)
        if existing is not None:
            return existing

        async with self._connect() as db:
            # OR IGNORE resolves a concurrent create of the same name.
            await db.execute(
                f"INSERT OR IGNORE INTO tags ({_TAG_COLUMNS}) VALUES (?, ?, ?, ?, 0, ?);",
                (
                    str(uuid4()),
                    workspace_id,
                    name,
                    category.value if category else None,
                    _utc_iso(),
                ),
            )
            await db.commit()

        tag = await self.get_tag_by_name(workspace_id, name)
        if tag is None:
            raise StorageError(
                message=f"Could not create tag {name!r}",
                provider_name=self.get_provider_name(),
            )
        return tag

    async def update_tag(
        self,
        tag_id: str,
        name: str | None = None,
        category: TagCategory | None = None,
    ) -> Tag:
        assignments: list[str] = []
        params: list[Any] = []
        if name is not None:
            assignments.append("name = ?")
            params.append(name)
        if category is not None:
            assignments.append("category = ?")
            params.append(TagCategory(category).value)

        if assignments:
            try:
                async with self._connect() as db:
                    cursor = await db.execute(
                        f"UPDATE tags SET {', '.join(assignments)} WHERE id = ?;",
                        [*params, tag_id],
                    )
                    await db.commit()
                    updated = cursor.rowcount
            except aiosqlite.IntegrityError as exc:
                raise ConflictError(
                    message="Tag already exists",
                    provider_name=self.get_provider_name(),
                ) from exc
            if updated == 0:
                raise NotFoundError(message="Tag not found", provider_name=self.get_provider_name())

        tag = await self.get_tag(tag_id)
        if tag is None:
            raise NotFoundError(message="Tag not found", provider_name=self.get_provider_name())
        return tag

    async def delete_tag(self, tag_id: str) -> None:
        async with self._connect() as db:
            await db.execute("DELETE FROM document_tags WHERE tag_id = ?;", (tag_id,))
            await db.execute("DELETE FROM tags WHERE id = ?;", (tag_id,))
            await db.commit()
        logger.info("tag_deleted", tag_id=tag_id)

    async def associate_tag(
        self,
        document_id: str,
        tag_id: str,
        source: TagSource,
        confidence: float | None = None,
    ) -> bool:
        async with self._connect() as db:
            cursor = await db.execute(
                "INSERT OR IGNORE INTO document_tags "
                "(document_id, tag_id, source, confidence, created_at) VALUES (?, ?, ?, ?, ?);",
                (document_id, tag_id, TagSource(source).value, confidence, _utc_iso()),
            )
            inserted = cursor.rowcount == 1
            if inserted:
                await db.execute(
                    "UPDATE tags SET usage_count = usage_count + 1 WHERE id = ?;",
                    (tag_id,),
                )
            await db.commit()
        return inserted

    async def dissociate_tag(self, document_id: str, tag_id: str) -> bool:
        async with self._connect() as db:
            cursor = await db.execute(
                "DELETE FROM document_tags WHERE document_id = ? AND tag_id = ?;",
                (document_id, tag_id),
            )
            removed = cursor.rowcount > 0
            if removed:
                await db.execute(
                    "UPDATE tags SET usage_count = MAX(usage_count - 1, 0) WHERE id = ?;",
                    (tag_id,),
                )
            await db.commit()
        return removed

    async def get_document_tags(self, document_id: str) -> list[DocumentTagView]:
        by_document = await self.get_tags_for_documents([document_id])
        return by_document.get(document_id, [])

    async def get_tags_for_documents(
        self,
        document_ids: list[str],
    ) -> dict[str, list[DocumentTagView]]:
        if not document_ids:
            return {}
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                _DOCUMENT_TAG_VIEW_SQL.format(placeholders=_placeholders(len(document_ids))),
                list(document_ids),
            )
            rows = await cursor.fetchall()

        result: dict[str, list[DocumentTagView]] = {doc_id: [] for doc_id in document_ids}
        for row in rows:
            result.setdefault(row["document_id"], []).append(
                DocumentTagView(
                    id=row["id"],
                    name=row["name"],
                    category=TagCategory.parse(row["category"]),
                    source=TagSource(row["source"]),
                    confidence=row["confidence"],
                )
            )
        return result

    async def merge_tags(self, target_id: str, source_ids: list[str]) -> Tag:
        sources = [s for s in source_ids if s != target_id]
        if sources:
            marks = _placeholders(len(sources))
            async with self._connect() as db:
                # Links the target already has stay behind and are dropped below.
                await db.execute(
                    f"UPDATE OR IGNORE document_tags SET tag_id = ? WHERE tag_id IN ({marks});",
                    [target_id, *sources],
                )
                await db.execute(f"DELETE FROM document_tags WHERE tag_id IN ({marks});", sources)
                await db.execute(f"DELETE FROM tags WHERE id IN ({marks});", sources)
                await db.execute(
                    "UPDATE tags SET usage_count = "
                    "(SELECT COUNT(*) FROM document_tags WHERE tag_id = ?) WHERE id = ?;",
                    (target_id, target_id),
                )
                await db.commit()
            logger.info("tags_merged", target_id=target_id, source_count=len(sources))

        tag = await self.get_tag(target_id)
        if tag is None:
            raise NotFoundError(message="Target tag not found", provider_name=self.get_provider_name())
        return tag

    # ── Faceted search ─────────────────────────────────────────────────

    async def faceted_search(
        self,
        facets: FacetFilter,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Document]:
        built = self._build_facet_where(facets)
        if built is None:
            return []
        where_clause, params = built

        query = (
            f"SELECT {_DOCUMENT_COLUMNS_D} "
            f"FROM documents d WHERE {where_clause} "
            "ORDER BY d.created_at DESC, d.rowid DESC"
        )
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params = [*params, limit, offset]

        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(query + ";", params)
            rows = await cursor.fetchall()
        return [self._row_to_document(r) for r in rows]

    async def count_faceted(self, facets: FacetFilter) -> int:
        built = self._build_facet_where(facets)
        if built is None:
            return 0
        where_clause, params = built
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT COUNT(DISTINCT d.id) FROM documents d WHERE {where_clause};",
                params,
            )
            row = await cursor.fetchone()
        return row[0] if row else 0

    # ── Chat ───────────────────────────────────────────────────────────

    async def create_session(self, session: ChatSession) -> ChatSession:
        now = _utc_iso()
        async with self._connect() as db:
            await db.execute(
                "INSERT INTO chat_sessions (id, workspace_id, user_id, title, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?);",
                (session.id, session.workspace_id, session.user_id, session.title, now, now),
            )
            await db.commit()
        logger.info("chat_session_created", session_id=session.id)
        stored = await self.get_session(session.id)
        if stored is None:
            raise StorageError(
                message=f"Session {session.id} vanished after insert",
                provider_name=self.get_provider_name(),
            )
        return stored

    async def get_session(self, session_id: str) -> ChatSession | None:
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT id, workspace_id, user_id, title, created_at, updated_at "
                "FROM chat_sessions WHERE id = ?;",
                (session_id,),
            )
            row = await cursor.fetchone()
        return ChatSession(**dict(row)) if row else None

    async def list_sessions(
        self,
        user_id: str,
        workspace_ids: list[str],
        limit: int = 20,
        offset: int = 0,
    ) -> ChatSessionPage:
        if not workspace_ids:
            return ChatSessionPage()
        where_clause = f"s.user_id = ? AND s.workspace_id IN ({_placeholders(len(workspace_ids))})"
        params: list[Any] = [user_id, *workspace_ids]

        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT s.id, s.workspace_id, s.user_id, s.title, s.created_at, s.updated_at, "
                "(SELECT m.content FROM chat_messages m WHERE m.session_id = s.id "
                " ORDER BY m.created_at DESC, m.rowid DESC LIMIT 1) AS last_message "
                f"FROM chat_sessions s WHERE {where_clause} "
                "ORDER BY s.updated_at DESC, s.rowid DESC LIMIT ? OFFSET ?;",
                [*params, limit, offset],
            )
            rows = await cursor.fetchall()
            cursor = await db.execute(
                f"SELECT COUNT(*) FROM chat_sessions s WHERE {where_clause};",
                params,
            )
            total_row = await cursor.fetchone()

        summaries = []
        for row in rows:
            data = dict(row)
            last_message = data.pop("last_message")
            summaries.append(ChatSessionSummary(session=ChatSession(**data), last_message=last_message))
        return ChatSessionPage(sessions=summaries, total=total_row[0] if total_row else 0)

    async def delete_session(self, session_id: str) -> None:
        async with self._connect() as db:
            await db.execute("DELETE FROM chat_messages WHERE session_id = ?;", (session_id,))
            await db.execute("DELETE FROM chat_sessions WHERE id = ?;", (session_id,))
            await db.commit()
        logger.info("chat_session_deleted", session_id=session_id)

    async def touch_session(self, session_id: str) -> None:
        async with self._connect() as db:
            await db.execute(
                "UPDATE chat_sessions SET updated_at = ? WHERE id = ?;",
                (_utc_iso(), session_id),
            )
            await db.commit()

    async def add_message(self, message: ChatMessage) -> ChatMessage:
        created_at = _utc_iso(message.created_at) if message.created_at else _utc_iso()
        async with self._connect() as db:
            await db.execute(
                f"INSERT INTO chat_messages ({_MESSAGE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?);",
                (
                    message.id,
                    message.session_id,
                    ChatRole(message.role).value,
                    message.content,
                    json.dumps([s.model_dump() for s in message.sources]),
                    message.feedback.value if message.feedback else None,
                    created_at,
                ),
            )
            await db.commit()
        stored = await self.get_message(message.id)
        return stored if stored is not None else message

    async def get_message(self, message_id: str) -> ChatMessage | None:
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM chat_messages WHERE id = ?;",
                (message_id,),
            )
            row = await cursor.fetchone()
        return self._row_to_message(row) if row else None

    async def list_messages(self, session_id: str) -> list[ChatMessage]:
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT {_MESSAGE_COLUMNS} FROM chat_messages WHERE session_id = ? "
                "ORDER BY created_at ASC, rowid ASC;",
                (session_id,),
            )
            rows = await cursor.fetchall()
        return [self._row_to_message(r) for r in rows]

    async def recent_messages(
        self,
        session_id: str,
        limit: int = 10,
        exclude_ids: list[str] | None = None,
    ) -> list[ChatMessage]:
        exclude = list(exclude_ids or [])
        query = f"SELECT {_MESSAGE_COLUMNS} FROM chat_messages WHERE session_id = ?"
        params: list[Any] = [session_id]
        if exclude:
            query += f" AND id NOT IN ({_placeholders(len(exclude))})"
            params.extend(exclude)
        query += " ORDER BY created_at DESC, rowid DESC LIMIT ?;"
        params.append(limit)

        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(query, params)
            rows = await cursor.fetchall()
        return [self._row_to_message(r) for r in reversed(rows)]

    async def set_feedback(self, message_id: str, feedback: Feedback) -> None:
        async with self._connect() as db:
            cursor = await db.execute(
                "UPDATE chat_messages SET feedback = ? WHERE id = ?;",
                (Feedback(feedback).value, message_id),
            )
            await db.commit()
            updated = cursor.rowcount
        if updated == 0:
            raise NotFoundError(message="Message not found", provider_name=self.get_provider_name())

    # ── Private helpers ────────────────────────────────────────────────

    async def _update_document(self, document_id: str, assignments: str, params: tuple[Any, ...]) -> None:
        async with self._connect() as db:
            await db.execute(
                f"UPDATE documents SET {assignments}, updated_at = ? WHERE id = ?;",
                (*params, _utc_iso(), document_id),
            )
            await db.commit()

    @staticmethod
    def _lease_deadline(lease_seconds: int) -> str:
        return _utc_iso(datetime.now(timezone.utc) + timedelta(seconds=lease_seconds))

    @staticmethod
    def _build_facet_where(facets: FacetFilter) -> tuple[str, list[Any]] | None:
        """Translate a :class:`FacetFilter` into a WHERE clause over ``documents d``.

        Returns ``None`` when the filter can match nothing (no accessible
        workspaces, or an empty candidate set).
        """
        if not facets.workspace_ids:
            return None
        if facets.candidate_ids is not None and not facets.candidate_ids:
            return None

        conditions = [
            "d.status = ?",
            f"d.workspace_id IN ({_placeholders(len(facets.workspace_ids))})",
        ]
        params: list[Any] = [DocumentStatus.READY.value, *facets.workspace_ids]

        if facets.candidate_ids is not None:
            conditions.append(f"d.id IN ({_placeholders(len(facets.candidate_ids))})")
            params.extend(facets.candidate_ids)

        if facets.text:
            pattern = f"%{facets.text}%"
            conditions.append(
                "(d.title LIKE ? OR EXISTS "
                "(SELECT 1 FROM chunks c WHERE c.document_id = d.id AND c.text LIKE ?))"
            )
            params.extend([pattern, pattern])

        if facets.tags:
            tag_terms: list[str] = []
            for token in facets.tags:
                tag_terms.append("t.name = ?")
                params.append(token)
                prefix, sep, name = token.partition(":")
                category = TagCategory.parse(prefix) if sep else None
                if category is not None and name.strip():
                    tag_terms.append("(t.category = ? AND t.name = ?)")
                    params.extend([category.value, name.strip()])
            conditions.append(
                "d.id IN (SELECT dt.document_id FROM document_tags dt "
                f"JOIN tags t ON t.id = dt.tag_id WHERE {' OR '.join(tag_terms)})"
            )

        if facets.document_types:
            conditions.append("(" + " OR ".join("d.mime_type LIKE ?" for _ in facets.document_types) + ")")
            params.extend(f"%{t}%" for t in facets.document_types)

        if facets.date_from:
            conditions.append("d.created_at >= ?")
            params.append(facets.date_from)
        if facets.date_to:
            conditions.append("d.created_at <= ?")
            params.append(_date_upper_bound(facets.date_to))

        return " AND ".join(conditions), params

    @staticmethod
    def _row_to_document(row: aiosqlite.Row) -> Document:
        return Document(**dict(row))

    @staticmethod
    def _row_to_tag(row: aiosqlite.Row) -> Tag:
        data = dict(row)
        data["category"] = TagCategory.parse(data.get("category"))
        return Tag(**data)

    @staticmethod
    def _row_to_message(row: aiosqlite.Row) -> ChatMessage:
        data = dict(row)
        sources_raw = data.pop("sources")
        sources = [Source.model_validate(s) for s in json.loads(sources_raw)] if sources_raw else []
        return ChatMessage(sources=sources, **data)
