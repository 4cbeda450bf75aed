"""Retrieval-augmented conversational turns over a workspace's documents.

One turn: persist the user message, retrieve the nearest chunks in the
session's workspace, build a prompt from the system instruction, recent
history and numbered ``[Source i: title]`` blocks, generate, then persist
the assistant message with its sources as a snapshot.

The streaming variant is an async generator of :class:`StreamEvent`.
Whatever happens to the stream (normal end, inference failure or the
consumer walking away) the assistant message is persisted at most once,
and partial content is never lost.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING

import structlog

from docvault.models.auth import Principal
from docvault.models.chat import ChatMessage, ChatRole, ChatSession, RagAnswer, Source, StreamEvent
from docvault.services.access import require_visible
from docvault.utils.concurrency import with_timeout
from docvault.utils.errors import DocVaultError, InferenceError, InvalidRequestError, NotFoundError, RAGError

if TYPE_CHECKING:
    from docvault.interfaces.llm_provider import ChatTurn, ILLMProvider
    from docvault.interfaces.metadata_store import IMetadataStore
    from docvault.interfaces.vector_index import IVectorIndex
    from docvault.services.ingestion.embedder import Embedder

logger = structlog.get_logger(logger_name=__name__)

UNKNOWN_DOCUMENT_TITLE = "Unknown Document"
STREAM_FAILED_MESSAGE = "Stream failed"

_SYSTEM_PROMPT = (
    "You are a helpful document assistant. Answer questions based ONLY on "
    "the provided document context.\n"
    "If you cannot find the answer in the context, say so clearly.\n"
    "Always cite your sources by mentioning the document title.\n"
    "For aggregate questions (totals, sums, counts), show your work with "
    "itemized breakdowns."
)


async def _next_fragment(fragments: AsyncIterator[str]) -> str | None:
    try:
        return await fragments.__anext__()
    except StopAsyncIteration:
        return None


def format_context(sources: list[Source]) -> str:
    """Render sources as numbered ``[Source i: title]`` blocks."""
    return "\n\n".join(
        f"[Source {i}: {source.document_title}]\n{source.text_snippet}"
        for i, source in enumerate(sources, start=1)
    )


def build_user_prompt(question: str, sources: list[Source]) -> str:
    return (
        "Context from user's documents:\n"
        f"{format_context(sources)}\n\n"
        f"User question: {question}\n\n"
        "Provide a helpful answer based on the context above. "
        "Cite which documents you used."
    )


class RagSession:
    """Answers chat messages from the documents of the session's workspace.

    Parameters
    ----------
    metadata_store:
        Sessions, messages and document titles.
    vector_index:
        Chunk retrieval.
    embedder:
        Embeds the user message for retrieval.
    llm:
        Generates the answer.
    timeout_seconds:
        Bound on the blocking answer, and on each fragment while streaming.
    top_k:
        Chunks fetched from the vector index per turn.
    max_documents:
        Distinct documents kept as sources.
    history_messages:
        Earlier messages replayed into the prompt.
    """

    def __init__(
        self,
        metadata_store: IMetadataStore,
        vector_index: IVectorIndex,
        embedder: Embedder,
        llm: ILLMProvider,
        timeout_seconds: float = 30.0,
        top_k: int = 10,
        max_documents: int = 5,
        history_messages: int = 10,
    ) -> None:
        self._store = metadata_store
        self._vectors = vector_index
        self._embedder = embedder
        self._llm = llm
        self._timeout = timeout_seconds
        self._top_k = top_k
        self._max_documents = max_documents
        self._history_messages = history_messages

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ask(self, principal: Principal, session_id: str, message: str) -> RagAnswer:
        """Run one blocking turn and return the persisted assistant message.

        Raises
        ------
        NotFoundError
            If the session does not exist or is outside the caller's workspaces.
        InvalidRequestError
            If *message* is blank.
        InferenceError
            If retrieval or generation fails; the user message stays persisted.
        """
        session = await self._open_turn(principal, session_id, message)
        user_message = await self._save_user_message(session, message)

        sources = await self.retrieve_context(message, session.workspace_id)
        turns = await self._build_turns(session, user_message, sources)

        content = await with_timeout(
            self._llm.chat(turns),
            self._timeout,
            on_timeout=lambda: InferenceError(
                message="Chat generation timed out",
                provider_name=self._llm.get_provider_name(),
            ),
        )
        assistant = await self._save_assistant_message(session, content, sources)
        logger.info(
            "rag_answered",
            session_id=session.id,
            source_count=len(sources),
            answer_length=len(content),
        )
        return RagAnswer(message=assistant, sources=sources)

    async def stream(
        self,
        principal: Principal,
        session_id: str,
        message: str,
    ) -> AsyncIterator[StreamEvent]:
        """Run one streamed turn: ``content``* then ``sources`` then ``done``.

        Access and validation errors raise before the first event.  An
        inference failure or timeout ends the stream with one ``error``
        event after saving any partial content.  If the consumer closes the
        stream early, partial content is saved during cleanup.
        """
        session = await self._open_turn(principal, session_id, message)
        user_message = await self._save_user_message(session, message)

        try:
            sources = await self.retrieve_context(message, session.workspace_id)
            turns = await self._build_turns(session, user_message, sources)
        except (InferenceError, RAGError) as exc:
            logger.error("rag_stream_retrieval_failed", session_id=session.id, error=str(exc))
            yield StreamEvent.error(STREAM_FAILED_MESSAGE)
            return

        fragments = self._llm.stream_chat(turns)
        parts: list[str] = []
        persisted = False
        try:
            try:
                while True:
                    fragment = await with_timeout(
                        _next_fragment(fragments),
                        self._timeout,
                        on_timeout=lambda: InferenceError(
                            message="Chat stream stalled",
                            provider_name=self._llm.get_provider_name(),
                        ),
                    )
                    if fragment is None:
                        break
                    if not fragment:
                        continue
                    parts.append(fragment)
                    yield StreamEvent.content(fragment)
            except InferenceError as exc:
                logger.error(
                    "rag_stream_failed",
                    session_id=session.id,
                    partial_length=sum(len(p) for p in parts),
                    error=str(exc),
                )
                persisted = True
                if parts:
                    await self._save_assistant_message(session, "".join(parts), sources)
                yield StreamEvent.error(STREAM_FAILED_MESSAGE)
                return

            yield StreamEvent.sources_event(sources)
            persisted = True
            assistant = await self._save_assistant_message(session, "".join(parts), sources)
            logger.info(
                "rag_streamed",
                session_id=session.id,
                source_count=len(sources),
                answer_length=len(assistant.content),
            )
            yield StreamEvent.done(assistant.id)
        finally:
            await self._close_fragments(fragments)
            if not persisted and parts:
                await self._save_partial_on_abort(session, "".join(parts), sources)

    async def retrieve_context(self, query: str, workspace_id: str) -> list[Source]:
        """Return up to ``max_documents`` sources, best chunk per document.

        An empty index yields an empty list, not an error.
        """
        vector = await self._embedder.embed(query)
        matches = await self._vectors.query(
            vector,
            top_k=self._top_k,
            filters={"workspace_id": workspace_id},
        )

        picked = []
        seen: set[str] = set()
        for match in matches:
            document_id = match.document_id
            if not document_id or document_id in seen:
                continue
            if len(seen) >= self._max_documents:
                break
            seen.add(document_id)
            picked.append(match)

        if not picked:
            return []

        documents = await self._store.get_documents([m.document_id for m in picked])
        titles = {d.id: d.title for d in documents}
        return [
            Source(
                document_id=match.document_id,
                document_title=titles.get(match.document_id) or UNKNOWN_DOCUMENT_TITLE,
                chunk_id=match.id,
                text_snippet=match.text,
                relevance_score=match.score,
            )
            for match in picked
        ]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _open_turn(self, principal: Principal, session_id: str, message: str) -> ChatSession:
        if not message or not message.strip():
            raise InvalidRequestError(message="Message is required")
        session = await self._store.get_session(session_id)
        if session is None:
            raise NotFoundError(message="Session not found")
        require_visible(principal, session.workspace_id, what="Session")
        return session

    async def _build_turns(
        self,
        session: ChatSession,
        user_message: ChatMessage,
        sources: list[Source],
    ) -> list[ChatTurn]:
        history = await self._store.recent_messages(
            session.id,
            limit=self._history_messages,
            exclude_ids=[user_message.id],
        )
        turns: list[ChatTurn] = [{"role": "system", "content": _SYSTEM_PROMPT}]
        turns.extend({"role": m.role.value, "content": m.content} for m in history)
        turns.append({"role": "user", "content": build_user_prompt(user_message.content, sources)})
        return turns

    async def _save_user_message(self, session: ChatSession, content: str) -> ChatMessage:
        return await self._store.add_message(
            ChatMessage(
                id=str(uuid.uuid4()),
                session_id=session.id,
                role=ChatRole.USER,
                content=content,
            )
        )

    async def _save_assistant_message(
        self,
        session: ChatSession,
        content: str,
        sources: list[Source],
    ) -> ChatMessage:
        message = await self._store.add_message(
            ChatMessage(
                id=str(uuid.uuid4()),
                session_id=session.id,
                role=ChatRole.ASSISTANT,
                content=content,
                sources=sources,
            )
        )
        await self._store.touch_session(session.id)
        return message

    async def _save_partial_on_abort(
        self,
        session: ChatSession,
        content: str,
        sources: list[Source],
    ) -> None:
        try:
            await self._save_assistant_message(session, content, sources)
        except DocVaultError as exc:
            logger.error("rag_partial_save_failed", session_id=session.id, error=str(exc))
            return
        logger.info("rag_stream_aborted", session_id=session.id, partial_length=len(content))

    @staticmethod
    async def _close_fragments(fragments: AsyncIterator[str]) -> None:
        aclose = getattr(fragments, "aclose", None)
        if aclose is not None:
            await aclose()
