"""Chat session bookkeeping: list, create, read, delete, feedback."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog

from docvault.models.auth import Principal, Role
from docvault.models.chat import ChatSession, ChatSessionDetail, ChatSessionPage, Feedback
from docvault.services.access import accessible_workspaces, default_workspace, require_visible
from docvault.utils.errors import InvalidRequestError, NotFoundError, PermissionDeniedError

if TYPE_CHECKING:
    from docvault.interfaces.metadata_store import IMetadataStore

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_SESSION_TITLE = "New Chat"
MAX_PAGE_SIZE = 100


class ChatService:
    """Session CRUD on behalf of a principal.

    Conversational turns themselves live in :class:`RagSession`.
    """

    def __init__(self, metadata_store: IMetadataStore) -> None:
        self._store = metadata_store

    async def list_sessions(
        self,
        principal: Principal,
        workspace_id: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> ChatSessionPage:
        """The caller's own sessions, most recently updated first."""
        workspace_ids = accessible_workspaces(principal, workspace_id)
        if not workspace_ids:
            return ChatSessionPage()
        return await self._store.list_sessions(
            principal.user_id,
            workspace_ids,
            limit=max(1, min(limit, MAX_PAGE_SIZE)),
            offset=max(0, offset),
        )

    async def create_session(
        self,
        principal: Principal,
        workspace_id: str | None = None,
        title: str | None = None,
    ) -> ChatSession:
        target = default_workspace(principal, workspace_id)
        session = await self._store.create_session(
            ChatSession(
                id=str(uuid.uuid4()),
                workspace_id=target,
                user_id=principal.user_id,
                title=(title or "").strip() or DEFAULT_SESSION_TITLE,
            )
        )
        logger.info("chat_session_created", session_id=session.id, workspace_id=target)
        return session

    async def get_session(self, principal: Principal, session_id: str) -> ChatSessionDetail:
        session = await self._visible_session(principal, session_id)
        messages = await self._store.list_messages(session.id)
        return ChatSessionDetail(session=session, messages=messages)

    async def delete_session(self, principal: Principal, session_id: str) -> None:
        """Delete a session; only its creator or a workspace owner may."""
        session = await self._visible_session(principal, session_id)
        role = principal.role_in(session.workspace_id)
        if session.user_id != principal.user_id and role is not Role.OWNER:
            raise PermissionDeniedError(message="Insufficient permissions")
        await self._store.delete_session(session.id)
        logger.info("chat_session_deleted", session_id=session.id)

    async def submit_feedback(
        self,
        principal: Principal,
        message_id: str,
        feedback: Feedback | str,
    ) -> None:
        if not message_id or not feedback:
            raise InvalidRequestError(message="Message ID and feedback are required")
        try:
            value = Feedback(feedback)
        except ValueError as exc:
            raise InvalidRequestError(message="Feedback must be 'up' or 'down'") from exc

        message = await self._store.get_message(message_id)
        if message is None:
            raise NotFoundError(message="Message not found")
        session = await self._store.get_session(message.session_id)
        if session is None or principal.role_in(session.workspace_id) is None:
            raise NotFoundError(message="Message not found")

        await self._store.set_feedback(message_id, value)
        logger.info("chat_feedback_recorded", message_id=message_id, feedback=value.value)

    async def _visible_session(self, principal: Principal, session_id: str) -> ChatSession:
        session = await self._store.get_session(session_id)
        if session is None:
            raise NotFoundError(message="Session not found")
        require_visible(principal, session.workspace_id, what="Session")
        return session
