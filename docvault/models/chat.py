"""Chat session, message and streaming-event models for the RAG loop."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class ChatRole(str, Enum):  # noqa: UP042 — StrEnum requires Python 3.11+
    USER = "user"
    ASSISTANT = "assistant"


class Feedback(str, Enum):  # noqa: UP042 — StrEnum requires Python 3.11+
    UP = "up"
    DOWN = "down"


class Source(BaseModel):
    """One retrieved passage cited by an assistant message.

    Stored on the message as a snapshot; never recomputed after the
    message is persisted.
    """

    model_config = ConfigDict(frozen=True)

    document_id: str
    document_title: str
    chunk_id: str
    text_snippet: str = ""
    relevance_score: float = Field(default=0.0)


class ChatSession(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    workspace_id: str
    user_id: str
    title: str = "New Chat"
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    session_id: str
    role: ChatRole
    content: str
    sources: list[Source] = Field(default_factory=list)
    feedback: Feedback | None = None
    created_at: datetime | None = None


class ChatSessionSummary(BaseModel):
    """A session row for listings, with a preview of its latest message."""

    model_config = ConfigDict(frozen=True)

    session: ChatSession
    last_message: str | None = None


class ChatSessionPage(BaseModel):
    model_config = ConfigDict(frozen=True)

    sessions: list[ChatSessionSummary] = Field(default_factory=list)
    total: int = 0


class ChatSessionDetail(BaseModel):
    model_config = ConfigDict(frozen=True)

    session: ChatSession
    messages: list[ChatMessage] = Field(default_factory=list)


class RagAnswer(BaseModel):
    """Non-streaming result of one conversational turn."""

    model_config = ConfigDict(frozen=True)

    message: ChatMessage
    sources: list[Source] = Field(default_factory=list)


StreamEventType = Literal["content", "sources", "done", "error"]


class StreamEvent(BaseModel):
    """One event on the streaming chat transport.

    ``content`` carries ``{"text": ...}``, ``sources`` carries
    ``{"sources": [...]}``, ``done`` carries ``{"message_id": ...}`` and
    ``error`` carries ``{"message": ...}``.
    """

    model_config = ConfigDict(frozen=True)

    type: StreamEventType
    data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def content(cls, text: str) -> StreamEvent:
        return cls(type="content", data={"text": text})

    @classmethod
    def sources_event(cls, sources: list[Source]) -> StreamEvent:
        return cls(type="sources", data={"sources": [s.model_dump() for s in sources]})

    @classmethod
    def done(cls, message_id: str) -> StreamEvent:
        return cls(type="done", data={"message_id": message_id})

    @classmethod
    def error(cls, message: str = "Stream failed") -> StreamEvent:
        return cls(type="error", data={"message": message})
