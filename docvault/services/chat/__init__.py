"""Chat: session bookkeeping and retrieval-augmented turns."""

from docvault.services.chat.chat_service import ChatService
from docvault.services.chat.rag_session import RagSession

__all__ = ["ChatService", "RagSession"]
