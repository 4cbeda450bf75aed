"""DocVault domain models -- re-exports all public model classes.

The models are organized by concern:
    - auth.py       -- Principal and workspace Role
    - documents.py  -- Document lifecycle and Chunk rows
    - tags.py       -- Tag vocabulary, associations, LLM suggestions
    - ingestion.py  -- Extraction strategies/results, pipeline outcomes, uploads
    - search.py     -- Search queries, facet filters, result pages
    - vector.py     -- Vector index entries and matches
    - chat.py       -- Chat sessions, messages, sources, stream events
"""

from docvault.models.auth import Principal, Role
from docvault.models.chat import (
    ChatMessage,
    ChatRole,
    ChatSession,
    ChatSessionDetail,
    ChatSessionPage,
    ChatSessionSummary,
    Feedback,
    RagAnswer,
    Source,
    StreamEvent,
)
from docvault.models.documents import (
    Chunk,
    Document,
    DocumentDetail,
    DocumentPage,
    DocumentStatus,
)
from docvault.models.ingestion import (
    ExtractionResult,
    ExtractionStrategy,
    IngestionOutcome,
    TextChunk,
    UploadFile,
    UploadResult,
)
from docvault.models.search import FacetFilter, SearchPage, SearchQuery, SearchResult
from docvault.models.tags import (
    DocumentTagView,
    Tag,
    TagCategory,
    TaggingResult,
    TagSource,
    TagSuggestion,
)
from docvault.models.vector import VectorEntry, VectorMatch

__all__ = [
    "ChatMessage",
    "ChatRole",
    "ChatSession",
    "ChatSessionDetail",
    "ChatSessionPage",
    "ChatSessionSummary",
    "Chunk",
    "Document",
    "DocumentDetail",
    "DocumentPage",
    "DocumentStatus",
    "DocumentTagView",
    "ExtractionResult",
    "ExtractionStrategy",
    "FacetFilter",
    "Feedback",
    "IngestionOutcome",
    "Principal",
    "RagAnswer",
    "Role",
    "SearchPage",
    "SearchQuery",
    "SearchResult",
    "Source",
    "StreamEvent",
    "Tag",
    "TagCategory",
    "TagSource",
    "TagSuggestion",
    "TaggingResult",
    "TextChunk",
    "UploadFile",
    "UploadResult",
    "VectorEntry",
    "VectorMatch",
]
