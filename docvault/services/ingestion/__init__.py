"""Document ingestion for the DocVault knowledge base.

Drives each uploaded document: **extract -> chunk -> embed -> index -> tag**.

Pipeline stages overview:

1. **Extract** (extractor.py / TextExtractor) -- Resolves a closed
   extraction strategy from the MIME type and turns the original bytes
   into text, degrading to a placeholder rather than failing.

2. **Chunk** (chunker.py / TextChunker) -- Splits the text into
   ~512-token word windows with a 64-token overlap.

3. **Embed** (embedder.py / Embedder) -- Timeout-bounded calls to the
   injected IEmbeddingProvider.

4. **Index** (via IVectorIndex and IMetadataStore) -- One vector entry and
   one chunk row per window, sharing the id ``{document_id}_{index}``.

5. **Tag** (tagger.py / Tagger) -- LLM tag suggestions linked as
   ``ai_suggested`` associations.

The IngestionPipeline class runs all five stages for one document.
UploadService creates documents and hands them to the IngestionDispatcher
(inline or queued); LeaseReclaimer re-dispatches runs whose process died.
"""

from docvault.services.ingestion.chunker import TextChunker
from docvault.services.ingestion.dispatcher import IngestionDispatcher, IngestionQueue
from docvault.services.ingestion.embedder import Embedder
from docvault.services.ingestion.extractor import TextExtractor, resolve_strategy
from docvault.services.ingestion.pipeline import IngestionPipeline
from docvault.services.ingestion.reclaimer import LeaseReclaimer
from docvault.services.ingestion.tagger import Tagger
from docvault.services.ingestion.upload_service import UploadService

__all__ = [
    "Embedder",
    "IngestionDispatcher",
    "IngestionPipeline",
    "IngestionQueue",
    "LeaseReclaimer",
    "Tagger",
    "TextChunker",
    "TextExtractor",
    "UploadService",
    "resolve_strategy",
]
