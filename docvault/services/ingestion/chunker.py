"""Word-window text chunking with fixed overlap.

Splits extracted document text into :class:`~docvault.models.ingestion.TextChunk`
windows sized for embedding models.  Token counts are approximated at
0.75 words per token, so the default 512-token target becomes a
384-word window and the 64-token overlap becomes 48 shared words.

The output is a pure function of the input text and the two sizes:
re-ingesting a document yields the same chunk boundaries, which keeps
chunk ids (``{document_id}_{index}``) stable across runs.
"""

from __future__ import annotations

import math

import structlog

from docvault.models.ingestion import TextChunk

logger = structlog.get_logger(logger_name=__name__)

_WORDS_PER_TOKEN = 0.75


class TextChunker:
    """Splits text into overlapping fixed-size word windows.

    Parameters
    ----------
    target_tokens:
        Approximate tokens per chunk (default 512).
    overlap_tokens:
        Approximate tokens shared by consecutive chunks (default 64).

    Raises
    ------
    ValueError
        If the overlap window is not strictly smaller than the chunk window,
        which would stop the window from advancing.
    """

    def __init__(self, target_tokens: int = 512, overlap_tokens: int = 64) -> None:
        self._words_per_chunk = math.floor(target_tokens * _WORDS_PER_TOKEN)
        self._overlap_words = math.floor(overlap_tokens * _WORDS_PER_TOKEN)
        if self._words_per_chunk < 1:
            raise ValueError(f"target_tokens too small: {target_tokens}")
        if self._overlap_words < 0 or self._overlap_words >= self._words_per_chunk:
            raise ValueError(
                f"overlap_tokens ({overlap_tokens}) must be smaller than "
                f"target_tokens ({target_tokens})"
            )

    @property
    def words_per_chunk(self) -> int:
        return self._words_per_chunk

    @property
    def overlap_words(self) -> int:
        return self._overlap_words

    def chunk(self, text: str) -> list[TextChunk]:
        """Split *text* into overlapping windows.

        Whitespace runs are collapsed to single spaces.  Empty or
        whitespace-only input returns an empty list.
        """
        words = text.split() if text else []
        n = len(words)
        if n == 0:
            return []

        chunks: list[TextChunk] = []
        start = 0
        while True:
            end = min(start + self._words_per_chunk, n)
            word_count = end - start
            chunks.append(
                TextChunk(
                    index=len(chunks),
                    text=" ".join(words[start:end]),
                    token_count=math.ceil(word_count / _WORDS_PER_TOKEN),
                    start_word=start,
                    end_word=end,
                )
            )
            start = end - self._overlap_words
            # The next window would only repeat words already covered.
            if start >= n - self._overlap_words:
                break

        logger.debug(
            "chunking_complete",
            num_chunks=len(chunks),
            word_count=n,
            words_per_chunk=self._words_per_chunk,
        )
        return chunks
