"""LLM-powered auto-tagging of ingested documents.

Uses an :class:`~docvault.interfaces.llm_provider.ILLMProvider` to suggest
tags for a document from the first part of its text.  The workspace's
most-used tags are included in the prompt so the model reuses existing
vocabulary rather than inventing near-duplicates.

The tagging flow:
1. The prompt lists existing tag names and the first 2000 characters of text
2. The LLM returns a JSON array: ``[{"name", "category", "confidence"}, ...]``
3. The array is parsed (handling markdown fences and surrounding prose)
4. Suggestions are normalised: unknown categories dropped, confidence
   clamped, names deduplicated case-insensitively

Tagging never blocks ingestion.  An LLM failure or an unparseable reply
yields an empty suggestion list plus a ``degraded_reason``.
"""

from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING, Any

import structlog

from docvault.models.tags import Tag, TagCategory, TaggingResult, TagSuggestion
from docvault.utils.concurrency import with_timeout
from docvault.utils.errors import DocVaultError, InferenceError

if TYPE_CHECKING:
    from docvault.interfaces.llm_provider import ILLMProvider

logger = structlog.get_logger(logger_name=__name__)

TAGGING_INFERENCE_FAILED = "tagging_inference_failed"
TAGGING_PARSE_FAILED = "tagging_parse_failed"

_TAGGING_SYSTEM_PROMPT = "You are a document analysis assistant. Return only valid JSON."

_TAGGING_USER_PROMPT = """\
Analyze this document and suggest appropriate tags.

Existing tags in this workspace: {existing}

Document text (first {max_chars} chars):
{text}

Return a JSON array of suggested tags. Each tag should have:
- name: the tag name (use existing tags when appropriate)
- category: one of {categories}
- confidence: a number from 0 to 1

Example response:
[
  {{"name": "invoice", "category": "document_type", "confidence": 0.95}},
  {{"name": "Acme Corp", "category": "vendor", "confidence": 0.85}}
]

Return ONLY the JSON array, no other text."""


class Tagger:
    """Suggests tags for a document's text using an LLM.

    Parameters
    ----------
    llm:
        The LLM provider used for the tagging prompt (injected, swappable).
    timeout_seconds:
        Upper bound on the tagging call.
    max_chars:
        Number of leading text characters shown to the model.
    """

    def __init__(
        self,
        llm: ILLMProvider,
        timeout_seconds: float = 25.0,
        max_chars: int = 2000,
    ) -> None:
        self._llm = llm
        self._timeout = timeout_seconds
        self._max_chars = max_chars

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def suggest_tags(self, text: str, vocabulary: list[Tag]) -> TaggingResult:
        """Ask the LLM for tag suggestions.

        Parameters
        ----------
        text:
            The document's extracted text; only the first ``max_chars``
            characters are sent.
        vocabulary:
            Existing workspace tags, most used first.

        Returns
        -------
        TaggingResult
            Suggestions, or an empty list with ``degraded_reason`` set.
            Never raises for inference or parse failures.
        """
        prompt = self.build_prompt(text, vocabulary)
        try:
            response = await with_timeout(
                self._llm.complete(
                    system_prompt=_TAGGING_SYSTEM_PROMPT,
                    user_prompt=prompt,
                    temperature=0.1,
                    max_tokens=500,
                ),
                self._timeout,
                on_timeout=lambda: InferenceError(
                    message=f"Tagging timed out after {self._timeout}s",
                    provider_name=self._llm.get_provider_name(),
                ),
            )
        except DocVaultError as exc:
            logger.warning(
                "auto_tagging_failed",
                error=str(exc),
                msg="Continuing ingestion without tags.",
            )
            return TaggingResult(degraded_reason=TAGGING_INFERENCE_FAILED)

        suggestions = self.parse_response(response)
        if suggestions is None:
            return TaggingResult(degraded_reason=TAGGING_PARSE_FAILED)

        logger.debug("auto_tagging_complete", tag_count=len(suggestions))
        return TaggingResult(tags=suggestions)

    def build_prompt(self, text: str, vocabulary: list[Tag]) -> str:
        existing = ", ".join(tag.name for tag in vocabulary) or "none"
        return _TAGGING_USER_PROMPT.format(
            existing=existing,
            max_chars=self._max_chars,
            text=text[: self._max_chars],
            categories=", ".join(f'"{c.value}"' for c in TagCategory),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def parse_response(response: str) -> list[TagSuggestion] | None:
        """Parse the LLM reply into normalised suggestions.

        Handles a bare JSON array, a markdown-fenced array, and an array
        embedded in prose.  Returns ``None`` when no JSON array can be
        recovered.
        """
        cleaned = (response or "").strip()

        fence_match = re.search(r"```(?:json)?\s*\n?(.*?)```", cleaned, re.DOTALL)
        if fence_match:
            cleaned = fence_match.group(1).strip()
        else:
            bracket_start = cleaned.find("[")
            bracket_end = cleaned.rfind("]")
            if bracket_start != -1 and bracket_end > bracket_start:
                cleaned = cleaned[bracket_start : bracket_end + 1]

        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError:
            logger.warning("tag_json_parse_failed", response_preview=(response or "")[:200])
            return None

        if not isinstance(data, list):
            logger.warning("tag_json_not_array", response_preview=(response or "")[:200])
            return None

        suggestions: list[TagSuggestion] = []
        seen: set[str] = set()
        for item in data:
            suggestion = _to_suggestion(item)
            if suggestion is None:
                continue
            key = suggestion.name.casefold()
            if key in seen:
                continue
            seen.add(key)
            suggestions.append(suggestion)
        return suggestions


def _to_suggestion(item: Any) -> TagSuggestion | None:
    """Coerce one array element into a suggestion, or ``None`` to drop it."""
    if not isinstance(item, dict):
        return None
    name = item.get("name")
    if not isinstance(name, str) or not name.strip():
        return None

    try:
        confidence = float(item.get("confidence", 0.5))
    except (TypeError, ValueError):
        confidence = 0.5
    if confidence != confidence:  # NaN
        confidence = 0.5

    return TagSuggestion(
        name=name.strip(),
        category=TagCategory.parse(item.get("category")),
        confidence=max(0.0, min(1.0, confidence)),
    )
