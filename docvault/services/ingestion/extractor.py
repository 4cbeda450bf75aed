"""Text extraction from uploaded document bytes.

The extraction strategy is resolved once per document from its MIME type
(:func:`resolve_strategy`) and then dispatched to one handler:

* ``PLAIN_TEXT`` -- UTF-8 decode with replacement characters
* ``PDF``        -- PyMuPDF text layer, vision over rendered pages when empty
* ``IMAGE``      -- LLM vision transcription
* ``OFFICE``     -- extraction-pending placeholder (no structured parser)
* ``UNSUPPORTED``-- a placeholder string

Extraction never raises.  Each handler catches its own failures, logs
them, and returns placeholder text with a ``degraded_reason`` that the
pipeline persists on the document.
"""

from __future__ import annotations

import asyncio

import fitz  # PyMuPDF -- the "fitz" import name is a PyMuPDF convention
import structlog

from docvault.interfaces.llm_provider import ILLMProvider
from docvault.models.ingestion import ExtractionResult, ExtractionStrategy
from docvault.utils.concurrency import with_timeout
from docvault.utils.errors import DocVaultError, InferenceError

logger = structlog.get_logger(logger_name=__name__)

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

_PLAIN_TEXT_MIMES = frozenset({"text/plain", "message/rfc822"})
_OFFICE_MIMES = frozenset({DOCX_MIME, XLSX_MIME})

IMAGE_TRANSCRIPTION_PROMPT = (
    "Extract and transcribe all text visible in this image. Include any numbers, "
    "dates, names, and other details. If this is a receipt or invoice, list all "
    "line items with their amounts."
)

_PDF_EMPTY_PLACEHOLDER = "[PDF content could not be extracted]"
_IMAGE_EMPTY_PLACEHOLDER = "[No text found in image]"
_PENDING_PLACEHOLDER = "[Document type {mime_type} - text extraction pending]"

# Resolution used when rendering PDF pages for the vision fallback.
_PDF_RENDER_DPI = 150


def resolve_strategy(mime_type: str) -> ExtractionStrategy:
    """Map a MIME type onto its extraction strategy."""
    mime = (mime_type or "").split(";", 1)[0].strip().lower()
    if mime in _PLAIN_TEXT_MIMES:
        return ExtractionStrategy.PLAIN_TEXT
    if mime == "application/pdf":
        return ExtractionStrategy.PDF
    if mime.startswith("image/"):
        return ExtractionStrategy.IMAGE
    if mime in _OFFICE_MIMES:
        return ExtractionStrategy.OFFICE
    return ExtractionStrategy.UNSUPPORTED


class TextExtractor:
    """Turns raw document bytes into text, degrading instead of failing.

    Parameters
    ----------
    llm:
        Provider used for vision transcription of images and of rendered
        pages from scanned PDFs.
    timeout_seconds:
        Upper bound on each vision call.
    pdf_vision_max_pages:
        Number of leading pages rendered for the scanned-PDF fallback.
    """

    def __init__(
        self,
        llm: ILLMProvider,
        timeout_seconds: float = 25.0,
        pdf_vision_max_pages: int = 3,
    ) -> None:
        self._llm = llm
        self._timeout = timeout_seconds
        self._pdf_vision_max_pages = max(1, pdf_vision_max_pages)

    async def extract(
        self,
        blob: bytes,
        mime_type: str,
        strategy: ExtractionStrategy | None = None,
    ) -> ExtractionResult:
        """Extract text from *blob*.

        *strategy* may be passed in when the caller has already resolved
        it; otherwise it is derived from *mime_type*.
        """
        strategy = strategy or resolve_strategy(mime_type)
        logger.debug("extraction_started", strategy=strategy.value, mime_type=mime_type, size_bytes=len(blob))

        if strategy is ExtractionStrategy.PLAIN_TEXT:
            return ExtractionResult(text=blob.decode("utf-8", errors="replace"), strategy=strategy)
        if strategy is ExtractionStrategy.PDF:
            return await self._extract_pdf(blob, mime_type)
        if strategy is ExtractionStrategy.IMAGE:
            return await self._extract_image(blob, mime_type)
        if strategy is ExtractionStrategy.OFFICE:
            return self._pending(mime_type, strategy, "office_extraction_pending")

        logger.warning("unsupported_mime_type", mime_type=mime_type)
        return ExtractionResult(
            text=f"[Unsupported document type: {mime_type}]",
            strategy=ExtractionStrategy.UNSUPPORTED,
            degraded_reason="unsupported_mime_type",
        )

    # ------------------------------------------------------------------
    # Strategy handlers
    # ------------------------------------------------------------------

    async def _extract_pdf(self, blob: bytes, mime_type: str) -> ExtractionResult:
        strategy = ExtractionStrategy.PDF
        try:
            text, page_count = await asyncio.to_thread(self._read_pdf_text_layer, blob)
        except Exception as exc:  # noqa: BLE001
            # Malformed PDFs raise many different fitz error types.
            logger.warning("pdf_parse_failed", error=str(exc))
            return self._pending(mime_type, strategy, "pdf_parse_failed")

        if text.strip():
            return ExtractionResult(text=text, strategy=strategy, page_count=page_count)

        logger.info("pdf_text_layer_empty", page_count=page_count)
        try:
            pages = await asyncio.to_thread(self._render_pdf_pages, blob, self._pdf_vision_max_pages)
        except Exception as exc:  # noqa: BLE001
            logger.warning("pdf_render_failed", error=str(exc))
            pages = []

        transcripts: list[str] = []
        for page_png in pages:
            try:
                transcript = await self._vision(page_png, IMAGE_TRANSCRIPTION_PROMPT, max_tokens=2000)
            except DocVaultError as exc:
                logger.warning("pdf_page_vision_failed", error=str(exc))
                continue
            if transcript.strip():
                transcripts.append(transcript.strip())

        if not transcripts:
            return ExtractionResult(
                text=_PDF_EMPTY_PLACEHOLDER,
                strategy=strategy,
                page_count=page_count,
                degraded_reason="pdf_no_text",
            )
        return ExtractionResult(
            text="\n\n".join(transcripts),
            strategy=strategy,
            page_count=page_count,
            degraded_reason="pdf_vision_fallback",
        )

    async def _extract_image(self, blob: bytes, mime_type: str) -> ExtractionResult:
        strategy = ExtractionStrategy.IMAGE
        try:
            text = await self._vision(blob, IMAGE_TRANSCRIPTION_PROMPT, max_tokens=2000)
        except DocVaultError as exc:
            logger.warning("image_vision_failed", mime_type=mime_type, error=str(exc))
            return ExtractionResult(
                text=f"[Could not extract text from {mime_type}]",
                strategy=strategy,
                degraded_reason="ai_extraction_failed",
            )
        if not text.strip():
            return ExtractionResult(
                text=_IMAGE_EMPTY_PLACEHOLDER,
                strategy=strategy,
                degraded_reason="image_no_text",
            )
        return ExtractionResult(text=text, strategy=strategy)

    @staticmethod
    def _pending(mime_type: str, strategy: ExtractionStrategy, reason: str) -> ExtractionResult:
        """Placeholder for bytes the vision model cannot take as an image."""
        logger.info("extraction_pending", mime_type=mime_type, reason=reason)
        return ExtractionResult(
            text=_PENDING_PLACEHOLDER.format(mime_type=mime_type),
            strategy=strategy,
            degraded_reason=reason,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _vision(self, image_bytes: bytes, prompt: str, max_tokens: int) -> str:
        if not self._llm.supports_vision():
            raise InferenceError(
                message="Configured LLM provider does not support vision",
                provider_name=self._llm.get_provider_name(),
            )
        return await with_timeout(
            self._llm.vision_extract(image_bytes, prompt, max_tokens=max_tokens),
            self._timeout,
            on_timeout=lambda: InferenceError(
                message=f"Vision extraction timed out after {self._timeout}s",
                provider_name=self._llm.get_provider_name(),
            ),
        )

    @staticmethod
    def _read_pdf_text_layer(blob: bytes) -> tuple[str, int]:
        """Return the concatenated page text and the page count."""
        with fitz.open(stream=blob, filetype="pdf") as doc:
            pages = [page.get_text("text") for page in doc]
            return "\n\n".join(p.strip() for p in pages if p.strip()), doc.page_count

    @staticmethod
    def _render_pdf_pages(blob: bytes, max_pages: int) -> list[bytes]:
        """Render the first *max_pages* pages to PNG bytes."""
        rendered: list[bytes] = []
        with fitz.open(stream=blob, filetype="pdf") as doc:
            for page_index in range(min(max_pages, doc.page_count)):
                pixmap = doc[page_index].get_pixmap(dpi=_PDF_RENDER_DPI)
                rendered.append(pixmap.tobytes("png"))
        return rendered
