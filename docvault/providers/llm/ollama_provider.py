"""Ollama LLM provider adapter.

Wraps a local Ollama server via its OpenAI-compatible ``/v1`` endpoint,
reusing the ``openai`` client with a different base URL.  Lets DocVault
run fully offline: ``ollama pull llama3.1`` for text and
``ollama pull llava`` for image transcription.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

import httpx
import openai
import structlog

from docvault.config.settings import Settings
from docvault.interfaces.llm_provider import ChatTurn, ILLMProvider
from docvault.providers.llm.openai_provider import vision_messages
from docvault.utils.errors import InferenceError

logger = structlog.get_logger(logger_name=__name__)


class OllamaLLMProvider(ILLMProvider):
    """LLM provider backed by a local Ollama server."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._base_url = settings.ollama_base_url
        self._client = openai.AsyncOpenAI(
            base_url=f"{self._base_url.rstrip('/')}/v1",
            # Ollama ignores the key, but the SDK requires a non-empty value.
            api_key="ollama",
            timeout=openai.Timeout(settings.inference_timeout_seconds, connect=5.0),
        )
        self._text_model = settings.ollama_text_model
        self._vision_model = settings.ollama_vision_model

    # ------------------------------------------------------------------
    # ILLMProvider implementation
    # ------------------------------------------------------------------

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 4000,
    ) -> str:
        return await self.chat(
            [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
        )

    async def chat(
        self,
        messages: list[ChatTurn],
        temperature: float = 0.3,
        max_tokens: int = 2000,
    ) -> str:
        try:
            response = await self._client.chat.completions.create(
                model=self._text_model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
            content = response.choices[0].message.content
            if content is None:
                raise InferenceError(
                    message="Ollama returned empty response",
                    provider_name=self.get_provider_name(),
                )
            logger.info("ollama_completion", model=self._text_model)
            return content
        except openai.APIError as exc:
            raise InferenceError(
                message=f"Ollama API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def stream_chat(
        self,
        messages: list[ChatTurn],
        temperature: float = 0.3,
        max_tokens: int = 2000,
    ) -> AsyncIterator[str]:
        try:
            stream = await self._client.chat.completions.create(
                model=self._text_model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                stream=True,
            )
        except openai.APIError as exc:
            raise InferenceError(
                message=f"Ollama stream error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        try:
            async for event in stream:
                if event.choices and event.choices[0].delta.content:
                    yield event.choices[0].delta.content
        except openai.APIError as exc:
            raise InferenceError(
                message=f"Ollama stream interrupted: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        finally:
            await stream.close()

    async def vision_extract(self, image_bytes: bytes, prompt: str, max_tokens: int = 4000) -> str:
        """Transcribe an image with Ollama's vision model (llava)."""
        try:
            response = await self._client.chat.completions.create(
                model=self._vision_model,
                messages=vision_messages(image_bytes, prompt),
                max_tokens=max_tokens,
            )
            content = response.choices[0].message.content
            if content is None:
                raise InferenceError(
                    message="Ollama vision returned empty response",
                    provider_name=self.get_provider_name(),
                )
            logger.info("ollama_vision_extract", model=self._vision_model)
            return content
        except openai.APIError as exc:
            raise InferenceError(
                message=f"Ollama vision API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    def supports_vision(self) -> bool:
        return True

    def is_available(self) -> bool:
        return bool(self._base_url)

    async def validate_credentials(self) -> bool:
        """Check that the Ollama server answers on its native /api/tags endpoint."""
        if not self.is_available():
            return False
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                response = await client.get(f"{self._base_url.rstrip('/')}/api/tags")
                return response.status_code == 200
        except httpx.HTTPError:
            return False

    def get_provider_name(self) -> str:
        return "ollama"
