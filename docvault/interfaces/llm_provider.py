"""Abstract base class for LLM service providers.

Defines the generation half of the inference contract: plain completions
for auto-tagging, multi-turn chat (blocking and streamed) for the RAG
loop, and vision-based transcription for images and scanned PDFs.
Implementations wrap OpenAI or a local Ollama server; call sites stay
provider-agnostic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

# One chat turn: {"role": "system" | "user" | "assistant", "content": "..."}
ChatTurn = dict[str, str]


# Concrete implementations: OpenAILLMProvider, OllamaLLMProvider
# Located in: docvault/providers/llm/
class ILLMProvider(ABC):
    """Contract for LLM services used by the tagger, extractor and RAG session.

    Providers must support text completion and chat; vision is optional
    and declared via :meth:`supports_vision`.
    """

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 4000,
    ) -> str:
        """Generate a single-turn text completion.

        Parameters
        ----------
        system_prompt:
            The system/instruction message that sets the model's behaviour.
        user_prompt:
            The user-facing prompt containing the actual request or data.
        temperature:
            Sampling temperature (0.0 = deterministic, 1.0 = creative).
        max_tokens:
            Upper bound on the number of tokens in the response.

        Raises
        ------
        docvault.utils.errors.InferenceError
            If the API call fails or returns an empty response.
        """

    @abstractmethod
    async def chat(
        self,
        messages: list[ChatTurn],
        temperature: float = 0.3,
        max_tokens: int = 2000,
    ) -> str:
        """Generate the next assistant turn for a full message list.

        Raises
        ------
        docvault.utils.errors.InferenceError
            If the API call fails or returns an empty response.
        """

    @abstractmethod
    def stream_chat(
        self,
        messages: list[ChatTurn],
        temperature: float = 0.3,
        max_tokens: int = 2000,
    ) -> AsyncIterator[str]:
        """Stream the next assistant turn as text fragments.

        Implemented as an async generator; closing it early (``aclose``)
        must release the underlying HTTP stream.

        Raises
        ------
        docvault.utils.errors.InferenceError
            If the stream cannot be opened or breaks mid-way.
        """

    @abstractmethod
    async def vision_extract(self, image_bytes: bytes, prompt: str, max_tokens: int = 4000) -> str:
        """Analyse an image using the model's vision capability.

        Raises
        ------
        docvault.utils.errors.InferenceError
            If vision is unsupported by this configuration or the call fails.
        """

    @abstractmethod
    def supports_vision(self) -> bool:
        """Return ``True`` if this provider can process image inputs."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"openai"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured (no network call)."""

    @abstractmethod
    async def validate_credentials(self) -> bool:
        """Perform a lightweight API call to confirm the provider answers."""
