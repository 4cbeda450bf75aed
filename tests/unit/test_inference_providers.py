"""Unit tests for the OpenAI, Ollama and Nomic inference adapters.

The ``openai.AsyncOpenAI`` client on each provider is replaced with
AsyncMock endpoints, so no network calls are made.
"""

from __future__ import annotations

import base64
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from docvault.config.settings import Settings
from docvault.providers.embedding.nomic_embedding_provider import NomicEmbeddingProvider
from docvault.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from docvault.providers.llm.ollama_provider import OllamaLLMProvider
from docvault.providers.llm.openai_provider import OpenAILLMProvider, detect_media_type, vision_messages
from docvault.utils.errors import InferenceError, RAGError


# ======================================================================
# Shared helpers
# ======================================================================


def _settings(**overrides) -> Settings:
    defaults = {
        "openai_api_key": "sk-test",
        "openai_base_url": "",
        "openai_text_model": "",
        "openai_vision_model": "",
        "openai_embedding_model": "",
        "ollama_base_url": "http://localhost:11434",
    }
    defaults.update(overrides)
    return Settings(**defaults)


def _completion(content: str | None) -> SimpleNamespace:
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(total_tokens=12),
    )


def _connection_error() -> openai.APIConnectionError:
    return openai.APIConnectionError(request=httpx.Request("POST", "http://test/v1/chat/completions"))


class _FakeStream:
    """Async-iterable stand-in for an openai chat completion stream."""

    def __init__(self, deltas: list[str | None], error: Exception | None = None) -> None:
        self._events = [SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=d))]) for d in deltas]
        self._error = error
        self.closed = False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for event in self._events:
            yield event
        if self._error is not None:
            raise self._error

    async def close(self) -> None:
        self.closed = True


def _patch_chat(provider, **create_kwargs) -> AsyncMock:
    create = AsyncMock(**create_kwargs)
    provider._client = MagicMock()
    provider._client.chat.completions.create = create
    return create


# ======================================================================
# Helpers
# ======================================================================


class TestMediaType:
    @pytest.mark.parametrize(
        ("data", "expected"),
        [
            (b"\x89PNG\r\n\x1a\n....", "image/png"),
            (b"RIFF\x00\x00\x00\x00WEBP", "image/webp"),
            (b"GIF89a", "image/gif"),
            (b"\xff\xd8\xff\xe0", "image/jpeg"),
            (b"unknown", None),
            (b"PK\x03\x04docx", None),
            (b"%PDF-1.7", None),
        ],
    )
    def test_detect(self, data: bytes, expected: str | None) -> None:
        assert detect_media_type(data) == expected

    def test_vision_messages_embed_data_uri(self) -> None:
        messages = vision_messages(b"\x89PNG\r\n\x1a\nabc", "read this")
        parts = messages[0]["content"]
        assert parts[0] == {"type": "text", "text": "read this"}
        url = parts[1]["image_url"]["url"]
        assert url.startswith("data:image/png;base64,")
        assert base64.b64decode(url.split(",", 1)[1]) == b"\x89PNG\r\n\x1a\nabc"

    def test_vision_messages_reject_non_image_bytes(self) -> None:
        with pytest.raises(InferenceError):
            vision_messages(b"PK\x03\x04\x14\x00word/document.xml", "read this")


# ======================================================================
# OpenAILLMProvider
# ======================================================================


class TestOpenAILLMProvider:
    @pytest.mark.asyncio
    async def test_complete_sends_system_and_user_turns(self) -> None:
        provider = OpenAILLMProvider(_settings())
        create = _patch_chat(provider, return_value=_completion("[]"))

        assert await provider.complete("sys", "user", temperature=0.1, max_tokens=500) == "[]"

        kwargs = create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["messages"] == [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "user"},
        ]
        assert kwargs["max_tokens"] == 500

    @pytest.mark.asyncio
    async def test_empty_content_raises(self) -> None:
        provider = OpenAILLMProvider(_settings())
        _patch_chat(provider, return_value=_completion(None))
        with pytest.raises(InferenceError, match="empty response"):
            await provider.chat([{"role": "user", "content": "hi"}])

    @pytest.mark.asyncio
    async def test_api_error_wrapped(self) -> None:
        provider = OpenAILLMProvider(_settings())
        _patch_chat(provider, side_effect=_connection_error())
        with pytest.raises(InferenceError, match="API error"):
            await provider.chat([{"role": "user", "content": "hi"}])

    @pytest.mark.asyncio
    async def test_stream_yields_deltas_and_closes(self) -> None:
        provider = OpenAILLMProvider(_settings())
        stream = _FakeStream(["Hel", None, "lo"])
        _patch_chat(provider, return_value=stream)

        fragments = [f async for f in provider.stream_chat([{"role": "user", "content": "hi"}])]

        assert fragments == ["Hel", "lo"]
        assert stream.closed is True

    @pytest.mark.asyncio
    async def test_stream_interruption_wrapped_and_closed(self) -> None:
        provider = OpenAILLMProvider(_settings())
        stream = _FakeStream(["Hel"], error=_connection_error())
        _patch_chat(provider, return_value=stream)

        received: list[str] = []
        with pytest.raises(InferenceError, match="stream interrupted"):
            async for fragment in provider.stream_chat([{"role": "user", "content": "hi"}]):
                received.append(fragment)
        assert received == ["Hel"]
        assert stream.closed is True

    def test_vision_support_on_custom_endpoint_needs_model(self) -> None:
        assert OpenAILLMProvider(_settings()).supports_vision() is True
        custom = OpenAILLMProvider(_settings(openai_base_url="http://llm.local/v1"))
        assert custom.supports_vision() is False
        assert custom.get_provider_name() == "openai-compatible"
        named = OpenAILLMProvider(_settings(openai_base_url="http://llm.local/v1", openai_vision_model="qwen-vl"))
        assert named.supports_vision() is True

    @pytest.mark.asyncio
    async def test_vision_extract_uses_vision_model(self) -> None:
        provider = OpenAILLMProvider(_settings())
        create = _patch_chat(provider, return_value=_completion("Total $5"))
        assert await provider.vision_extract(b"\xff\xd8", "read") == "Total $5"
        assert create.call_args.kwargs["model"] == "gpt-4o"

    @pytest.mark.asyncio
    async def test_vision_extract_refuses_office_bytes(self) -> None:
        provider = OpenAILLMProvider(_settings())
        create = _patch_chat(provider, return_value=_completion("never"))
        with pytest.raises(InferenceError):
            await provider.vision_extract(b"PK\x03\x04\x14\x00xl/workbook.xml", "read")
        create.assert_not_called()

    def test_is_available_reflects_key(self) -> None:
        assert OpenAILLMProvider(_settings()).is_available() is True
        assert OpenAILLMProvider(_settings(openai_api_key="")).is_available() is False

    @pytest.mark.asyncio
    async def test_missing_key_fails_on_call_not_construction(self) -> None:
        provider = OpenAILLMProvider(_settings(openai_api_key=""))
        assert provider._client is None
        with pytest.raises(InferenceError, match="OPENAI_API_KEY"):
            await provider.chat([{"role": "user", "content": "hi"}])
        assert await provider.validate_credentials() is False

    @pytest.mark.asyncio
    async def test_validate_credentials_lists_models(self) -> None:
        provider = OpenAILLMProvider(_settings())
        provider._client = MagicMock()
        provider._client.models.list = AsyncMock(side_effect=_connection_error())
        assert await provider.validate_credentials() is False
        provider._client.models.list = AsyncMock(return_value=[])
        assert await provider.validate_credentials() is True


# ======================================================================
# OllamaLLMProvider
# ======================================================================


class TestOllamaLLMProvider:
    @pytest.mark.asyncio
    async def test_chat_uses_configured_model(self) -> None:
        provider = OllamaLLMProvider(_settings(ollama_text_model="mistral"))
        create = _patch_chat(provider, return_value=_completion("ok"))
        assert await provider.chat([{"role": "user", "content": "hi"}]) == "ok"
        assert create.call_args.kwargs["model"] == "mistral"

    @pytest.mark.asyncio
    async def test_api_error_wrapped(self) -> None:
        provider = OllamaLLMProvider(_settings())
        _patch_chat(provider, side_effect=_connection_error())
        with pytest.raises(InferenceError, match="Ollama API error"):
            await provider.complete("sys", "user")

    @pytest.mark.asyncio
    async def test_stream_closes(self) -> None:
        provider = OllamaLLMProvider(_settings())
        stream = _FakeStream(["a", "b"])
        _patch_chat(provider, return_value=stream)
        assert [f async for f in provider.stream_chat([])] == ["a", "b"]
        assert stream.closed is True

    def test_identity(self) -> None:
        provider = OllamaLLMProvider(_settings())
        assert provider.get_provider_name() == "ollama"
        assert provider.supports_vision() is True


# ======================================================================
# Embedding providers
# ======================================================================


def _embedding_response(count: int, dim: int = 3) -> SimpleNamespace:
    return SimpleNamespace(
        data=[SimpleNamespace(embedding=[float(i)] * dim) for i in range(count)],
        usage=SimpleNamespace(total_tokens=count),
    )


class TestOpenAIEmbeddingProvider:
    @pytest.mark.asyncio
    async def test_embed_returns_vectors_in_order(self) -> None:
        provider = OpenAIEmbeddingProvider(_settings())
        provider._client = MagicMock()
        provider._client.embeddings.create = AsyncMock(return_value=_embedding_response(2, dim=1536))

        vectors = await provider.embed(["a", "b"])

        assert vectors == [[0.0] * 1536, [1.0] * 1536]
        assert provider._client.embeddings.create.call_args.kwargs["model"] == "text-embedding-3-small"

    @pytest.mark.asyncio
    async def test_empty_input_skips_call(self) -> None:
        provider = OpenAIEmbeddingProvider(_settings())
        provider._client = MagicMock()
        provider._client.embeddings.create = AsyncMock()
        assert await provider.embed([]) == []
        provider._client.embeddings.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_api_error_becomes_rag_error(self) -> None:
        provider = OpenAIEmbeddingProvider(_settings())
        provider._client = MagicMock()
        provider._client.embeddings.create = AsyncMock(side_effect=_connection_error())
        with pytest.raises(RAGError):
            await provider.embed(["a"])

    def test_dimensions_by_model(self) -> None:
        assert OpenAIEmbeddingProvider(_settings()).get_dimension() == 1536
        assert OpenAIEmbeddingProvider(_settings(openai_embedding_model="text-embedding-3-large")).get_dimension() == 3072
        assert OpenAIEmbeddingProvider(_settings(openai_embedding_model="custom")).get_dimension() == 768

    def test_truncation_for_small_context_models(self) -> None:
        provider = OpenAIEmbeddingProvider(_settings(openai_embedding_model="BAAI/bge-base-en-v1.5"))
        long_text = "word " * 1000
        truncated = provider._truncate_to_token_limit(long_text)
        assert len(truncated) <= 768
        assert not truncated.endswith(" ")

    @pytest.mark.asyncio
    async def test_wrong_vector_width_rejected(self) -> None:
        provider = OpenAIEmbeddingProvider(_settings())
        provider._client = MagicMock()
        provider._client.embeddings.create = AsyncMock(return_value=_embedding_response(1, dim=768))
        with pytest.raises(RAGError, match="expected 1536"):
            await provider.embed(["a"])

    @pytest.mark.asyncio
    async def test_missing_key(self) -> None:
        provider = OpenAIEmbeddingProvider(_settings(openai_api_key=""))
        assert provider.is_available() is False
        with pytest.raises(RAGError, match="OPENAI_API_KEY"):
            await provider.embed(["a"])


class TestNomicEmbeddingProvider:
    @pytest.mark.asyncio
    async def test_embed(self) -> None:
        provider = NomicEmbeddingProvider(_settings())
        provider._client = MagicMock()
        provider._client.embeddings.create = AsyncMock(return_value=_embedding_response(1, dim=768))

        vector = await provider.embed_single("hello")

        assert len(vector) == 768
        assert provider._client.embeddings.create.call_args.kwargs["model"] == "nomic-embed-text"

    def test_identity(self) -> None:
        provider = NomicEmbeddingProvider(_settings())
        assert provider.get_dimension() == 768
        assert provider.get_provider_name() == "nomic_embedding"

    @pytest.mark.asyncio
    async def test_wrong_vector_width_rejected(self) -> None:
        provider = NomicEmbeddingProvider(_settings())
        provider._client = MagicMock()
        provider._client.embeddings.create = AsyncMock(return_value=_embedding_response(1, dim=1536))

        with pytest.raises(RAGError, match="1536-dim"):
            await provider.embed(["hello"])
