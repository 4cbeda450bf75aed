"""Unit tests for the Embedder wrapper around an IEmbeddingProvider."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from docvault.interfaces.embedding_provider import IEmbeddingProvider
from docvault.services.ingestion.embedder import Embedder
from docvault.utils.errors import InferenceError, ProviderUnavailableError
from tests.conftest import MockEmbeddingProvider


def _mock_provider(**embed_kwargs) -> MagicMock:
    provider = MagicMock(spec=IEmbeddingProvider)
    provider.embed = AsyncMock(**embed_kwargs)
    provider.get_provider_name.return_value = "mock"
    provider.get_dimension.return_value = 4
    return provider


class TestEmbedder:
    @pytest.mark.asyncio
    async def test_embed_single_text(self) -> None:
        provider = MockEmbeddingProvider(dimension=8)
        vector = await Embedder(provider).embed("invoice total")
        assert len(vector) == 8
        assert provider.calls == [["invoice total"]]

    @pytest.mark.asyncio
    async def test_embed_batch_empty_skips_provider(self) -> None:
        provider = _mock_provider(return_value=[])
        assert await Embedder(provider).embed_batch([]) == []
        provider.embed.assert_not_called()

    @pytest.mark.asyncio
    async def test_provider_error_becomes_inference_error(self) -> None:
        provider = _mock_provider(side_effect=ProviderUnavailableError(message="offline", provider_name="mock"))
        with pytest.raises(InferenceError, match="Embedding failed"):
            await Embedder(provider).embed("x")

    @pytest.mark.asyncio
    async def test_vector_count_mismatch(self) -> None:
        provider = _mock_provider(return_value=[[0.1] * 4])
        with pytest.raises(InferenceError, match="returned 1 vectors for 2 texts"):
            await Embedder(provider).embed_batch(["a", "b"])

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        async def _slow(texts):
            await asyncio.sleep(1)
            return [[0.0] * 4 for _ in texts]

        provider = _mock_provider(side_effect=_slow)
        with pytest.raises(InferenceError, match="timed out"):
            await Embedder(provider, timeout_seconds=0.01).embed("x")

    def test_dimension_and_name_delegate(self) -> None:
        embedder = Embedder(_mock_provider())
        assert embedder.dimension == 4
        assert embedder.provider_name == "mock"
