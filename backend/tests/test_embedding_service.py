"""
Embedding service caching and provider selection.
"""

from types import SimpleNamespace

import numpy as np
import pytest

from paperrank.services.embedding_service import (
    EmbeddingProvider,
    EmbeddingService,
    OpenAIEmbeddingProvider,
    build_embedding_service,
)
from paperrank.services.paper_ranking.errors import EmbeddingUnavailable


class _CountingProvider(EmbeddingProvider):
    def __init__(self, fail=False, drop_last=False):
        self.batches = []
        self.fail = fail
        self.drop_last = drop_last

    @property
    def model_name(self) -> str:
        return "counting"

    @property
    def dimensions(self) -> int:
        return 2

    async def embed(self, text):
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts):
        self.batches.append(list(texts))
        if self.fail:
            raise RuntimeError("quota exceeded")
        vectors = [[float(len(t)), 1.0] for t in texts]
        return vectors[:-1] if self.drop_last else vectors


@pytest.mark.asyncio
async def test_only_unseen_texts_reach_the_provider():
    provider = _CountingProvider()
    service = EmbeddingService(provider)

    first = await service.embed_batch(["alpha", "beta"])
    second = await service.embed_batch(["ALPHA ", "gamma"])

    assert first == [[5.0, 1.0], [4.0, 1.0]]
    assert second[0] == [5.0, 1.0]
    assert provider.batches == [["alpha", "beta"], ["gamma"]]


@pytest.mark.asyncio
async def test_empty_texts_get_empty_vectors_without_a_call():
    provider = _CountingProvider()
    service = EmbeddingService(provider)

    assert await service.embed_batch(["", "  "]) == [[], []]
    assert provider.batches == []


@pytest.mark.asyncio
async def test_provider_errors_surface_as_embedding_unavailable():
    service = EmbeddingService(_CountingProvider(fail=True))
    with pytest.raises(EmbeddingUnavailable):
        await service.embed_batch(["alpha"])


@pytest.mark.asyncio
async def test_short_provider_response_is_rejected():
    service = EmbeddingService(_CountingProvider(drop_last=True))
    with pytest.raises(EmbeddingUnavailable):
        await service.embed_batch(["alpha", "beta"])


@pytest.mark.asyncio
async def test_clear_cache_forces_recompute():
    provider = _CountingProvider()
    service = EmbeddingService(provider)
    await service.embed_batch(["alpha"])

    service.clear_cache()
    await service.embed_batch(["alpha"])

    assert len(provider.batches) == 2


def test_prepare_paper_text_truncates_long_abstracts():
    text = EmbeddingService.prepare_paper_text("Title", "word " * 1000, max_abstract_len=20)
    assert text.startswith("Title word")
    assert text.endswith("...")
    assert len(text) < 40


def _settings(**overrides):
    values = {
        "EMBEDDING_PROVIDER": "openai",
        "OPENAI_API_KEY": None,
        "OPENAI_EMBEDDING_MODEL": "text-embedding-3-small",
        "RANKING_EMBEDDING_TIMEOUT": 5.0,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def test_build_embedding_service_selection():
    assert build_embedding_service(_settings(EMBEDDING_PROVIDER="none")) is None
    assert build_embedding_service(_settings(OPENAI_API_KEY=None)) is None

    service = build_embedding_service(_settings(OPENAI_API_KEY="sk-test"))
    assert isinstance(service, EmbeddingService)
    assert isinstance(service.provider, OpenAIEmbeddingProvider)
    assert service.model_name == "text-embedding-3-small"


class _NumpyProvider(_CountingProvider):
    async def embed_batch(self, texts):
        self.batches.append(list(texts))
        return np.array([[float(len(t)), 1.0] for t in texts])


@pytest.mark.asyncio
async def test_numpy_rows_are_converted_to_lists():
    service = EmbeddingService(_NumpyProvider())

    vectors = await service.embed_batch(["alpha", "be"])

    assert vectors == [[5.0, 1.0], [2.0, 1.0]]
    assert all(isinstance(v, list) for v in vectors)
