"""Tests for similarity, embedding averaging and retry behaviour."""

import math

import pytest

from policylens.core.errors import CollaboratorUnavailableError, EmbeddingUnavailableError
from policylens.models.chapter import Chapter
from policylens.services.embedding_cache import EmbeddingCache
from policylens.services.embedding_service import EmbeddingService, cosine_similarity
from policylens.services.text_chunker import TextChunker
from tests.fakes.fake_providers import FakeEmbeddingProvider


def _norm(vector):
    return math.sqrt(sum(v * v for v in vector))


@pytest.fixture
def cache():
    return EmbeddingCache(cache_path=None)


# ============================================================================
# Cosine similarity
# ============================================================================


class TestCosineSimilarity:
    @pytest.mark.parametrize("vector", [[1.0, 2.0, 3.0], [-0.5, 4.0], [1e-3, 0.0, 7.0]])
    def test_self_similarity_is_one(self, vector):
        assert cosine_similarity(vector, vector) == pytest.approx(1.0)

    @pytest.mark.parametrize("first,second", [
        ([], [1.0, 2.0]),
        ([1.0, 2.0], []),
        ([0.0, 0.0], [1.0, 2.0]),
        (None, [1.0]),
    ])
    def test_empty_or_zero_vector_is_zero(self, first, second):
        assert cosine_similarity(first, second) == 0.0

    def test_opposite_vectors(self):
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_scale_invariant(self):
        assert cosine_similarity([1.0, 2.0], [10.0, 20.0]) == pytest.approx(1.0)


# ============================================================================
# Embedding service
# ============================================================================


class TestEmbed:
    @pytest.mark.asyncio
    async def test_result_is_unit_vector(self, cache):
        service = EmbeddingService(FakeEmbeddingProvider(), cache)

        vector = await service.embed("השתלה ותרופות")

        assert _norm(vector) == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_empty_text_returns_empty_vector(self, cache):
        provider = FakeEmbeddingProvider()
        service = EmbeddingService(provider, cache)

        assert await service.embed("   ") == []
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_long_text_is_sliced_and_averaged(self, cache):
        provider = FakeEmbeddingProvider()
        service = EmbeddingService(provider, cache, max_tokens=10, chars_per_token=3)
        text = "השתלה " * 5 + "תרופות " * 5

        vector = await service.embed(text)

        assert len(provider.calls) == math.ceil(len(text.strip()) / 30)
        assert all(len(call) <= 30 for call in provider.calls)
        assert _norm(vector) == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_cache_hit_skips_provider(self, cache):
        provider = FakeEmbeddingProvider()
        service = EmbeddingService(provider, cache)

        first = await service.embed("ניתוח בחו\"ל")
        second = await service.embed("ניתוח   בחו\"ל")

        assert len(provider.calls) == 1
        assert first == second

    @pytest.mark.asyncio
    async def test_task_type_is_part_of_cache_key(self, cache):
        provider = FakeEmbeddingProvider()
        service = EmbeddingService(provider, cache)

        await service.embed("השתלה", "RETRIEVAL_DOCUMENT")
        await service.embed("השתלה", "RETRIEVAL_QUERY")

        assert len(provider.calls) == 2

    @pytest.mark.asyncio
    async def test_retry_with_smaller_budget(self, cache):
        provider = FakeEmbeddingProvider(fail_above=30)
        service = EmbeddingService(provider, cache, max_tokens=20, retry_max_tokens=10, chars_per_token=3)

        vector = await service.embed("ב" * 30 + "ג" * 30)

        # One failed 60-char call, then two 30-char retries
        assert [len(call) for call in provider.calls] == [60, 30, 30]
        assert _norm(vector) == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_failed_retry_returns_empty_vector(self, cache):
        provider = FakeEmbeddingProvider(failure=EmbeddingUnavailableError("quota"))
        service = EmbeddingService(provider, cache)

        assert await service.embed("השתלה") == []
        assert len(provider.calls) == 2

    @pytest.mark.asyncio
    async def test_unreachable_collaborator_propagates(self, cache):
        provider = FakeEmbeddingProvider(failure=CollaboratorUnavailableError("embedding service"))
        service = EmbeddingService(provider, cache)

        with pytest.raises(CollaboratorUnavailableError):
            await service.embed("השתלה")


class TestAverage:
    def test_average_renormalizes(self):
        averaged = EmbeddingService.average([[1.0, 0.0], [0.0, 1.0]])

        assert averaged == pytest.approx([math.sqrt(0.5), math.sqrt(0.5)])

    def test_average_of_opposites_is_zero(self):
        assert EmbeddingService.average([[1.0, 0.0], [-1.0, 0.0]]) == [0.0, 0.0]


class TestEmbedChapter:
    @pytest.mark.asyncio
    async def test_chapter_chunks_are_embedded_with_title(self, cache):
        provider = FakeEmbeddingProvider()
        chunker = TextChunker(min_length=20, max_length=60)
        service = EmbeddingService(provider, cache, chunker=chunker)
        chapter = Chapter(
            title="פרק א: השתלות",
            level=1,
            content="כיסוי השתלה בישראל ובחו\"ל במלואו\nהוצאות נלוות להשתלה כולל טיסות",
        )

        vector = await service.embed_chapter(chapter)

        assert len(provider.calls) == len(chunker.chunk_chapter(chapter))
        assert all(call.startswith("פרק א: השתלות\n") for call in provider.calls)
        assert _norm(vector) == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_empty_chapter_embeds_title(self, cache):
        provider = FakeEmbeddingProvider()
        service = EmbeddingService(provider, cache)

        vector = await service.embed_chapter(Chapter(title="פרק ב: תרופות", level=1))

        assert provider.calls == ["פרק ב: תרופות"]
        assert vector
