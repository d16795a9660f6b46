"""Tests for the persistent embedding cache."""

import json

import pytest

from policylens.services.embedding_cache import EmbeddingCache

DAY = 24 * 60 * 60


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache_file(tmp_path):
    return tmp_path / "cache" / "embedding-cache.json"


class TestGenerateKey:
    def test_whitespace_insensitive(self):
        assert EmbeddingCache.generate_key("פרק  א\nהשתלות") == EmbeddingCache.generate_key("פרק א השתלות")

    def test_distinct_texts(self):
        assert EmbeddingCache.generate_key("השתלות") != EmbeddingCache.generate_key("תרופות")
        assert len(EmbeddingCache.generate_key("השתלות")) == 16


class TestEmbeddingCache:
    @pytest.mark.asyncio
    async def test_round_trip(self, cache_file, clock):
        cache = EmbeddingCache(cache_path=str(cache_file), ttl_days=7, clock=clock)

        await cache.set("k", [0.1, 0.2, 0.3])

        assert await cache.get("k") == [0.1, 0.2, 0.3]
        assert await cache.get("missing") is None

    @pytest.mark.asyncio
    async def test_entry_expires_after_ttl(self, cache_file, clock):
        cache = EmbeddingCache(cache_path=str(cache_file), ttl_days=7, clock=clock)
        await cache.set("k", [1.0])

        clock.advance(7 * DAY - 1)
        assert await cache.get("k") == [1.0]

        clock.advance(2)
        assert await cache.get("k") is None
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_persisted_entries_reloaded(self, cache_file, clock):
        first = EmbeddingCache(cache_path=str(cache_file), clock=clock)
        await first.set("k", [0.5, 0.5])

        second = EmbeddingCache(cache_path=str(cache_file), clock=clock)
        await second.initialize()

        assert await second.get("k") == [0.5, 0.5]
        stored = json.loads(cache_file.read_text(encoding="utf-8"))
        assert stored["k"]["embedding"] == [0.5, 0.5]
        assert stored["k"]["timestamp"] == int(clock.now * 1000)

    @pytest.mark.asyncio
    async def test_expired_entries_dropped_on_load(self, cache_file, clock):
        cache_file.parent.mkdir(parents=True)
        old = int((clock.now - 8 * DAY) * 1000)
        fresh = int(clock.now * 1000)
        cache_file.write_text(json.dumps({
            "old": {"embedding": [1.0], "timestamp": old},
            "fresh": {"embedding": [2.0], "timestamp": fresh},
        }), encoding="utf-8")

        cache = EmbeddingCache(cache_path=str(cache_file), ttl_days=7, clock=clock)
        await cache.initialize()

        assert len(cache) == 1
        assert "old" not in json.loads(cache_file.read_text(encoding="utf-8"))

    @pytest.mark.asyncio
    async def test_corrupt_file_starts_empty(self, cache_file, clock):
        cache_file.parent.mkdir(parents=True)
        cache_file.write_text("{not json", encoding="utf-8")

        cache = EmbeddingCache(cache_path=str(cache_file), clock=clock)
        await cache.initialize()

        assert len(cache) == 0
        assert cache.persistent
        await cache.set("k", [1.0])
        assert json.loads(cache_file.read_text(encoding="utf-8"))["k"]["embedding"] == [1.0]

    @pytest.mark.asyncio
    async def test_unwritable_path_falls_back_to_memory(self, tmp_path, clock):
        blocker = tmp_path / "not-a-directory"
        blocker.write_text("", encoding="utf-8")
        cache = EmbeddingCache(cache_path=str(blocker / "cache.json"), clock=clock)

        await cache.set("k", [1.0, 2.0])

        assert not cache.persistent
        assert await cache.get("k") == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_memory_only_cache(self, clock):
        cache = EmbeddingCache(cache_path=None, clock=clock)

        await cache.set("k", [3.0])

        assert not cache.persistent
        assert await cache.get("k") == [3.0]

    @pytest.mark.asyncio
    async def test_clear(self, cache_file, clock):
        cache = EmbeddingCache(cache_path=str(cache_file), clock=clock)
        await cache.set("k", [1.0])

        await cache.clear()

        assert await cache.get("k") is None
        assert json.loads(cache_file.read_text(encoding="utf-8")) == {}
