import httpx
import pytest

from recall.errors import EmbeddingProviderError
from recall.services.memory_embeddings import (
    EmbeddingCache,
    EmbeddingCircuitBreaker,
    OpenAIEmbeddingProvider,
)
from recall.services.semantic_ranker import SemanticRanker


@pytest.fixture
def db_and_workout(record_factory):
    database = record_factory(text="Database performance tuning requires careful indexing of tables")
    workout = record_factory(text="Upper body strength workout with dumbbells and pushups")
    return database, workout


async def test_local_similarity_ranks_keyword_overlap(db_and_workout):
    database, workout = db_and_workout
    ranker = SemanticRanker()

    results = await ranker.similarities("database indexing performance", [workout, database])

    assert results[0].record.id == database.id
    assert results[0].method == "local"
    assert results[0].match_type == "keyword_match"
    assert results[0].similarity >= 0.3
    assert results[1].similarity == 0.0

    kept = ranker.filter(results, 0.3)
    assert [r.record.id for r in kept] == [database.id]


async def test_failing_provider_falls_back_to_local(db_and_workout, failing_provider):
    database, workout = db_and_workout
    ranker = SemanticRanker(provider=failing_provider)

    results = await ranker.similarities("database performance", [workout, database])

    assert failing_provider.calls >= 1
    assert ranker.fallback_count == 1
    assert results[0].record.id == database.id
    assert all(r.method == "local" for r in results)


async def test_slow_provider_times_out_to_local(db_and_workout, slow_provider):
    database, workout = db_and_workout
    ranker = SemanticRanker(provider=slow_provider, embedding_timeout_seconds=0.05)

    results = await ranker.similarities("database performance", [workout, database])

    assert ranker.fallback_count == 1
    assert results[0].record.id == database.id


async def test_embedding_path_uses_cache(db_and_workout, keyword_provider):
    database, workout = db_and_workout
    ranker = SemanticRanker(provider=keyword_provider, cache=EmbeddingCache(max_size=10))

    first = await ranker.similarities("database performance", [workout, database])
    calls_after_first = keyword_provider.calls
    await ranker.similarities("database performance", [workout, database])

    assert first[0].record.id == database.id
    assert first[0].method == "embedding"
    assert first[0].similarity == pytest.approx(1.0, abs=1e-3)
    assert 0.0 <= first[1].similarity < 0.01
    # Second pass only embeds the query.
    assert keyword_provider.calls == calls_after_first + 1
    assert ranker.cache.get_stats()["hits"] == 2


async def test_exact_content_match_type(record_factory):
    record = record_factory(text="Upper body strength workout with dumbbells")
    ranker = SemanticRanker()

    results = await ranker.similarities("strength workout", [record])

    assert results[0].match_type == "exact_content"


def test_embedding_cache_evicts_least_recently_used():
    cache = EmbeddingCache(max_size=2)
    cache.set("a", [1.0])
    cache.set("b", [2.0])
    assert cache.get("a") == [1.0]
    cache.set("c", [3.0])

    assert cache.get("b") is None
    assert cache.get("a") == [1.0]
    assert cache.get("c") == [3.0]


def _provider(handler, breaker=None):
    return OpenAIEmbeddingProvider(
        api_key="test-key",
        retry_max=0,
        backoff_seconds=0.0,
        jitter_seconds=0.0,
        breaker=breaker or EmbeddingCircuitBreaker(failure_threshold=5, cooldown_seconds=60),
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )


async def test_openai_provider_parses_embedding():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        return httpx.Response(200, json={"data": [{"embedding": [0.1, 0.2, 0.3]}]})

    provider = _provider(handler)
    try:
        assert await provider.embed("hello world") == [0.1, 0.2, 0.3]
    finally:
        await provider.aclose()

    assert seen["auth"] == "Bearer test-key"
    assert provider.breaker.status()["consecutive_failures"] == 0


async def test_circuit_breaker_opens_after_failures():
    calls = {"count": 0}

    def handler(request):
        calls["count"] += 1
        return httpx.Response(503, json={"error": "unavailable"})

    breaker = EmbeddingCircuitBreaker(failure_threshold=1, cooldown_seconds=60)
    provider = _provider(handler, breaker=breaker)
    try:
        with pytest.raises(EmbeddingProviderError):
            await provider.embed("hello")
        assert breaker.is_open() is True

        with pytest.raises(EmbeddingProviderError):
            await provider.embed("hello again")
    finally:
        await provider.aclose()

    assert calls["count"] == 1
    assert breaker.status()["last_error"] == "status 503"


async def test_retry_then_success():
    responses = [
        httpx.Response(429, json={"error": "slow down"}),
        httpx.Response(200, json={"data": [{"embedding": [1.0]}]}),
    ]

    def handler(request):
        return responses.pop(0)

    provider = OpenAIEmbeddingProvider(
        api_key="test-key",
        retry_max=1,
        backoff_seconds=0.0,
        jitter_seconds=0.0,
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    try:
        assert await provider.embed("hello") == [1.0]
    finally:
        await provider.aclose()
