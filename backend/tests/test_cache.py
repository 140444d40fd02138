"""
Idea Engine - Response Cache Tests

Coverage:
- InMemoryCache TTL and eviction
- Fingerprint stability and sensitivity
- ResponseCache TTL map, lazy expiry, invalidation, backend failure handling
- Backend selection when Redis is unreachable

Run:
    pytest tests/test_cache.py -v
"""

from unittest.mock import AsyncMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from ai_types import AIRequest, CapabilityTier, RouterResponse, TaskType
from cache import (
    InMemoryCache,
    ResponseCache,
    fingerprint,
    get_cache_backend,
    normalize_text,
)


def _response(content="hello"):
    return RouterResponse(
        content=content, provider="openai", model="gpt-4o-mini", tokens_used=150,
        cost=0.0001, cached=False, latency_ms=420, fallback_used=False, reasoning="test",
    )


class TestInMemoryCache:

    @pytest.mark.asyncio
    async def test_set_and_get(self, clock):
        cache = InMemoryCache(clock=clock)
        await cache.set("k", {"v": 1}, ttl=10)
        assert await cache.get("k") == {"v": 1}

    @pytest.mark.asyncio
    async def test_expiry(self, clock):
        cache = InMemoryCache(clock=clock)
        await cache.set("k", "v", ttl=10)
        clock.advance(11)
        assert await cache.get("k") is None

    @pytest.mark.asyncio
    async def test_eviction_when_full(self, clock):
        cache = InMemoryCache(max_entries=4, clock=clock)
        for i in range(4):
            await cache.set(f"k{i}", i, ttl=100 + i)
        await cache.set("new", "x", ttl=500)
        assert await cache.get("new") == "x"
        assert await cache.get("k0") is None

    @pytest.mark.asyncio
    async def test_keys_with_prefix(self, clock):
        cache = InMemoryCache(clock=clock)
        await cache.set("ai_cache:general:1", 1)
        await cache.set("ai_cache:business_plan:2", 2)
        assert await cache.keys("ai_cache:general:*") == ["ai_cache:general:1"]


class TestFingerprint:

    def test_whitespace_insensitive(self):
        a = AIRequest(task_type=TaskType.GENERAL, prompt="Write  a\nsummary ")
        b = AIRequest(task_type=TaskType.GENERAL, prompt="Write a summary")
        assert fingerprint(a, CapabilityTier.ECONOMY) == fingerprint(b, CapabilityTier.ECONOMY)

    def test_ignores_request_id_and_priority_fields(self):
        a = AIRequest(task_type=TaskType.GENERAL, prompt="p", user_id="u1")
        b = AIRequest(task_type=TaskType.GENERAL, prompt="p", user_id="u2")
        assert a.request_id != b.request_id
        assert fingerprint(a, CapabilityTier.ECONOMY) == fingerprint(b, CapabilityTier.ECONOMY)

    def test_sensitive_to_task_context_and_tier(self):
        base = AIRequest(task_type=TaskType.GENERAL, prompt="p")
        keys = {
            fingerprint(base, CapabilityTier.ECONOMY),
            fingerprint(base, CapabilityTier.PREMIUM),
            fingerprint(AIRequest(task_type=TaskType.MARKET_ANALYSIS, prompt="p"), CapabilityTier.ECONOMY),
            fingerprint(AIRequest(task_type=TaskType.GENERAL, prompt="p", context="c"), CapabilityTier.ECONOMY),
        }
        assert len(keys) == 4

    def test_key_prefix(self):
        key = fingerprint(AIRequest(task_type=TaskType.MARKET_SIGNALS, prompt="p"), CapabilityTier.ECONOMY)
        assert key.startswith("ai_cache:market_signals:")

    def test_normalize_text_none(self):
        assert normalize_text(None) == ""


class TestResponseCache:

    def test_task_ttls(self):
        cache = ResponseCache()
        assert cache.ttl_for(TaskType.BUSINESS_PLAN) == 24 * 3600
        assert cache.ttl_for(TaskType.FINANCIAL_MODEL) == 12 * 3600
        assert cache.ttl_for(TaskType.SENTIMENT_ANALYSIS) == 30 * 60
        assert cache.ttl_for(TaskType.MARKET_SIGNALS) == 15 * 60
        assert cache.ttl_for(TaskType.MARKET_SIGNALS) < cache.ttl_for(TaskType.BUSINESS_PLAN)

    def test_ttl_multiplier(self):
        cache = ResponseCache(ttl_multiplier=0.5)
        assert cache.ttl_for(TaskType.GENERAL) == 1800

    @pytest.mark.asyncio
    async def test_put_then_get(self, clock):
        cache = ResponseCache(InMemoryCache(clock=clock), clock=clock)
        await cache.put("ai_cache:general:abc", _response(), ttl=60)
        entry = await cache.get("ai_cache:general:abc")
        assert entry is not None
        assert entry.response.content == "hello"
        assert entry.ttl == 60

    @pytest.mark.asyncio
    async def test_absent_after_ttl(self, clock):
        cache = ResponseCache(InMemoryCache(clock=clock), clock=clock)
        await cache.put("ai_cache:general:abc", _response(), ttl=60)
        clock.advance(61)
        assert await cache.get("ai_cache:general:abc") is None

    @pytest.mark.asyncio
    async def test_entry_expiry_checked_even_if_backend_keeps_it(self, clock):
        backend = AsyncMock()
        backend.get.return_value = {
            "fingerprint": "k", "response": _response().to_dict(),
            "cached_at": clock() - 100, "ttl": 60,
        }
        cache = ResponseCache(backend, clock=clock)
        assert await cache.get("k") is None
        backend.delete.assert_awaited_once_with("k")

    @pytest.mark.asyncio
    async def test_backend_failure_is_a_miss(self):
        backend = AsyncMock()
        backend.get.side_effect = RedisConnectionError("down")
        backend.set.side_effect = RedisConnectionError("down")
        cache = ResponseCache(backend)
        assert await cache.get("k") is None
        await cache.put("k", _response(), ttl=60)  # must not raise

    @pytest.mark.asyncio
    async def test_malformed_entry_is_a_miss(self):
        backend = AsyncMock()
        backend.get.return_value = {"unexpected": True}
        assert await ResponseCache(backend).get("k") is None

    @pytest.mark.asyncio
    async def test_invalidate_by_task(self, clock):
        cache = ResponseCache(InMemoryCache(clock=clock), clock=clock)
        await cache.put("ai_cache:general:1", _response(), ttl=60)
        await cache.put("ai_cache:general:2", _response(), ttl=60)
        await cache.put("ai_cache:business_plan:3", _response(), ttl=60)
        assert await cache.invalidate(TaskType.GENERAL) == 2
        assert await cache.get("ai_cache:business_plan:3") is not None
        assert await cache.invalidate() == 1


class TestBackendSelection:

    @pytest.mark.asyncio
    async def test_no_url_uses_memory(self):
        assert isinstance(await get_cache_backend(None), InMemoryCache)

    @pytest.mark.asyncio
    async def test_unreachable_redis_falls_back(self):
        with patch("cache.RedisCache.ping", new=AsyncMock(side_effect=RedisConnectionError("refused"))), \
                patch("cache.RedisCache.close", new=AsyncMock()):
            backend = await get_cache_backend("redis://localhost:1/0")
        assert isinstance(backend, InMemoryCache)
