"""
Idea Engine - Response Cache Layer

Provides a unified async caching interface with two backends:
- InMemoryCache: Process-local dict with TTL (default, zero dependencies)
- RedisCache: Redis-backed cache for multi-process/distributed deployments

ResponseCache sits on top of either backend and stores RouterResponse
entries under a content fingerprint with a per-task TTL.

Usage:
    from cache import ResponseCache, get_cache_backend
    cache = ResponseCache(await get_cache_backend(settings))
    entry = await cache.get(fingerprint)
"""
import hashlib
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from ai_types import AIRequest, CapabilityTier, RouterResponse, TaskType
from constants import CACHE_KEY_PREFIX, DEFAULT_CACHE_TTL, TASK_CACHE_TTL

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


class InMemoryCache:
    """Fallback cache when Redis is not available."""

    def __init__(self, max_entries: int = 1000, clock: Callable[[], float] = time.time):
        self._cache: Dict[str, tuple] = {}  # key -> (value, expiry_timestamp)
        self._max_entries = max_entries
        self._clock = clock

    async def get(self, key: str):
        """Get a value by key. Returns None if not found or expired."""
        if key in self._cache:
            value, expiry = self._cache[key]
            if expiry and self._clock() > expiry:
                del self._cache[key]
                return None
            return value
        return None

    async def set(self, key: str, value, ttl: int = 300):
        """Set a key-value pair with optional TTL in seconds."""
        if len(self._cache) >= self._max_entries and key not in self._cache:
            self._cleanup()
        expiry = self._clock() + ttl if ttl else None
        self._cache[key] = (value, expiry)

    async def delete(self, key: str):
        self._cache.pop(key, None)

    async def keys(self, pattern: Optional[str] = None) -> List[str]:
        """List keys, optionally filtered by prefix pattern."""
        self._cleanup()
        if pattern and pattern.endswith("*"):
            prefix = pattern[:-1]
            return [k for k in self._cache if k.startswith(prefix)]
        return list(self._cache.keys())

    async def close(self):
        self._cache.clear()

    def _cleanup(self):
        """Remove expired entries and evict soonest-expiring if over capacity."""
        now = self._clock()
        expired = [k for k, (v, exp) in self._cache.items() if exp and now > exp]
        for k in expired:
            del self._cache[k]
        if len(self._cache) >= self._max_entries:
            # Remove 25% closest to expiry
            items = sorted(
                self._cache.items(),
                key=lambda x: x[1][1] or float('inf')
            )
            for k, _ in items[:max(1, len(items) // 4)]:
                del self._cache[k]


class RedisCache:
    """Redis-backed cache."""

    def __init__(self, redis_url: str = "redis://localhost:6379/0"):
        self._client = aioredis.from_url(
            redis_url, decode_responses=True, socket_connect_timeout=5
        )

    async def ping(self) -> bool:
        return await self._client.ping()

    async def get(self, key: str):
        val = await self._client.get(key)
        if val:
            return json.loads(val)
        return None

    async def set(self, key: str, value, ttl: int = 300):
        serialized = json.dumps(value)
        if ttl:
            await self._client.setex(key, ttl, serialized)
        else:
            await self._client.set(key, serialized)

    async def delete(self, key: str):
        await self._client.delete(key)

    async def keys(self, pattern: Optional[str] = None) -> List[str]:
        return [k async for k in self._client.scan_iter(match=pattern or "*")]

    async def close(self):
        await self._client.aclose()


async def get_cache_backend(redis_url: Optional[str] = None):
    """Redis if a URL is configured and reachable, else in-memory."""
    if redis_url:
        backend = RedisCache(redis_url)
        try:
            await backend.ping()
            logger.info("Redis cache initialized: %s", redis_url)
            return backend
        except (RedisError, OSError) as e:
            logger.warning("Redis unavailable, falling back to in-memory: %s", e)
            await backend.close()
    else:
        logger.info("Using in-memory cache (REDIS_URL not set)")
    return InMemoryCache()


# =============================================================================
# RESPONSE CACHE
# =============================================================================

@dataclass
class CacheEntry:
    fingerprint: str
    response: RouterResponse
    cached_at: float
    ttl: int

    def is_expired(self, now: float) -> bool:
        return now > self.cached_at + self.ttl


def normalize_text(text: Optional[str]) -> str:
    return _WHITESPACE.sub(" ", (text or "").strip())


def fingerprint(request: AIRequest, tier: CapabilityTier) -> str:
    """Deterministic cache key for the semantically relevant request fields."""
    raw = json.dumps(
        {
            "task_type": request.task_type.value,
            "prompt": normalize_text(request.prompt),
            "context": normalize_text(request.context),
            "tier": tier.name,
        },
        sort_keys=True,
    )
    return f"{CACHE_KEY_PREFIX}{request.task_type.value}:{hashlib.sha256(raw.encode()).hexdigest()}"


class ResponseCache:
    """
    Fingerprint -> RouterResponse store.

    Backend failures never fail a request: reads degrade to a miss and writes
    are skipped, both with a warning.
    """

    def __init__(
        self,
        backend=None,
        ttl_multiplier: float = 1.0,
        clock: Callable[[], float] = time.time,
    ):
        self._backend = backend if backend is not None else InMemoryCache(clock=clock)
        self._ttl_multiplier = ttl_multiplier
        self._clock = clock

    def ttl_for(self, task_type: TaskType) -> int:
        base = TASK_CACHE_TTL.get(task_type.value, DEFAULT_CACHE_TTL)
        return max(1, int(base * self._ttl_multiplier))

    async def get(self, key: str) -> Optional[CacheEntry]:
        try:
            raw = await self._backend.get(key)
        except (RedisError, OSError, ValueError) as e:
            logger.warning("Cache get failed, treating as miss: %s", e)
            return None
        if not raw:
            return None

        try:
            entry = CacheEntry(
                fingerprint=raw["fingerprint"],
                response=RouterResponse.from_dict(raw["response"]),
                cached_at=float(raw["cached_at"]),
                ttl=int(raw["ttl"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Discarding malformed cache entry %s: %s", key[:32], e)
            return None

        if entry.is_expired(self._clock()):
            await self._delete_quietly(key)
            return None
        return entry

    async def put(self, key: str, response: RouterResponse, ttl: int) -> None:
        payload = {
            "fingerprint": key,
            "response": response.to_dict(),
            "cached_at": self._clock(),
            "ttl": ttl,
        }
        try:
            await self._backend.set(key, payload, ttl=ttl)
        except (RedisError, OSError, TypeError) as e:
            logger.warning("Cache put failed, response not cached: %s", e)

    async def invalidate(self, task_type: Optional[TaskType] = None) -> int:
        """Drop every cached response, or only those for one task type."""
        pattern = f"{CACHE_KEY_PREFIX}{task_type.value + ':' if task_type else ''}*"
        try:
            keys = await self._backend.keys(pattern)
            for key in keys:
                await self._backend.delete(key)
        except (RedisError, OSError) as e:
            logger.warning("Cache invalidation failed: %s", e)
            return 0
        return len(keys)

    async def close(self) -> None:
        await self._backend.close()

    async def _delete_quietly(self, key: str) -> None:
        try:
            await self._backend.delete(key)
        except (RedisError, OSError) as e:
            logger.debug("Could not evict expired entry %s: %s", key[:32], e)
