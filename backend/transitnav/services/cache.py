"""Response cache for assembled plans.

Cached values are derived data with a short TTL: entries simply expire and are
never invalidated when feedback arrives.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

# Same order of magnitude as directions-shaped data elsewhere (30 minutes)
DEFAULT_TTL_SECONDS = 1800


class ResponseCache:
    """Interface: string keys, string (JSON) values."""

    backend = "none"

    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def set(self, key: str, value: str, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        raise NotImplementedError

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class NullCache(ResponseCache):
    """Caching disabled."""

    async def get(self, key: str) -> Optional[str]:
        return None

    async def set(self, key: str, value: str, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        return None


class InMemoryTTLCache(ResponseCache):
    """Process-local TTL cache with a size bound; oldest entries are evicted first."""

    backend = "memory"

    def __init__(self, max_entries: int = 1000, clock=time.monotonic):
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, str]]" = OrderedDict()
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            item = self._entries.get(key)
            if item is None:
                return None
            expires_at, value = item
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return value

    async def set(self, key: str, value: str, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        async with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = (self._clock() + ttl_seconds, value)
            self._evict()

    def _evict(self) -> None:
        now = self._clock()
        for key in [k for k, (exp, _) in self._entries.items() if exp <= now]:
            del self._entries[key]
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def __len__(self) -> int:
        return len(self._entries)


class RedisResponseCache(ResponseCache):
    """Redis-backed cache. Redis errors are logged and read as misses."""

    backend = "redis"

    def __init__(self, redis_url: str, prefix: str = "transitnav:"):
        import redis.asyncio as redis

        self._redis = redis.from_url(redis_url, decode_responses=True)
        self.prefix = prefix

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._redis.get(self.prefix + key)
        except Exception as e:
            logger.warning(f"Redis cache get failed: {e}")
            return None

    async def set(self, key: str, value: str, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        try:
            await self._redis.set(self.prefix + key, value, ex=ttl_seconds)
        except Exception as e:
            logger.warning(f"Redis cache set failed: {e}")

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except Exception as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def close(self) -> None:
        await self._redis.aclose()


def build_response_cache(settings) -> ResponseCache:
    """Pick the cache backend from settings."""
    if not settings.route_cache_enabled:
        return NullCache()
    if settings.redis_url:
        logger.info("Using Redis response cache")
        return RedisResponseCache(settings.redis_url)
    return InMemoryTTLCache(max_entries=settings.route_cache_max_entries)
