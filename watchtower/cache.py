"""
Redis cache store adapter.

Provides:
- Async Redis client with connection pooling
- Automatic JSON serialization/deserialization
- TTL-based expiration
- Pattern-based cache invalidation
- Graceful fallback when Redis is disabled or unavailable

The adapter is constructed explicitly and injected where it is needed:

    cache = RedisCache.from_config(config.cache)
    await cache.connect()

    await cache.set("watchtower:platforms", ["Blinkit", "Zepto"], ttl=300)
    data = await cache.get("watchtower:platforms")

    await cache.delete_by_pattern("watchtower:sales_overview*")

    await cache.disconnect()

No method raises because of the store: an unreachable Redis behaves like an
empty cache that forgets every write.
"""
import asyncio
import json
from dataclasses import dataclass
from typing import Any, Optional

import redis.asyncio as redis

from watchtower.config import CacheConfig
from watchtower.exceptions import CacheUnavailableError
from watchtower.observability import Timer, get_logger

logger = get_logger(__name__)

SCAN_BATCH_SIZE = 100


@dataclass
class CacheStats:
    """Cache statistics for monitoring."""

    hits: int = 0
    misses: int = 0
    errors: int = 0
    sets: int = 0
    invalidations: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        return (self.hits / total * 100) if total > 0 else 0.0

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "errors": self.errors,
            "sets": self.sets,
            "invalidations": self.invalidations,
            "hit_rate_percent": round(self.hit_rate, 2),
        }

    def reset(self) -> None:
        """Reset all counters."""
        self.hits = 0
        self.misses = 0
        self.errors = 0
        self.sets = 0
        self.invalidations = 0


class RedisCache:
    """
    Async Redis cache with graceful degradation.

    Features:
    - Async operations with connection pooling
    - JSON serialization for complex objects
    - Glob-pattern invalidation via SCAN
    - Statistics tracking
    - Graceful fallback (no-op) when Redis unavailable
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        enabled: bool = True,
        default_ttl: int = 3600,
        socket_timeout: float = 5.0,
    ):
        self.url = url
        self.enabled = enabled
        self.default_ttl = default_ttl
        self.socket_timeout = socket_timeout
        self._client = None
        self._connected = False
        self._stats = CacheStats()
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(cls, cache_config: CacheConfig) -> "RedisCache":
        return cls(
            url=cache_config.url,
            enabled=cache_config.enabled,
            default_ttl=cache_config.default_ttl,
            socket_timeout=cache_config.socket_timeout,
        )

    async def connect(self) -> bool:
        """
        Connect to Redis server.

        Returns:
            True if connected successfully, False otherwise
        """
        if not self.enabled:
            logger.info("Redis cache disabled by configuration")
            return False

        async with self._lock:
            if self.is_connected:
                return True
            client = redis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True,
                socket_timeout=self.socket_timeout,
                socket_connect_timeout=self.socket_timeout,
            )
            try:
                await client.ping()
            except Exception as e:
                logger.warning(f"Redis connection failed, continuing without cache: {e}")
                await client.aclose()
                self._client = None
                self._connected = False
                return False

            self._client = client
            self._connected = True
            logger.info(f"Redis connected: {self.url}")
            return True

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self._client:
            try:
                await self._client.aclose()
            except Exception as e:
                logger.debug(f"Redis close error: {e}")
            self._client = None
            self._connected = False
            logger.info("Redis disconnected")

    @property
    def is_connected(self) -> bool:
        """Check if Redis is connected."""
        return self.enabled and self._connected and self._client is not None

    def _client_or_raise(self):
        if not self.is_connected:
            raise CacheUnavailableError("Cache store not connected", self.url)
        return self._client

    async def get(self, key: str, default: Any = None) -> Any:
        """
        Get value from cache.

        Args:
            key: Cache key
            default: Returned on miss, error or unavailable store

        Returns:
            Cached value or ``default``
        """
        try:
            client = self._client_or_raise()
            with Timer("cache_get", logger):
                value = await client.get(key)
        except CacheUnavailableError:
            self._stats.misses += 1
            return default
        except Exception as e:
            self._stats.errors += 1
            logger.debug(f"Cache get error for {key}: {e}")
            return default

        if value is None:
            self._stats.misses += 1
            return default

        try:
            decoded = json.loads(value)
        except ValueError as e:
            self._stats.errors += 1
            logger.warning(f"Discarding undecodable cache entry {key}: {e}")
            return default

        self._stats.hits += 1
        return decoded

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None,
    ) -> bool:
        """
        Set value in cache.

        Serialization happens before the write, so an unserializable value
        never leaves a partial entry behind.

        Args:
            key: Cache key
            value: Value to cache (will be JSON serialized)
            ttl: Time-to-live in seconds (default: adapter default)

        Returns:
            True if set successfully
        """
        ttl = ttl or self.default_ttl

        try:
            client = self._client_or_raise()
            serialized = json.dumps(value, default=str)
            with Timer("cache_set", logger):
                await client.setex(key, ttl, serialized)
        except CacheUnavailableError:
            return False
        except Exception as e:
            self._stats.errors += 1
            logger.debug(f"Cache set error for {key}: {e}")
            return False

        self._stats.sets += 1
        return True

    async def delete(self, key: str) -> bool:
        """
        Delete a key from cache.

        Args:
            key: Cache key to delete

        Returns:
            True if deleted
        """
        try:
            client = self._client_or_raise()
            await client.delete(key)
        except CacheUnavailableError:
            return False
        except Exception as e:
            self._stats.errors += 1
            logger.debug(f"Cache delete error for {key}: {e}")
            return False

        self._stats.invalidations += 1
        return True

    async def delete_by_pattern(self, pattern: str) -> int:
        """
        Delete all keys matching a glob pattern.

        Args:
            pattern: Redis glob pattern (e.g., "watchtower:sales_*")

        Returns:
            Number of keys deleted
        """
        try:
            client = self._client_or_raise()
            # SCAN instead of KEYS so large keyspaces don't block Redis
            deleted = 0
            cursor = 0
            while True:
                cursor, keys = await client.scan(
                    cursor=cursor, match=pattern, count=SCAN_BATCH_SIZE
                )
                if keys:
                    deleted += await client.delete(*keys)
                if cursor == 0:
                    break
        except CacheUnavailableError:
            return 0
        except Exception as e:
            self._stats.errors += 1
            logger.debug(f"Cache delete pattern error for {pattern}: {e}")
            return 0

        if deleted > 0:
            self._stats.invalidations += deleted
            logger.info(f"Invalidated {deleted} keys matching '{pattern}'")
        return deleted

    async def key_count(self) -> Optional[int]:
        """Total keys in the selected Redis database, None if unavailable."""
        try:
            client = self._client_or_raise()
            return await client.dbsize()
        except CacheUnavailableError:
            return None
        except Exception as e:
            self._stats.errors += 1
            logger.debug(f"Cache dbsize error: {e}")
            return None

    def get_stats(self) -> dict:
        """Get cache statistics."""
        return {
            "enabled": self.enabled,
            "connected": self.is_connected,
            "url": self.url if self.is_connected else None,
            **self._stats.to_dict(),
        }

    def reset_stats(self) -> None:
        """Reset statistics counters."""
        self._stats.reset()
