"""
Cache-or-compute orchestration.

The orchestrator owns no data: it asks the cache store for a key, and on a
miss runs the producer, stores the result and hands it back. The store may
be down; the caller never notices beyond latency.

Usage:
    orchestrator = CacheOrchestrator(cache, prefix="watchtower")

    key = orchestrator.key("sales_overview", filters)
    overview = await orchestrator.get_cached_or_compute(key, compute, ttl=7200)

Service methods use the ``cached`` decorator instead:

    class SalesService:
        @cached("sales_overview", ttl=CACHE_TTL.metrics)
        async def get_sales_overview(self, filters: FilterSet) -> dict:
            ...
"""
import asyncio
import inspect
import logging
from dataclasses import dataclass
from functools import wraps
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar, Union

from watchtower import cache_keys
from watchtower.cache import RedisCache
from watchtower.config import CacheConfig
from watchtower.filters import FilterSet
from watchtower.observability import correlation_context, get_correlation_id, get_logger

logger = get_logger(__name__)

T = TypeVar("T")

Producer = Callable[[], Union[T, Awaitable[T]]]

# Distinguishes "not cached" from a cached null
_MISS = object()


@dataclass
class OrchestratorStats:
    computations: int = 0
    coalesced: int = 0
    failures: int = 0

    def to_dict(self) -> dict:
        return {
            "computations": self.computations,
            "coalesced": self.coalesced,
            "failures": self.failures,
        }


class CacheOrchestrator:
    """
    Compute-once/serve-many wrapper around a ``RedisCache``.

    With ``coalesce`` enabled, concurrent misses for the same key share one
    producer run: the first caller computes, the others await its future.
    If that computation fails every waiter receives the same exception and
    nothing is written to the cache.
    """

    def __init__(
        self,
        store: RedisCache,
        prefix: str = cache_keys.DEFAULT_PREFIX,
        coalesce: bool = True,
        log_hits: bool = False,
        max_key_length: int = cache_keys.MAX_KEY_LENGTH,
    ):
        self.store = store
        self.prefix = prefix
        self.coalesce = coalesce
        self.max_key_length = max_key_length
        self._log_level = logging.INFO if log_hits else logging.DEBUG
        self._inflight: Dict[str, asyncio.Future] = {}
        self._stats = OrchestratorStats()

    @classmethod
    def from_config(cls, store: RedisCache, cache_config: CacheConfig) -> "CacheOrchestrator":
        return cls(
            store,
            prefix=cache_config.key_prefix,
            coalesce=cache_config.coalesce,
            log_hits=cache_config.log_hits,
            max_key_length=cache_config.max_key_length,
        )

    def key(self, namespace: str, filters: Any = None, **extras: Any) -> str:
        """Encode a cache key under this orchestrator's prefix."""
        return cache_keys.encode(
            namespace,
            filters,
            prefix=self.prefix,
            max_length=self.max_key_length,
            **extras,
        )

    def pattern(self, namespace: Optional[str] = None) -> str:
        return cache_keys.namespace_pattern(namespace, prefix=self.prefix)

    async def get_cached_or_compute(
        self,
        key: str,
        producer: Producer,
        ttl: Optional[int] = None,
    ) -> Any:
        """
        Return the cached value for ``key`` or compute, store and return it.

        Args:
            key: Full cache key
            producer: Sync or async callable with no arguments
            ttl: Time-to-live in seconds (store default if None)

        Returns:
            Cached or freshly computed value

        Raises:
            Whatever the producer raises; nothing is cached in that case.
        """
        cached_value = await self.store.get(key, _MISS)
        if cached_value is not _MISS:
            logger.log(self._log_level, f"Cache HIT: {key}")
            return cached_value

        logger.log(self._log_level, f"Cache MISS: {key}")

        if not self.coalesce:
            return await self._compute_and_store(key, producer, ttl)

        inflight = self._inflight.get(key)
        if inflight is not None:
            self._stats.coalesced += 1
            logger.debug(f"Awaiting in-flight computation for {key}")
            # Shield so a cancelled waiter does not cancel the shared computation
            return await asyncio.shield(inflight)

        future = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            value = await self._compute_and_store(key, producer, ttl)
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so an unawaited future does not log a warning
            future.exception()
            raise
        else:
            future.set_result(value)
            return value
        finally:
            if not future.done():
                future.cancel()
            self._inflight.pop(key, None)

    async def _compute_and_store(self, key: str, producer: Producer, ttl: Optional[int]) -> Any:
        self._stats.computations += 1
        try:
            value = producer()
            if inspect.isawaitable(value):
                value = await value
        except Exception:
            self._stats.failures += 1
            logger.warning(f"Computation failed for {key}, nothing cached", exc_info=True)
            raise

        # Store failures are swallowed by the adapter
        await self.store.set(key, value, ttl)
        return value

    async def invalidate(self, namespace: Optional[str] = None) -> int:
        """Delete every key of a namespace (or every engine key)."""
        return await self.store.delete_by_pattern(self.pattern(namespace))

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    def get_stats(self) -> dict:
        return {
            "coalesce": self.coalesce,
            "inflight": self.inflight_count,
            **self._stats.to_dict(),
        }


def cached(namespace: str, ttl: Optional[int] = None):
    """
    Decorator for service methods taking a FilterSet.

    The decorated method's instance must expose an ``orchestrator``
    attribute. Filters are normalized before key encoding; the remaining
    arguments, positional or keyword with defaults filled in, become extra
    key discriminators. The call runs under the caller's correlation ID,
    or a fresh one when none is set.

    Usage:
        @cached("sales_drilldown", ttl=CACHE_TTL.metrics)
        async def get_sales_drilldown(self, filters: FilterSet, level: str = "platform"):
            ...

        await service.get_sales_drilldown({"brand": "Aer"}, level="city")
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        signature = inspect.signature(func)

        @wraps(func)
        async def wrapper(self, filters: Any = None, *args, **kwargs) -> T:
            filter_set = FilterSet.coerce(filters)
            # Positional and defaulted extras key the same as keyword ones
            bound = signature.bind(self, filter_set, *args, **kwargs)
            bound.apply_defaults()
            extras = dict(list(bound.arguments.items())[2:])

            orchestrator: CacheOrchestrator = self.orchestrator
            key = orchestrator.key(namespace, filter_set, **extras)
            # One correlation ID per operation unless the caller already set one
            with correlation_context(get_correlation_id()):
                return await orchestrator.get_cached_or_compute(
                    key,
                    lambda: func(self, filter_set, **extras),
                    ttl,
                )

        wrapper.__wrapped__ = func
        wrapper.cache_namespace = namespace
        return wrapper

    return decorator
