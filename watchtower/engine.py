"""
Engine wiring and lifecycle.

    async with AnalyticsEngine() as engine:
        overview = await engine.sales.get_sales_overview({"platform": "Zepto"})
        await engine.clear_cache("sales_overview")

Collaborators can be injected (tests pass in-memory stores); otherwise
they are built from the global configuration.
"""
from typing import Optional

from watchtower.cache import RedisCache
from watchtower.column_store import ColumnStore
from watchtower.config import AppConfig, config
from watchtower.observability import get_logger
from watchtower.orchestrator import CacheOrchestrator
from watchtower.row_store import RowStore
from watchtower.services import SalesService, WatchtowerService

logger = get_logger(__name__)


class AnalyticsEngine:
    """Owns the cache, both stores and the services built on them."""

    def __init__(
        self,
        app_config: AppConfig = config,
        cache: Optional[RedisCache] = None,
        row_store: Optional[RowStore] = None,
        column_store: Optional[ColumnStore] = None,
        orchestrator: Optional[CacheOrchestrator] = None,
    ):
        self.config = app_config
        self.cache = cache or RedisCache.from_config(app_config.cache)
        self.orchestrator = orchestrator or CacheOrchestrator.from_config(self.cache, app_config.cache)
        self.row_store = row_store or RowStore.from_config(app_config.row_store)
        self.column_store = column_store or ColumnStore.from_config(app_config.column_store)

        self.sales = SalesService(self.row_store, self.orchestrator)
        self.watchtower = WatchtowerService(self.column_store, self.orchestrator)

    async def connect(self, cache_only: bool = False) -> None:
        """Connect the cache (best effort) and, unless ``cache_only``, both stores."""
        await self.cache.connect()
        if not cache_only:
            await self.row_store.connect()
            await self.column_store.connect()
        logger.info(f"Analytics engine v{self.config.version} ready")

    async def disconnect(self) -> None:
        await self.cache.disconnect()
        await self.row_store.close()
        await self.column_store.close()

    async def __aenter__(self) -> "AnalyticsEngine":
        await self.connect()
        return self

    async def __aexit__(self, *args) -> None:
        await self.disconnect()

    async def clear_cache(self, section: Optional[str] = None) -> int:
        """
        Invalidate cached results.

        Args:
            section: Namespace prefix (e.g. "sales_overview", "summary");
                None clears every engine key

        Returns:
            Number of keys deleted
        """
        deleted = await self.orchestrator.invalidate(section)
        logger.info(f"Cleared {deleted} cache keys for {section or 'all sections'}")
        return deleted

    async def cache_stats(self) -> dict:
        return {
            **self.cache.get_stats(),
            "total_keys": await self.cache.key_count(),
            "orchestrator": self.orchestrator.get_stats(),
        }

    async def warm_common_caches(self) -> int:
        return await self.watchtower.warm_common_caches()
