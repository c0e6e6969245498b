"""
Watch-tower operations backed by the column store.

The summary is assembled from independent sections (offtake, availability,
top SKUs). Each section is cached on its own, and a section whose backend
query fails is returned as ``None`` and named in ``errors`` while the
others are still served.
"""
import asyncio
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Tuple

import pandas as pd

from watchtower.column_store import ColumnStore
from watchtower.config import CACHE_TTL
from watchtower.exceptions import BackendQueryError
from watchtower.filters import FilterSet
from watchtower.metrics import availability_percent
from watchtower.observability import correlation_context, get_correlation_id, get_logger
from watchtower.orchestrator import CacheOrchestrator, cached
from watchtower.periods import PeriodWindow
from watchtower.predicates import (
    FACT_COLUMNS,
    build_column_predicate_bound,
    column_date_bounds_bound,
    combine,
    qualify,
    quote_identifier,
)

logger = get_logger(__name__)

TOP_SKU_LIMIT = 10
SUMMARY_SECTIONS = ("offtake", "availability", "top_skus")


def _trend_type(diff: Optional[float]) -> str:
    if diff is None or diff == 0:
        return "neutral"
    return "up" if diff > 0 else "down"


class WatchtowerService:
    """Summary metrics, platform and brand lists for the watch-tower view."""

    def __init__(
        self,
        column_store: ColumnStore,
        orchestrator: CacheOrchestrator,
        today: Optional[Callable[[], date]] = None,
    ):
        self.column_store = column_store
        self.orchestrator = orchestrator
        self._today = today or date.today

    def _where(self, filters: FilterSet, window: Optional[PeriodWindow] = None) -> Tuple[str, List[Any]]:
        """Bound predicate with the filter's own dates replaced by ``window``."""
        base = build_column_predicate_bound(
            filters,
            table=self.column_store.fact_table,
            region_table=self.column_store.region_table,
            include_dates=False,
        )
        if window is None:
            return base
        return combine(base, column_date_bounds_bound(window.start, window.end, self.column_store.fact_table))

    # ─── Sections ────────────────────────────────────────────────────────────

    @cached("summary_offtake", ttl=CACHE_TTL.metrics)
    async def get_offtake(self, filters: FilterSet) -> dict:
        """Total offtake of the selected window and its monthly chart."""
        window = filters.current_window(self._today())
        where_sql, params = self._where(filters, window)
        fact = self.column_store.fact_table
        month = f"date_trunc('month', {qualify(fact, FACT_COLUMNS['date'])})"
        query = f"""
            SELECT {month} AS month_date, COALESCE(SUM({qualify(fact, 'sales')}), 0) AS total_sales
            FROM {quote_identifier(fact)}
            WHERE {where_sql}
            GROUP BY 1
        """
        df = await self.column_store.fetch_df(query, params)

        buckets = pd.date_range(
            start=pd.Timestamp(window.start).to_period("M").to_timestamp(),
            end=pd.Timestamp(window.end),
            freq="MS",
        )
        if df.empty:
            monthly = pd.Series(0.0, index=buckets)
        else:
            df["month_date"] = pd.to_datetime(df["month_date"]).dt.to_period("M").dt.to_timestamp()
            monthly = df.groupby("month_date")["total_sales"].sum().reindex(buckets, fill_value=0.0)

        return {
            "total": float(monthly.sum()),
            "window": {"start": window.start_str, "end": window.end_str},
            "chart": [
                {"label": ts.strftime("%b"), "month": ts.strftime("%Y-%m-%d"), "value": float(value)}
                for ts, value in monthly.items()
            ],
        }

    @cached("summary_availability", ttl=CACHE_TTL.metrics)
    async def get_availability(self, filters: FilterSet) -> dict:
        """
        On-shelf availability (sum of neno_osa over sum of deno_osa).

        The trend is the difference in percentage points against the
        comparison window, None without one.
        """
        window = filters.current_window(self._today())
        comparison = filters.comparison_window()

        current_totals = await self.column_store.fetch_totals(
            self._where(filters, window), measures=("neno_osa", "deno_osa")
        )
        current = availability_percent(current_totals["neno_osa"], current_totals["deno_osa"])

        previous = None
        if comparison:
            previous_totals = await self.column_store.fetch_totals(
                self._where(filters, comparison), measures=("neno_osa", "deno_osa")
            )
            previous = availability_percent(previous_totals["neno_osa"], previous_totals["deno_osa"])

        diff = current - previous if previous is not None else None
        return {
            "value": current,
            "comparisonValue": previous,
            "trend": diff,
            "trendType": _trend_type(diff),
        }

    @cached("summary_top_skus", ttl=CACHE_TTL.metrics)
    async def get_top_skus(self, filters: FilterSet, limit: int = TOP_SKU_LIMIT) -> List[dict]:
        window = filters.current_window(self._today())
        top = await self.column_store.fetch_top("sku_name", self._where(filters, window), limit=limit)
        return [{"sku": sku, "offtake": total} for sku, total in top]

    # ─── Summary ─────────────────────────────────────────────────────────────

    async def get_summary_metrics(self, filters: Any = None) -> dict:
        """
        Watch-tower summary with independently computed sections.

        Returns:
            {"offtake", "availability", "topSkus", "filters", "errors"}; a
            failed section is None and appears in ``errors``
        """
        filter_set = FilterSet.coerce(filters)
        # Sections share this correlation ID
        with correlation_context(get_correlation_id()):
            results = await asyncio.gather(
                self.get_offtake(filter_set),
                self.get_availability(filter_set),
                self.get_top_skus(filter_set),
                return_exceptions=True,
            )

            sections: Dict[str, Any] = {}
            errors = []
            for name, result in zip(SUMMARY_SECTIONS, results):
                if isinstance(result, BackendQueryError):
                    logger.warning(f"Summary section {name} failed: {result}")
                    errors.append({"section": name, "error": type(result).__name__})
                    sections[name] = None
                elif isinstance(result, BaseException):
                    raise result
                else:
                    sections[name] = result

        return {
            "offtake": sections["offtake"],
            "availability": sections["availability"],
            "topSkus": sections["top_skus"],
            "filters": filter_set.to_dict(),
            "errors": errors,
        }

    # ─── Lists ───────────────────────────────────────────────────────────────

    @cached("platforms", ttl=CACHE_TTL.very_static)
    async def get_platforms(self, filters: FilterSet) -> List[str]:
        """Distinct platforms."""
        return await self.column_store.fetch_distinct("platform")

    async def get_brands(self, platform: Optional[str] = None) -> List[str]:
        """Distinct brands, optionally for one platform (or comma list)."""
        return await self._brands(FilterSet.from_query({"platform": platform}))

    @cached("brands", ttl=CACHE_TTL.very_static)
    async def _brands(self, filters: FilterSet) -> List[str]:
        return await self.column_store.fetch_distinct("brand", self._where(filters))

    async def warm_common_caches(self) -> int:
        """
        Pre-populate the caches every dashboard load hits first.

        Returns:
            Number of entries warmed
        """
        logger.info("Warming common caches")
        warmed = 0
        platforms = await self.get_platforms()
        warmed += 1
        await self.get_brands()
        warmed += 1
        logger.info(f"Cache warming complete: {warmed} entries, {len(platforms)} platforms")
        return warmed
