"""
Sales dashboard operations backed by the row store.

Every operation takes a FilterSet (or a raw query mapping), is cached
under its own namespace, and returns a JSON-serializable value whose keys
are always present.

Own-brand rows only (``comp_flag = 0``) unless the caller sets the
competitor filter explicitly.
"""
from datetime import date
from typing import Callable, List, Optional

from sqlalchemy import and_

from watchtower.config import CACHE_TTL
from watchtower.exceptions import ValidationError
from watchtower.filters import FilterSet
from watchtower.metrics import (
    cumulative_trend,
    daily_trend,
    derive_period_metrics,
    group_rows,
    period_metrics_from_totals,
    sum_by_window,
    sum_in_window,
)
from watchtower.observability import get_logger, timed
from watchtower.orchestrator import CacheOrchestrator, cached
from watchtower.periods import (
    PeriodWindow,
    compute_windows,
    delta_percent,
    drr,
    projected,
)
from watchtower.predicates import build_row_predicate, row_date_bounds
from watchtower.regions import RegionLookup
from watchtower.row_store import RowStore

logger = get_logger(__name__)

# Drill level -> fact column grouped on; region rolls locations up
DRILL_LEVELS = {
    "platform": "platform",
    "region": "location",
    "city": "location",
    "category": "category",
}


def _own_brands(filters: FilterSet) -> FilterSet:
    if filters.competitor is None:
        return filters.replace(competitor=False)
    return filters


def _metric_cell(value: float, delta: Optional[float], trend: list) -> dict:
    return {"value": value, "delta": delta, "trend": trend}


class SalesService:
    """Sales overview, drill-down, category matrix, trends and filter options."""

    def __init__(
        self,
        row_store: RowStore,
        orchestrator: CacheOrchestrator,
        today: Optional[Callable[[], date]] = None,
    ):
        self.row_store = row_store
        self.orchestrator = orchestrator
        self._today = today or date.today

    def _predicate(self, filters: FilterSet, window: Optional[PeriodWindow] = None):
        """Filter predicate with the filter's own dates replaced by ``window``."""
        base = build_row_predicate(
            _own_brands(filters),
            model=self.row_store.model,
            region_model=self.row_store.region_model,
            include_dates=False,
        )
        if window is None:
            return base
        return and_(base, *row_date_bounds(window.start, window.end, self.row_store.model))

    async def _region_lookup(self) -> RegionLookup:
        return RegionLookup.from_rows(await self.row_store.fetch_region_rows())

    # ─── Overview ────────────────────────────────────────────────────────────

    @cached("sales_overview", ttl=CACHE_TTL.metrics)
    @timed("sales_overview")
    async def get_sales_overview(self, filters: FilterSet) -> dict:
        """
        KPI cards for the selected window.

        Returns:
            overallSales, comparisonSales, changePercentage, mtdSales, drr,
            projectedSales and the daily trend of the selected window
        """
        today = self._today()
        current = filters.current_window(today)
        comparison = filters.comparison_window()
        windows = compute_windows(filters.as_of(today))

        span_start = min(current.start, windows.mtd.start)
        span_end = max(current.end, windows.mtd.end)
        rows = await self.row_store.fetch_aggregates(self._predicate(filters, PeriodWindow(span_start, span_end)))

        overall = sum_in_window(rows, current)
        mtd = sum_in_window(rows, windows.mtd)

        comparison_sales = None
        if comparison:
            comparison_rows = await self.row_store.fetch_aggregates(self._predicate(filters, comparison))
            comparison_sales = sum_in_window(comparison_rows, comparison)

        return {
            "overallSales": overall,
            "comparisonSales": comparison_sales,
            "changePercentage": delta_percent(overall, comparison_sales),
            "mtdSales": mtd,
            "drr": drr(overall, current.start, current.end),
            "projectedSales": projected(drr(mtd, windows.mtd.start, windows.mtd.end), windows.days_in_month),
            "trend": daily_trend(rows, current),
        }

    # ─── Drill-down ──────────────────────────────────────────────────────────

    @cached("sales_drilldown", ttl=CACHE_TTL.metrics)
    @timed("sales_drilldown")
    async def get_sales_drilldown(self, filters: FilterSet, level: str = "platform") -> List[dict]:
        """
        Hierarchical table: platform -> region -> city -> category.

        Region rows are city rows rolled up through the location lookup;
        unmapped cities are summed under ``Unknown``.
        """
        if level not in DRILL_LEVELS:
            raise ValidationError("level", f"must be one of {sorted(DRILL_LEVELS)}", level)

        windows = compute_windows(filters.as_of(self._today()))
        rows = await self.row_store.fetch_aggregates(
            self._predicate(filters, windows.span),
            group_by=DRILL_LEVELS[level],
        )

        lookup = await self._region_lookup() if level == "region" else None
        grouped = derive_period_metrics(
            rows,
            windows,
            group_by="region" if level == "region" else DRILL_LEVELS[level],
            region_lookup=lookup,
        )

        return [
            {
                "name": name,
                "mtdSales": m.mtd,
                "prevMonthMtd": m.prev_month_mtd,
                "currentDrr": m.drr,
                "projectedSales": m.projected,
                "ytdSales": m.ytd,
                "lastYearSales": m.last_year_same_window,
            }
            for name, m in grouped.items()
        ]

    # ─── Category matrix ─────────────────────────────────────────────────────

    @cached("category_matrix", ttl=CACHE_TTL.metrics)
    @timed("category_matrix")
    async def get_category_sales_matrix(self, filters: FilterSet) -> List[dict]:
        """
        Period metrics per category, each with a delta and the MTD trend.

        Deltas compare against:
        - mtd: previous month, same days
        - prevMtd: same window last year
        - drr: previous month run rate
        - ytd: last year to date
        - lastYear: last year to date (full year against the same span)
        - projected: previous full month
        """
        windows = compute_windows(filters.as_of(self._today()))
        rows = await self.row_store.fetch_aggregates(
            self._predicate(filters, windows.span),
            group_by="category",
        )
        matrix = []
        for category, group in group_rows(rows, group_by="category").items():
            m = period_metrics_from_totals(sum_by_window(group, windows), windows)
            if not m.has_signal:
                continue
            trend = daily_trend(group, windows.mtd)
            matrix.append({
                "category": category,
                "metrics": {
                    "mtd": _metric_cell(m.mtd, m.mtd_delta, trend),
                    "prevMtd": _metric_cell(
                        m.prev_month_mtd, delta_percent(m.prev_month_mtd, m.last_year_same_window), trend
                    ),
                    "drr": _metric_cell(m.drr, delta_percent(m.drr, m.prev_drr), trend),
                    "ytd": _metric_cell(m.ytd, m.ytd_delta, trend),
                    "lastYear": _metric_cell(
                        m.last_year_full, delta_percent(m.last_year_full, m.last_year_ytd), []
                    ),
                    "projected": _metric_cell(m.projected, delta_percent(m.projected, m.prev_month_full), trend),
                },
            })
        return matrix

    # ─── Trends ──────────────────────────────────────────────────────────────

    @cached("sales_trends", ttl=CACHE_TTL.trending)
    async def get_sales_trends(self, filters: FilterSet) -> List[dict]:
        """Cumulative daily series (value, running total, DRR, projection)."""
        window = filters.current_window(self._today())
        rows = await self.row_store.fetch_aggregates(self._predicate(filters, window))
        return cumulative_trend(rows, window)

    # ─── Filter options ──────────────────────────────────────────────────────

    @cached("sales_filter_options", ttl=CACHE_TTL.static)
    async def get_filter_options(self, filters: FilterSet) -> dict:
        """Distinct values for the dashboard dropdowns."""
        return {
            "platforms": await self.row_store.fetch_distinct("platform"),
            "brands": await self.row_store.fetch_distinct("brand"),
            "categories": await self.row_store.fetch_distinct("category"),
            "locations": await self.row_store.fetch_distinct("location"),
        }
