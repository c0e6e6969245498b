"""
Metric derivation and roll-up.

Backends return ``AggregateRow``s (one sum per group and day). This module
buckets them into the named period windows, derives run rates, projections
and deltas, and optionally rolls locations up into regions.

    rows = await row_store.fetch_aggregates(predicate, group_by="location")
    by_region = derive_period_metrics(rows, windows, group_by="region", region_lookup=lookup)
"""
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Mapping, Optional, Union

from watchtower.periods import (
    PeriodWindow,
    PeriodWindows,
    days_in_month,
    delta_percent,
    drr,
    projected,
)
from watchtower.regions import UNKNOWN_GROUP, RegionLookup


@dataclass(frozen=True)
class AggregateRow:
    """One backend aggregate: the metric sum of a group on one day."""
    group_key: str
    period_bucket: date
    sum_metric: float
    count: int = 1


@dataclass
class DerivedMetric:
    """A KPI value with its optional comparison and daily trend."""
    value: float
    comparison_value: Optional[float] = None
    delta_percent: Optional[float] = None
    trend: List[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "value": self.value,
            "comparisonValue": self.comparison_value,
            "deltaPercent": self.delta_percent,
            "trend": self.trend,
        }


@dataclass
class PeriodMetrics:
    """Window totals of one group plus the values derived from them."""
    mtd: float = 0.0
    prev_month_mtd: float = 0.0
    prev_month_full: float = 0.0
    ytd: float = 0.0
    last_year_same_window: float = 0.0
    last_year_ytd: float = 0.0
    last_year_full: float = 0.0
    drr: float = 0.0
    prev_drr: float = 0.0
    projected: float = 0.0
    mtd_delta: Optional[float] = None
    ytd_delta: Optional[float] = None

    @property
    def has_signal(self) -> bool:
        """True if any window total is non-zero."""
        return any(
            value != 0
            for value in (
                self.mtd,
                self.prev_month_mtd,
                self.prev_month_full,
                self.ytd,
                self.last_year_same_window,
                self.last_year_ytd,
                self.last_year_full,
            )
        )

    def to_dict(self) -> dict:
        return {
            "mtd": self.mtd,
            "prevMonthMtd": self.prev_month_mtd,
            "prevMonthFull": self.prev_month_full,
            "ytd": self.ytd,
            "lastYearSameWindow": self.last_year_same_window,
            "lastYearYtd": self.last_year_ytd,
            "lastYearFull": self.last_year_full,
            "drr": self.drr,
            "prevDrr": self.prev_drr,
            "projected": self.projected,
            "mtdDelta": self.mtd_delta,
            "ytdDelta": self.ytd_delta,
        }


def sum_in_window(rows: Iterable[AggregateRow], window: PeriodWindow) -> float:
    return float(sum(row.sum_metric or 0.0 for row in rows if window.contains(row.period_bucket)))


def sum_by_window(rows: Iterable[AggregateRow], windows: PeriodWindows) -> Dict[str, float]:
    """Total of ``rows`` falling inside each named window."""
    named = windows.named()
    totals = {name: 0.0 for name in named}
    for row in rows:
        for name, window in named.items():
            if window.contains(row.period_bucket):
                totals[name] += row.sum_metric or 0.0
    return totals


def daily_trend(rows: Iterable[AggregateRow], window: PeriodWindow) -> List[dict]:
    """Zero-filled daily series over ``window``."""
    per_day: Dict[date, float] = {}
    for row in rows:
        if window.contains(row.period_bucket):
            per_day[row.period_bucket] = per_day.get(row.period_bucket, 0.0) + (row.sum_metric or 0.0)
    return [
        {"date": day.isoformat(), "value": per_day.get(day, 0.0)}
        for day in window.iter_days()
    ]


def cumulative_trend(
    rows: Iterable[AggregateRow],
    window: PeriodWindow,
    month_days: Optional[int] = None,
) -> List[dict]:
    """
    Running totals per day of ``window``.

    Each point carries the day's value, the cumulative total since the
    window start, the run rate so far and the straight-line projection of
    that run rate over the month.
    """
    points = []
    cumulative = 0.0
    for point in daily_trend(rows, window):
        day = date.fromisoformat(point["date"])
        cumulative += point["value"]
        rate = drr(cumulative, window.start, day)
        points.append({
            "date": point["date"],
            "value": point["value"],
            "cumulative": cumulative,
            "drr": rate,
            "projected": projected(rate, month_days or days_in_month(day)),
        })
    return points


def derive_metric(
    rows: Iterable[AggregateRow],
    current: PeriodWindow,
    comparison: Optional[PeriodWindow] = None,
    trend_window: Optional[PeriodWindow] = None,
) -> DerivedMetric:
    """
    Derive one KPI from rows: current total, comparison total and delta.

    Without a comparison window the comparison value and delta are None.
    """
    rows = list(rows)
    value = sum_in_window(rows, current)
    comparison_value = sum_in_window(rows, comparison) if comparison else None
    return DerivedMetric(
        value=value,
        comparison_value=comparison_value,
        delta_percent=delta_percent(value, comparison_value),
        trend=daily_trend(rows, trend_window) if trend_window else [],
    )


def period_metrics_from_totals(totals: Mapping[str, float], windows: PeriodWindows) -> PeriodMetrics:
    current_drr = drr(totals["mtd"], windows.mtd.start, windows.mtd.end)
    prev_drr = drr(totals["prev_month_mtd"], windows.prev_month_mtd.start, windows.prev_month_mtd.end)
    return PeriodMetrics(
        mtd=totals["mtd"],
        prev_month_mtd=totals["prev_month_mtd"],
        prev_month_full=totals["prev_month_full"],
        ytd=totals["ytd"],
        last_year_same_window=totals["last_year_same_window"],
        last_year_ytd=totals["last_year_ytd"],
        last_year_full=totals["last_year_full"],
        drr=current_drr,
        prev_drr=prev_drr,
        projected=projected(current_drr, windows.days_in_month),
        mtd_delta=delta_percent(totals["mtd"], totals["prev_month_mtd"]),
        ytd_delta=delta_percent(totals["ytd"], totals["last_year_ytd"]),
    )


def group_rows(
    rows: Iterable[AggregateRow],
    group_by: Optional[str] = None,
    region_lookup: Optional[RegionLookup] = None,
) -> "OrderedDict[str, List[AggregateRow]]":
    """
    Bucket rows by group label.

    Labels are matched case-insensitively; the first spelling seen is
    kept. ``group_by="region"`` maps each row's location key through the
    lookup, and unmapped or empty keys land in ``Unknown``.
    """
    if group_by == "region" and region_lookup is None:
        region_lookup = RegionLookup()

    labels: Dict[str, str] = {}
    groups: "OrderedDict[str, List[AggregateRow]]" = OrderedDict()
    for row in rows:
        if group_by == "region":
            label = region_lookup.region_for(row.group_key)
        else:
            label = (row.group_key or "").strip() or UNKNOWN_GROUP
        norm = label.lower()
        label = labels.setdefault(norm, label)
        groups.setdefault(label, []).append(row)
    return groups


def derive_period_metrics(
    rows: Iterable[AggregateRow],
    windows: PeriodWindows,
    group_by: Optional[str] = None,
    region_lookup: Optional[RegionLookup] = None,
) -> Union[PeriodMetrics, "OrderedDict[str, PeriodMetrics]"]:
    """
    Derive period metrics for all rows or per group.

    Args:
        rows: Daily aggregates keyed by the grouped dimension
        windows: Output of ``compute_windows``
        group_by: None for a single record; a dimension name to group by
            row key; ``"region"`` to roll location keys up into regions
        region_lookup: Required for a meaningful region roll-up

    Returns:
        ``PeriodMetrics`` when ungrouped, otherwise an ordered mapping of
        group label to ``PeriodMetrics`` with silent groups removed
    """
    rows = list(rows)
    if group_by is None:
        return period_metrics_from_totals(sum_by_window(rows, windows), windows)

    result: "OrderedDict[str, PeriodMetrics]" = OrderedDict()
    for label, group in group_rows(rows, group_by, region_lookup).items():
        metrics = period_metrics_from_totals(sum_by_window(group, windows), windows)
        # Drop groups that are zero in every window
        if metrics.has_signal:
            result[label] = metrics
    return result


def availability_percent(neno: Optional[float], deno: Optional[float]) -> float:
    """On-shelf availability: listed-in-stock over listed, as a percentage."""
    if not deno:
        return 0.0
    return (neno or 0.0) / deno * 100
