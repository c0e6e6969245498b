"""
Metrics aggregation and caching engine for the retail analytics dashboard.

This package turns dashboard filters into cached KPI results:
- filters: FilterSet normalization
- cache_keys / cache / orchestrator: key codec, Redis adapter, cache-or-compute
- predicates: equivalent row-store and column-store filter predicates
- periods / metrics: period windows, run rates, deltas and roll-ups
- engine: wiring of stores, cache and services
"""

# Import in dependency order
from watchtower.exceptions import (
    WatchtowerError,
    BackendQueryError,
    QueryTimeoutError,
    CacheUnavailableError,
    ConfigurationError,
    ValidationError,
)

from watchtower.config import config

from watchtower.filters import FilterSet

from watchtower.cache_keys import encode, namespace_pattern

from watchtower.cache import RedisCache

from watchtower.orchestrator import CacheOrchestrator, cached

from watchtower.predicates import (
    build_row_predicate,
    build_column_predicate,
    build_column_predicate_bound,
)

from watchtower.periods import compute_windows, drr, projected, delta_percent

from watchtower.metrics import AggregateRow, DerivedMetric, derive_metric, derive_period_metrics

from watchtower.engine import AnalyticsEngine

__version__ = config.version

__all__ = [
    # Exceptions
    "WatchtowerError",
    "BackendQueryError",
    "QueryTimeoutError",
    "CacheUnavailableError",
    "ConfigurationError",
    "ValidationError",
    # Config
    "config",
    # Filters and caching
    "FilterSet",
    "encode",
    "namespace_pattern",
    "RedisCache",
    "CacheOrchestrator",
    "cached",
    # Predicates
    "build_row_predicate",
    "build_column_predicate",
    "build_column_predicate_bound",
    # Periods and metrics
    "compute_windows",
    "drr",
    "projected",
    "delta_percent",
    "AggregateRow",
    "DerivedMetric",
    "derive_metric",
    "derive_period_metrics",
    # Engine
    "AnalyticsEngine",
]
