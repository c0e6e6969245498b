"""
Dashboard filter normalization.

Every request enters the engine as a flat mapping of query parameters
(``platform=Zepto&brand=Aer,Godrej&startDate=2025-10-01``). ``FilterSet``
is the single place where those values are parsed, trimmed, lower-cased and
de-duplicated, so predicate builders, cache keys and services all receive
the same already-normalized value.

The ``"All"`` sentinel used by the HTTP layer is handled here and nowhere
else: it becomes ``None``.
"""
from dataclasses import asdict, dataclass, fields, replace
from datetime import date, datetime
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from watchtower.observability import get_logger
from watchtower.periods import PeriodWindow, month_start, shift_months

logger = get_logger(__name__)

# Dimensions matched against fact-table columns (case-insensitive)
MATCH_DIMENSIONS = ("platform", "brand", "location", "region", "category")
DATE_FIELDS = ("start_date", "end_date", "compare_start_date", "compare_end_date")
ALL_SENTINEL = "all"

# Query parameter spellings accepted from the HTTP layer
QUERY_ALIASES = {
    "platform": "platform",
    "platform[]": "platform",
    "platforms": "platform",
    "brand": "brand",
    "brand[]": "brand",
    "brands": "brand",
    "location": "location",
    "location[]": "location",
    "locations": "location",
    "city": "location",
    "region": "region",
    "region[]": "region",
    "category": "category",
    "category[]": "category",
    "categories": "category",
    "startDate": "start_date",
    "start_date": "start_date",
    "endDate": "end_date",
    "end_date": "end_date",
    "compareStartDate": "compare_start_date",
    "compare_start_date": "compare_start_date",
    "compareEndDate": "compare_end_date",
    "compare_end_date": "compare_end_date",
    "months": "months",
    "competitor": "competitor",
    "compFlag": "competitor",
    "comp_flag": "competitor",
}

_TRUE_VALUES = {"1", "true", "yes"}
_FALSE_VALUES = {"0", "false", "no"}


def split_values(raw: Any, field_name: str = "value") -> Optional[Tuple[str, ...]]:
    """
    Normalize a dimension value into a sorted tuple of lower-cased values.

    Accepts a single string, a comma-separated string or a list of either.
    Returns None for "no constraint": absent, empty or containing "All".
    A value that produces nothing after splitting is dropped with a warning.
    """
    if raw is None:
        return None

    items: Iterable[Any] = raw if isinstance(raw, (list, tuple, set, frozenset)) else [raw]

    values = []
    for item in items:
        if item is None:
            continue
        for part in str(item).split(","):
            part = part.strip().lower()
            if part:
                values.append(part)

    if not values:
        if any(str(item).strip() for item in items if item is not None):
            logger.warning(f"Dropping malformed {field_name} filter", extra={"raw_value": raw})
        return None

    if ALL_SENTINEL in values:
        return None

    return tuple(sorted(set(values)))


def parse_date(raw: Any, field_name: str = "date") -> Optional[date]:
    """
    Parse a date filter value, returning None for absent or malformed input.

    Accepts date/datetime objects, ``YYYY-MM-DD`` strings and ISO timestamps.
    """
    if raw is None or raw == "":
        return None

    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw

    text = str(raw).strip()
    try:
        return datetime.strptime(text, "%Y-%m-%d").date()
    except ValueError:
        pass

    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        logger.warning(f"Dropping malformed {field_name} filter", extra={"raw_value": raw})
        return None


def _parse_months(raw: Any) -> Optional[int]:
    if raw is None or raw == "":
        return None
    try:
        months = int(raw)
    except (TypeError, ValueError):
        logger.warning("Dropping malformed months filter", extra={"raw_value": raw})
        return None
    if months <= 0:
        logger.warning("Dropping non-positive months filter", extra={"raw_value": raw})
        return None
    return months


def _parse_flag(raw: Any) -> Optional[bool]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, bool):
        return raw
    text = str(raw).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    if text == ALL_SENTINEL:
        return None
    logger.warning("Dropping malformed competitor filter", extra={"raw_value": raw})
    return None


@dataclass(frozen=True)
class FilterSet:
    """
    Normalized dashboard filters.

    Dimension fields hold sorted, lower-cased tuples (OR semantics inside a
    tuple) or None for "unconstrained". Two FilterSets built from
    semantically equal query mappings compare equal.
    """

    platform: Optional[Tuple[str, ...]] = None
    brand: Optional[Tuple[str, ...]] = None
    location: Optional[Tuple[str, ...]] = None
    region: Optional[Tuple[str, ...]] = None
    category: Optional[Tuple[str, ...]] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    compare_start_date: Optional[date] = None
    compare_end_date: Optional[date] = None
    months: Optional[int] = None
    competitor: Optional[bool] = None

    @classmethod
    def from_query(cls, params: Optional[Mapping[str, Any]] = None, **overrides: Any) -> "FilterSet":
        """
        Build a FilterSet from raw query parameters.

        Unknown keys are ignored; keyword overrides use field names.

        Examples:
            >>> FilterSet.from_query({"platform": "Zepto", "brand": "All"})
            FilterSet(platform=('zepto',), brand=None, ...)
        """
        raw: Dict[str, Any] = {}
        for key, value in (params or {}).items():
            name = QUERY_ALIASES.get(key)
            if name is None:
                continue
            # Singular spellings win over plural/array aliases
            if name in raw and key != name:
                continue
            raw[name] = value
        raw.update(overrides)

        values: Dict[str, Any] = {}
        for dimension in MATCH_DIMENSIONS:
            values[dimension] = split_values(raw.get(dimension), dimension)
        for date_field in DATE_FIELDS:
            values[date_field] = parse_date(raw.get(date_field), date_field)
        values["months"] = _parse_months(raw.get("months"))
        values["competitor"] = _parse_flag(raw.get("competitor"))

        return cls(**values)

    @classmethod
    def coerce(cls, filters: Any) -> "FilterSet":
        """Return ``filters`` unchanged if already a FilterSet, else parse it."""
        if isinstance(filters, cls):
            return filters
        return cls.from_query(filters or {})

    def replace(self, **changes: Any) -> "FilterSet":
        """Copy with some fields replaced (dimension values are re-normalized)."""
        for dimension in MATCH_DIMENSIONS:
            if dimension in changes:
                changes[dimension] = split_values(changes[dimension], dimension)
        return replace(self, **changes)

    def without_dates(self) -> "FilterSet":
        """Copy with all date-range fields cleared."""
        return replace(
            self,
            start_date=None,
            end_date=None,
            compare_start_date=None,
            compare_end_date=None,
        )

    def as_of(self, reference_date: Optional[date] = None) -> date:
        """The as-of date for period metrics: end date, else reference/today."""
        return self.end_date or reference_date or date.today()

    def current_window(self, reference_date: Optional[date] = None) -> PeriodWindow:
        """
        Resolve the selected date window.

        An explicit start date wins and runs to the as-of date (the end date
        when given); otherwise ``months`` looks back from the as-of date;
        otherwise month-to-date of the as-of date.
        """
        end = self.as_of(reference_date)
        if self.start_date:
            return PeriodWindow(self.start_date, end)
        if self.months:
            return PeriodWindow(shift_months(end, -self.months), end)
        return PeriodWindow(month_start(end), end)

    def comparison_window(self) -> Optional[PeriodWindow]:
        """The comparison window, if both compare dates are set."""
        if self.compare_start_date and self.compare_end_date:
            return PeriodWindow(self.compare_start_date, self.compare_end_date)
        return None

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation with absent fields dropped."""
        result = {}
        for key, value in asdict(self).items():
            if value is None:
                continue
            if isinstance(value, tuple):
                value = list(value)
            elif isinstance(value, date):
                value = value.isoformat()
            result[key] = value
        return result


FILTER_FIELDS = tuple(f.name for f in fields(FilterSet))
