"""
Dual-dialect filter predicates.

The same ``FilterSet`` is rendered two ways:

- ``build_row_predicate``: a SQLAlchemy boolean clause for the row store
- ``build_column_predicate``: an SQL text fragment for the column store,
  either with inline escaped literals or (``build_column_predicate_bound``)
  with ``?`` placeholders and a parameter list

Both forms select the same rows:

- an absent dimension adds no condition
- several values of one dimension are OR-ed
- brand matches a case-insensitive substring, the other dimensions match
  case-insensitively and exactly
- date bounds are inclusive and compared against the date part only
- the competitor flag is compared as the string '0' / '1'
- region goes through the location-to-region table; ``unknown`` selects
  locations missing from that table
"""
from datetime import date
from typing import Any, List, Optional, Tuple

from sqlalchemy import Date, String, and_, cast, func, not_, or_, select, true
from sqlalchemy.sql.elements import ColumnElement

from watchtower.filters import FilterSet
from watchtower.models import LocationRegion, SalesFact

UNKNOWN_REGION = "unknown"

DEFAULT_FACT_TABLE = SalesFact.__tablename__
DEFAULT_REGION_TABLE = LocationRegion.__tablename__

# Dimension -> fact column; shared by both dialects
FACT_COLUMNS = {
    "platform": "platform",
    "brand": "brand",
    "location": "location",
    "category": "category",
    "date": "sales_date",
    "competitor": "comp_flag",
}
EXACT_DIMENSIONS = ("platform", "location", "category")


def _flag_literal(competitor: bool) -> str:
    return "1" if competitor else "0"


def _split_region(values: Tuple[str, ...]) -> Tuple[bool, List[str]]:
    """Separate the Unknown sentinel from real region labels."""
    named = [v for v in values if v != UNKNOWN_REGION]
    return UNKNOWN_REGION in values, named


# ═══════════════════════════════════════════════════════════════════════════════
# ROW STORE (SQLAlchemy)
# ═══════════════════════════════════════════════════════════════════════════════

def _row_region_clause(values: Tuple[str, ...], model, region_model) -> ColumnElement:
    same_location = func.lower(func.trim(region_model.location)) == func.lower(
        func.trim(getattr(model, FACT_COLUMNS["location"]))
    )
    include_unknown, named = _split_region(values)

    clauses = []
    if named:
        clauses.append(
            select(region_model.id)
            .where(same_location, func.lower(region_model.region).in_(named))
            .exists()
        )
    if include_unknown:
        clauses.append(not_(select(region_model.id).where(same_location).exists()))
    return or_(*clauses) if len(clauses) > 1 else clauses[0]


def row_date_bounds(
    start: Optional[date],
    end: Optional[date],
    model=SalesFact,
) -> List[ColumnElement]:
    """Inclusive date conditions on the date part of the fact timestamp."""
    day = func.date(getattr(model, FACT_COLUMNS["date"]), type_=Date)
    conditions = []
    if start:
        conditions.append(day >= start)
    if end:
        conditions.append(day <= end)
    return conditions


def build_row_predicate(
    filters: Any,
    model=SalesFact,
    region_model=LocationRegion,
    include_dates: bool = True,
) -> ColumnElement:
    """
    Render filters as a SQLAlchemy WHERE clause.

    Args:
        filters: FilterSet or raw query mapping
        model: Mapped fact class
        region_model: Mapped location-to-region class
        include_dates: Add the start/end date bounds

    Returns:
        Boolean clause, ``true()`` when nothing is constrained
    """
    f = FilterSet.coerce(filters)
    conditions: List[ColumnElement] = []

    for dimension in EXACT_DIMENSIONS:
        values = getattr(f, dimension)
        if values:
            column = getattr(model, FACT_COLUMNS[dimension])
            conditions.append(func.lower(column).in_(values))

    if f.brand:
        brand_column = func.lower(getattr(model, FACT_COLUMNS["brand"]))
        conditions.append(or_(*[brand_column.contains(v, autoescape=True) for v in f.brand]))

    if f.region:
        conditions.append(_row_region_clause(f.region, model, region_model))

    if f.competitor is not None:
        flag_column = getattr(model, FACT_COLUMNS["competitor"])
        conditions.append(cast(flag_column, String) == _flag_literal(f.competitor))

    if include_dates:
        conditions.extend(row_date_bounds(f.start_date, f.end_date, model))

    if not conditions:
        return true()
    return and_(*conditions)


# ═══════════════════════════════════════════════════════════════════════════════
# COLUMN STORE (SQL text)
# ═══════════════════════════════════════════════════════════════════════════════

def quote_identifier(name: str) -> str:
    """Double-quote an identifier, doubling embedded double quotes."""
    return '"' + str(name).replace('"', '""') + '"'


def quote_literal(value: Any) -> str:
    """Render a value as a single-quoted SQL string literal."""
    if isinstance(value, date):
        value = value.strftime("%Y-%m-%d")
    return "'" + str(value).replace("'", "''") + "'"


def qualify(table: Optional[str], column: str) -> str:
    if table:
        return f"{quote_identifier(table)}.{quote_identifier(column)}"
    return quote_identifier(column)


class _SqlWriter:
    """Collects literals either inline or as bound parameters."""

    def __init__(self, bind: bool):
        self.bind = bind
        self.params: List[Any] = []

    def literal(self, value: Any) -> str:
        if self.bind:
            self.params.append(value)
            return "?"
        return quote_literal(value)

    def literal_list(self, values) -> str:
        return ", ".join(self.literal(v) for v in values)


def _column_region_clause(
    values: Tuple[str, ...],
    table: str,
    region_table: str,
    writer: _SqlWriter,
) -> str:
    same_location = (
        f"lower(trim({qualify(region_table, 'location')})) = "
        f"lower(trim({qualify(table, FACT_COLUMNS['location'])}))"
    )
    lookup = f"SELECT 1 FROM {quote_identifier(region_table)} WHERE {same_location}"
    include_unknown, named = _split_region(values)

    clauses = []
    if named:
        region_column = qualify(region_table, "region")
        clauses.append(
            f"EXISTS ({lookup} AND lower({region_column}) IN ({writer.literal_list(named)}))"
        )
    if include_unknown:
        clauses.append(f"NOT EXISTS ({lookup})")
    return f"({' OR '.join(clauses)})" if len(clauses) > 1 else clauses[0]


def _column_date_bounds(
    start: Optional[date],
    end: Optional[date],
    table: Optional[str],
    writer: _SqlWriter,
) -> List[str]:
    day = f"CAST({qualify(table, FACT_COLUMNS['date'])} AS DATE)"
    conditions = []
    if start and end:
        conditions.append(f"{day} BETWEEN {writer.literal(start)} AND {writer.literal(end)}")
    elif start:
        conditions.append(f"{day} >= {writer.literal(start)}")
    elif end:
        conditions.append(f"{day} <= {writer.literal(end)}")
    return conditions


def _render_column_predicate(
    filters: Any,
    table: str,
    region_table: str,
    include_dates: bool,
    writer: _SqlWriter,
) -> str:
    f = FilterSet.coerce(filters)
    conditions: List[str] = []

    for dimension in EXACT_DIMENSIONS:
        values = getattr(f, dimension)
        if values:
            column = qualify(table, FACT_COLUMNS[dimension])
            conditions.append(f"lower({column}) IN ({writer.literal_list(values)})")

    if f.brand:
        brand_column = qualify(table, FACT_COLUMNS["brand"])
        matches = [f"strpos(lower({brand_column}), {writer.literal(v)}) > 0" for v in f.brand]
        conditions.append(matches[0] if len(matches) == 1 else f"({' OR '.join(matches)})")

    if f.region:
        conditions.append(_column_region_clause(f.region, table, region_table, writer))

    if f.competitor is not None:
        flag_column = qualify(table, FACT_COLUMNS["competitor"])
        conditions.append(f"CAST({flag_column} AS VARCHAR) = {writer.literal(_flag_literal(f.competitor))}")

    if include_dates:
        conditions.extend(_column_date_bounds(f.start_date, f.end_date, table, writer))

    if not conditions:
        return "1=1"
    return " AND ".join(conditions)


def build_column_predicate(
    filters: Any,
    table: str = DEFAULT_FACT_TABLE,
    region_table: str = DEFAULT_REGION_TABLE,
    include_dates: bool = True,
) -> str:
    """
    Render filters as an SQL boolean expression with inline literals.

    Every literal is single-quoted with embedded quotes doubled and every
    identifier is double-quoted, so no filter value can end a literal early.

    Returns:
        SQL text, ``1=1`` when nothing is constrained
    """
    return _render_column_predicate(filters, table, region_table, include_dates, _SqlWriter(bind=False))


def build_column_predicate_bound(
    filters: Any,
    table: str = DEFAULT_FACT_TABLE,
    region_table: str = DEFAULT_REGION_TABLE,
    include_dates: bool = True,
) -> Tuple[str, List[Any]]:
    """Same as ``build_column_predicate`` but with ``?`` placeholders."""
    writer = _SqlWriter(bind=True)
    sql = _render_column_predicate(filters, table, region_table, include_dates, writer)
    return sql, writer.params


def column_date_bounds_bound(
    start: Optional[date],
    end: Optional[date],
    table: Optional[str] = DEFAULT_FACT_TABLE,
) -> Tuple[str, List[Any]]:
    """Inclusive date-window condition with bound parameters."""
    writer = _SqlWriter(bind=True)
    conditions = _column_date_bounds(start, end, table, writer)
    return (" AND ".join(conditions) or "1=1"), writer.params


def combine(*parts: Tuple[str, List[Any]]) -> Tuple[str, List[Any]]:
    """AND together bound fragments, keeping parameter order."""
    sql = [s for s, _ in parts if s and s != "1=1"]
    params: List[Any] = []
    for s, p in parts:
        if s and s != "1=1":
            params.extend(p)
    return (" AND ".join(sql) or "1=1"), params

