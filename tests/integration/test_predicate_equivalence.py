"""
Integration tests for watchtower/predicates.py

Both dialects must select exactly the same fact rows for the same filters.
The fixture rows are loaded into SQLite (row store) and DuckDB (column store)
and the selected ids are compared.
"""
from datetime import datetime

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from watchtower.models import SalesFact
from watchtower.predicates import (
    build_column_predicate,
    build_column_predicate_bound,
    build_row_predicate,
)

ALL_IDS = set(range(1, 16))

CASES = [
    ({}, ALL_IDS),
    ({"platform": "All"}, ALL_IDS),
    ({"platform": "Zepto"}, {1, 2, 3, 4, 6, 7, 8, 9, 10, 11}),
    ({"platform": "ZEPTO,blinkit"}, {1, 2, 3, 4, 5, 6, 7, 8, 9, 10, 11, 14, 15}),
    ({"brand": "aer"}, {1, 2, 3, 4, 5, 8, 9, 10, 11, 13, 14, 15}),
    ({"brand": "Matic,Godrej"}, {2, 6, 10}),
    ({"brand": "r_m"}, {13}),
    ({"brand": "%"}, set()),
    ({"brand": "O'Reilly"}, {12}),
    ({"location": "Mumbai,Delhi"}, {1, 2, 4, 5, 6, 7, 8, 9, 10, 11}),
    ({"category": "home care"}, {6, 12}),
    ({"region": "North"}, {2, 10}),
    ({"region": "unknown"}, {14, 15}),
    ({"region": "West,Unknown", "platform": "Blinkit"}, {5, 14, 15}),
    ({"competitor": "1"}, {8}),
    ({"competitor": "false", "platform": "Zepto", "brand": "aer"}, {1, 2, 3, 4, 9, 10, 11}),
    ({"startDate": "2025-10-01", "endDate": "2025-10-06"}, {1, 2, 3, 5, 6, 7, 8, 13, 14, 15}),
    ({"startDate": "2025-10-06"}, {3, 4}),
    ({"endDate": "2024-12-31"}, {11}),
    (
        {
            "platform": "zepto",
            "brand": "aer",
            "competitor": "0",
            "startDate": "2025-09-01",
            "endDate": "2025-10-06",
        },
        {1, 2, 3, 9, 10},
    ),
    ({"platform": "x') OR 1=1 --"}, set()),
]


def row_ids(engine, filters):
    with Session(engine) as session:
        statement = select(SalesFact.id).where(build_row_predicate(filters))
        return set(session.execute(statement).scalars())


async def column_ids(store, filters, bound):
    if bound:
        sql, params = build_column_predicate_bound(filters)
    else:
        sql, params = build_column_predicate(filters), []
    rows = await store.fetch_all(f'SELECT id FROM "rb_pdp_olap" WHERE {sql}', params)
    return {r[0] for r in rows}


class TestPredicateEquivalence:
    """Row and column predicates select the same rows."""

    @pytest.mark.parametrize("filters,expected", CASES)
    @pytest.mark.asyncio
    async def test_same_rows(self, sqlite_engine, column_store, filters, expected):
        """SQLite, inline DuckDB and bound DuckDB agree with the expected ids."""
        assert row_ids(sqlite_engine, filters) == expected
        assert await column_ids(column_store, filters, bound=False) == expected
        assert await column_ids(column_store, filters, bound=True) == expected

    @pytest.mark.asyncio
    async def test_dates_can_be_left_out(self, sqlite_engine, column_store):
        filters = {"platform": "Zepto", "startDate": "2030-01-01"}
        with Session(sqlite_engine) as session:
            statement = select(SalesFact.id).where(build_row_predicate(filters, include_dates=False))
            from_rows = set(session.execute(statement).scalars())
        sql, params = build_column_predicate_bound(filters, include_dates=False)
        from_columns = {r[0] for r in await column_store.fetch_all(f'SELECT id FROM "rb_pdp_olap" WHERE {sql}', params)}
        assert from_rows == from_columns == {1, 2, 3, 4, 6, 7, 8, 9, 10, 11}


def unicode_row(id, brand, location):
    return {
        "id": id, "sales_date": datetime(2025, 10, 2, 9, 0), "platform": "Swiggy", "brand": brand,
        "location": location, "category": "Air Care", "sku_name": brand, "comp_flag": 0,
        "sales": 10.0, "neno_osa": 1.0, "deno_osa": 1.0,
    }


UNICODE_ROWS = [
    unicode_row(1, "Élan", "Zürich"),
    unicode_row(2, "Elan", "Zurich"),
    unicode_row(3, "ÉLAN Sprüh", "Köln"),
]
UNICODE_REGIONS = [{"id": 1, "location": "ZÜRICH ", "region": "Südwest"}]

UNICODE_CASES = [
    ({"location": "ZÜRICH", "brand": "élan"}, {1}),
    ({"brand": "ÉLAN"}, {1, 3}),
    ({"brand": "elan"}, {2}),
    ({"location": "zurich"}, {2}),
    ({"brand": "SPRÜH"}, {3}),
    ({"region": "SÜDWEST"}, {1}),
    ({"region": "unknown"}, {2, 3}),
]


class TestNonAsciiEquivalence:
    """Case folding of non-ASCII values agrees across dialects."""

    @pytest.mark.parametrize("filters,expected", UNICODE_CASES)
    @pytest.mark.asyncio
    async def test_same_rows(self, sqlite_engine_factory, column_store_factory, filters, expected):
        engine = sqlite_engine_factory(UNICODE_ROWS, UNICODE_REGIONS)
        store = await column_store_factory(UNICODE_ROWS, UNICODE_REGIONS)

        assert row_ids(engine, filters) == expected
        assert await column_ids(store, filters, bound=False) == expected
        assert await column_ids(store, filters, bound=True) == expected
