"""
Integration tests for watchtower/row_store.py and watchtower/column_store.py

Runs against in-memory SQLite and DuckDB loaded with the shared fixture rows.
"""
import time
from datetime import date

import pytest
from sqlalchemy import func, select

from watchtower.column_store import ColumnStore
from watchtower.exceptions import BackendQueryError, QueryTimeoutError, ValidationError
from watchtower.predicates import build_column_predicate_bound, build_row_predicate
from watchtower.row_store import RowStore, create_row_engine

ZEPTO_AER = {"platform": "Zepto", "brand": "aer", "competitor": "0"}


class TestRowStore:
    """Tests for RowStore."""

    @pytest.mark.asyncio
    async def test_aggregates_by_location(self, row_store):
        """Sums are grouped by column value and day."""
        rows = await row_store.fetch_aggregates(
            build_row_predicate({**ZEPTO_AER, "startDate": "2025-10-01", "endDate": "2025-10-06"}),
            group_by="location",
        )
        by_key = {(r.group_key, r.period_bucket): r.sum_metric for r in rows}
        assert by_key == {
            ("Mumbai", date(2025, 10, 1)): 100.0,
            ("Delhi", date(2025, 10, 3)): 150.0,
            ("Pune ", date(2025, 10, 6)): 200.0,
        }

    @pytest.mark.asyncio
    async def test_aggregates_ungrouped(self, row_store):
        rows = await row_store.fetch_aggregates(build_row_predicate({"competitor": "1"}))
        assert len(rows) == 1
        assert rows[0].group_key == ""
        assert rows[0].sum_metric == 500.0
        assert rows[0].count == 1

    @pytest.mark.asyncio
    async def test_other_measure(self, row_store):
        total = await row_store.fetch_total(build_row_predicate({"platform": "Instamart"}), measure="deno_osa")
        assert total == 20.0

    @pytest.mark.asyncio
    async def test_total_without_match(self, row_store):
        assert await row_store.fetch_total(build_row_predicate({"platform": "nowhere"})) == 0.0

    @pytest.mark.asyncio
    async def test_distinct(self, row_store):
        assert await row_store.fetch_distinct("platform") == ["Blinkit", "Instamart", "Zepto"]
        assert await row_store.fetch_distinct("category", build_row_predicate({"platform": "Blinkit"})) == ["Air Care"]

    @pytest.mark.asyncio
    async def test_region_rows_in_table_order(self, row_store):
        rows = await row_store.fetch_region_rows()
        assert rows[0] == ("Mumbai", "West")
        assert rows[3] == ("mumbai ", "South")

    @pytest.mark.asyncio
    async def test_rejects_unknown_columns(self, row_store):
        with pytest.raises(ValidationError):
            await row_store.fetch_aggregates(group_by="sales")
        with pytest.raises(ValidationError):
            await row_store.fetch_total(measure="platform")

    @pytest.mark.asyncio
    async def test_missing_table_is_backend_error(self):
        """SQLAlchemy errors surface as BackendQueryError."""
        store = RowStore(engine=create_row_engine("sqlite://"))
        await store.connect()
        try:
            with pytest.raises(BackendQueryError) as exc_info:
                await store.fetch_total()
            assert exc_info.value.backend == "row_store"
        finally:
            await store.close()

    @pytest.mark.parametrize("url", ["sqlite://", "sqlite:///:memory:"])
    def test_sqlite_lower_folds_unicode(self, url):
        """SQLite engines fold case like Python and DuckDB do."""
        engine = create_row_engine(url)
        try:
            with engine.connect() as conn:
                assert conn.execute(select(func.lower("ZÜRICH"))).scalar() == "zürich"
                assert conn.execute(select(func.lower(None))).scalar() is None
        finally:
            engine.dispose()

    @pytest.mark.asyncio
    async def test_timeout(self, row_store):
        """Work exceeding the timeout raises QueryTimeoutError."""
        with pytest.raises(QueryTimeoutError) as exc_info:
            await row_store._run(lambda: time.sleep(0.5), "slow query", timeout=0.05)
        assert exc_info.value.timeout == 0.05
        assert exc_info.value.backend == "row_store"

    @pytest.mark.asyncio
    async def test_connection_info(self, row_store):
        await row_store.fetch_total()
        info = row_store.get_connection_info()
        assert info["status"] == "active"
        assert info["total_queries"] == 1


class TestColumnStore:
    """Tests for ColumnStore."""

    @pytest.mark.asyncio
    async def test_aggregates_match_row_store(self, row_store, column_store):
        """Both backends return the same aggregates for the same filters."""
        filters = {**ZEPTO_AER, "startDate": "2025-09-01", "endDate": "2025-10-06"}
        from_rows = await row_store.fetch_aggregates(build_row_predicate(filters), group_by="sku_name")
        from_columns = await column_store.fetch_aggregates(build_column_predicate_bound(filters), group_by="sku_name")
        assert sorted(from_rows, key=lambda r: (r.group_key, r.period_bucket)) == \
            sorted(from_columns, key=lambda r: (r.group_key, r.period_bucket))

    @pytest.mark.asyncio
    async def test_totals(self, column_store):
        totals = await column_store.fetch_totals(
            build_column_predicate_bound({**ZEPTO_AER, "startDate": "2025-09-01", "endDate": "2025-10-06"}),
            measures=("sales", "neno_osa", "deno_osa"),
        )
        assert totals == {"sales": 750.0, "neno_osa": 37.0, "deno_osa": 50.0}

    @pytest.mark.asyncio
    async def test_totals_without_match(self, column_store):
        assert await column_store.fetch_totals(build_column_predicate_bound({"brand": "nothing"})) == {"sales": 0.0}

    @pytest.mark.asyncio
    async def test_top(self, column_store):
        top = await column_store.fetch_top(
            "sku_name",
            build_column_predicate_bound({**ZEPTO_AER, "startDate": "2025-09-01", "endDate": "2025-10-06"}),
        )
        assert top == [("Aer Pocket 10g", 420.0), ("Aer Matic Refill", 330.0)]

    @pytest.mark.asyncio
    async def test_top_limit(self, column_store):
        assert len(await column_store.fetch_top("platform", limit=1)) == 1
        with pytest.raises(ValidationError):
            await column_store.fetch_top("platform", limit=0)

    @pytest.mark.asyncio
    async def test_distinct(self, column_store):
        assert await column_store.fetch_distinct("platform") == ["Blinkit", "Instamart", "Zepto"]

    @pytest.mark.asyncio
    async def test_region_rows(self, column_store):
        rows = await column_store.fetch_region_rows()
        assert [r[0] for r in rows] == ["Mumbai", "delhi", " PUNE", "mumbai ", "Bengaluru"]

    @pytest.mark.asyncio
    async def test_fetch_df(self, column_store):
        df = await column_store.fetch_df('SELECT platform, SUM(sales) AS total FROM "rb_pdp_olap" GROUP BY 1 ORDER BY 1')
        assert list(df["platform"]) == ["Blinkit", "Instamart", "Zepto"]

    @pytest.mark.asyncio
    async def test_bad_query_is_backend_error(self, column_store):
        with pytest.raises(BackendQueryError) as exc_info:
            await column_store.fetch_all("SELECT * FROM missing_table")
        assert exc_info.value.backend == "column_store"

    @pytest.mark.asyncio
    async def test_timeout(self, column_store):
        async with column_store.connection() as conn:
            with pytest.raises(QueryTimeoutError):
                await column_store._submit(conn, lambda: time.sleep(0.5), "slow query", 0.05)

    @pytest.mark.asyncio
    async def test_custom_table_names(self):
        store = ColumnStore(path=":memory:", fact_table="facts", region_table="regions")
        await store.connect()
        try:
            await store.ensure_schema()
            assert await store.fetch_totals() == {"sales": 0.0}
            assert await store.fetch_region_rows() == []
        finally:
            await store.close()
