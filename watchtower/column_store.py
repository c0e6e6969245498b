"""
Column-store query interface (DuckDB).

Queries are SQL text built around ``build_column_predicate_bound``
fragments. DuckDB connections are not thread-safe, so all access is
serialized through one lock and a single-worker thread pool.
"""
import asyncio
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, List, Optional, Tuple

import duckdb
import pandas as pd

from watchtower.config import ColumnStoreConfig
from watchtower.exceptions import BackendQueryError, QueryTimeoutError, ValidationError
from watchtower.metrics import AggregateRow
from watchtower.observability import Timer, get_logger
from watchtower.predicates import FACT_COLUMNS, qualify, quote_identifier

logger = get_logger(__name__)

BACKEND = "column_store"
MEMORY_PATH = ":memory:"

GROUPABLE_COLUMNS = ("platform", "brand", "location", "category", "sku_name")
MEASURES = ("sales", "neno_osa", "deno_osa")

FACT_SCHEMA = """
CREATE TABLE IF NOT EXISTS {fact} (
    id INTEGER,
    sales_date TIMESTAMP,
    platform VARCHAR,
    brand VARCHAR,
    location VARCHAR,
    category VARCHAR,
    sku_name VARCHAR,
    comp_flag INTEGER,
    sales DOUBLE,
    neno_osa DOUBLE,
    deno_osa DOUBLE
)
"""

REGION_SCHEMA = """
CREATE TABLE IF NOT EXISTS {region} (
    id INTEGER,
    location VARCHAR,
    region VARCHAR
)
"""


def _to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


class ColumnStore:
    """
    Async-compatible DuckDB store for the watch-tower fact table.

    Features:
    - Thread offloading to avoid blocking the asyncio event loop
    - Per-query timeout raising QueryTimeoutError
    - DuckDB errors wrapped as BackendQueryError
    """

    def __init__(
        self,
        path: str = "data/analytics.duckdb",
        fact_table: str = "rb_pdp_olap",
        region_table: str = "location_regions",
        query_timeout: float = 60.0,
        read_only: bool = False,
    ):
        self.path = path
        self.fact_table = fact_table
        self.region_table = region_table
        self.query_timeout = query_timeout
        self.read_only = read_only
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = asyncio.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._total_queries = 0

    @classmethod
    def from_config(cls, column_config: ColumnStoreConfig) -> "ColumnStore":
        return cls(
            path=column_config.path,
            fact_table=column_config.fact_table,
            region_table=column_config.region_table,
            query_timeout=column_config.query_timeout,
            read_only=column_config.read_only,
        )

    async def connect(self) -> None:
        """Open the DuckDB connection and the worker thread."""
        async with self._lock:
            if self._connection is None:
                if self.path != MEMORY_PATH:
                    Path(self.path).parent.mkdir(parents=True, exist_ok=True)
                self._connection = duckdb.connect(self.path, read_only=self.read_only)
                self._executor = ThreadPoolExecutor(
                    max_workers=1,  # Single worker - DuckDB requires serialized access
                    thread_name_prefix="duckdb",
                )
                logger.info(f"DuckDB connected: {self.path}")

    async def close(self) -> None:
        """Close database connection and thread pool."""
        async with self._lock:
            if self._executor:
                self._executor.shutdown(wait=True)
                self._executor = None
            if self._connection:
                self._connection.close()
                self._connection = None
                logger.info("DuckDB connection closed")

    def get_connection_info(self) -> dict:
        return {
            "status": "active" if self._connection else "not_initialized",
            "total_queries": self._total_queries,
            "db_path": str(self.path),
        }

    @asynccontextmanager
    async def connection(self):
        """Yield the connection while holding the access lock."""
        if self._connection is None:
            await self.connect()
        async with self._lock:
            yield self._connection

    async def ensure_schema(self) -> None:
        """Create the fact and region tables if missing (fixtures, local runs)."""
        await self.execute(FACT_SCHEMA.format(fact=quote_identifier(self.fact_table)))
        await self.execute(REGION_SCHEMA.format(region=quote_identifier(self.region_table)))

    # ─── Query Execution with Timeout ────────────────────────────────────────

    async def _submit(self, conn, work, query: str, timeout: Optional[float]):
        timeout = timeout or self.query_timeout
        self._total_queries += 1
        loop = asyncio.get_running_loop()
        try:
            with Timer("column_store_query", logger):
                return await asyncio.wait_for(loop.run_in_executor(self._executor, work), timeout=timeout)
        except asyncio.TimeoutError:
            conn.interrupt()
            raise QueryTimeoutError(query, timeout, backend=BACKEND)
        except duckdb.Error as e:
            raise BackendQueryError("Column store query failed", str(e), backend=BACKEND) from e

    async def execute(self, query: str, params: list = None, timeout: Optional[float] = None) -> None:
        """Execute a statement without fetching (DDL, fixture inserts)."""
        async with self.connection() as conn:
            await self._submit(conn, lambda: conn.execute(query, params or []), query, timeout)

    async def executemany(self, query: str, rows: List[tuple]) -> None:
        async with self.connection() as conn:
            await self._submit(conn, lambda: conn.executemany(query, rows), query, None)

    async def fetch_all(self, query: str, params: list = None, timeout: Optional[float] = None) -> List[tuple]:
        """
        Execute query and fetch all results with timeout.

        Raises:
            QueryTimeoutError: If query exceeds timeout
            BackendQueryError: If DuckDB rejects or fails the query
        """
        async with self.connection() as conn:
            return await self._submit(
                conn, lambda: conn.execute(query, params or []).fetchall(), query, timeout
            )

    async def fetch_df(self, query: str, params: list = None, timeout: Optional[float] = None) -> pd.DataFrame:
        """Execute query and return a pandas DataFrame."""
        async with self.connection() as conn:
            return await self._submit(
                conn, lambda: conn.execute(query, params or []).df(), query, timeout
            )

    # ─── Aggregates ──────────────────────────────────────────────────────────

    def _column(self, name: str) -> str:
        if name not in GROUPABLE_COLUMNS:
            raise ValidationError("group_by", f"must be one of {GROUPABLE_COLUMNS}", name)
        return qualify(self.fact_table, name)

    def _measure(self, name: str) -> str:
        if name not in MEASURES:
            raise ValidationError("measure", f"must be one of {MEASURES}", name)
        return qualify(self.fact_table, name)

    async def fetch_aggregates(
        self,
        where: Tuple[str, List[Any]] = ("1=1", []),
        group_by: Optional[str] = None,
        measure: str = "sales",
    ) -> List[AggregateRow]:
        """
        Sum ``measure`` per group and day.

        Args:
            where: ``(sql, params)`` from the bound predicate builder
            group_by: Fact column to group on, or None for one group
            measure: Fact column to sum
        """
        where_sql, params = where
        day = f"CAST({qualify(self.fact_table, FACT_COLUMNS['date'])} AS DATE)"
        group_expr = self._column(group_by) if group_by else "''"
        query = f"""
            SELECT
                {group_expr} AS group_key,
                {day} AS bucket,
                COALESCE(SUM({self._measure(measure)}), 0) AS total,
                COUNT(*) AS n
            FROM {quote_identifier(self.fact_table)}
            WHERE {where_sql}
            GROUP BY 1, 2
            ORDER BY 2
        """
        result = await self.fetch_all(query, params)
        return [
            AggregateRow(
                group_key=row[0] or "",
                period_bucket=_to_date(row[1]),
                sum_metric=float(row[2] or 0.0),
                count=int(row[3] or 0),
            )
            for row in result
        ]

    async def fetch_totals(
        self,
        where: Tuple[str, List[Any]] = ("1=1", []),
        measures: Tuple[str, ...] = ("sales",),
    ) -> dict:
        """Sums of several measures over matching rows, zeros when none match."""
        where_sql, params = where
        columns = ", ".join(f"COALESCE(SUM({self._measure(m)}), 0)" for m in measures)
        query = f"SELECT {columns} FROM {quote_identifier(self.fact_table)} WHERE {where_sql}"
        result = await self.fetch_all(query, params)
        values = result[0] if result else (0,) * len(measures)
        return {m: float(v or 0.0) for m, v in zip(measures, values)}

    async def fetch_top(
        self,
        column: str,
        where: Tuple[str, List[Any]] = ("1=1", []),
        measure: str = "sales",
        limit: int = 10,
    ) -> List[Tuple[str, float]]:
        """Top ``limit`` values of a dimension by summed measure, descending."""
        if limit <= 0:
            raise ValidationError("limit", "must be positive", limit)
        where_sql, params = where
        target = self._column(column)
        query = f"""
            SELECT {target}, COALESCE(SUM({self._measure(measure)}), 0) AS total
            FROM {quote_identifier(self.fact_table)}
            WHERE {where_sql} AND {target} IS NOT NULL
            GROUP BY 1
            ORDER BY 2 DESC, 1
            LIMIT {int(limit)}
        """
        result = await self.fetch_all(query, params)
        return [(row[0], float(row[1] or 0.0)) for row in result]

    async def fetch_distinct(self, column: str, where: Tuple[str, List[Any]] = ("1=1", [])) -> List[str]:
        """Sorted distinct non-empty values of a dimension column."""
        where_sql, params = where
        target = self._column(column)
        query = (
            f"SELECT DISTINCT {target} FROM {quote_identifier(self.fact_table)} "
            f"WHERE {where_sql} AND {target} IS NOT NULL"
        )
        result = await self.fetch_all(query, params)
        return sorted({str(r[0]) for r in result if str(r[0]).strip()})

    async def fetch_region_rows(self) -> List[Tuple[Optional[str], Optional[str]]]:
        """Location/region pairs in table order."""
        query = f"SELECT location, region FROM {quote_identifier(self.region_table)} ORDER BY id"
        result = await self.fetch_all(query)
        return [(r[0], r[1]) for r in result]
