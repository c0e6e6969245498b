"""
Row-store query interface (SQLAlchemy).

Accepts predicates from ``build_row_predicate`` plus grouping directives
and returns ``AggregateRow``s. Queries run on a worker thread with a
timeout so the event loop is never blocked.
"""
import asyncio
import os
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime
from typing import Any, Callable, List, Optional, Tuple, TypeVar

from sqlalchemy import Date, create_engine, event, func, select, true
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql.elements import ColumnElement

from watchtower.config import RowStoreConfig
from watchtower.exceptions import BackendQueryError, QueryTimeoutError, ValidationError
from watchtower.metrics import AggregateRow
from watchtower.models import LocationRegion, SalesFact
from watchtower.observability import Timer, get_logger
from watchtower.predicates import FACT_COLUMNS

logger = get_logger(__name__)

T = TypeVar("T")

BACKEND = "row_store"

GROUPABLE_COLUMNS = ("platform", "brand", "location", "category", "sku_name")
MEASURES = ("sales", "neno_osa", "deno_osa")


def _resolve_url(url: str) -> str:
    # Relative SQLite paths are resolved so a cwd change can't break them
    if url.startswith("sqlite:///") and not url.startswith("sqlite:////") and url != "sqlite:///:memory:":
        return "sqlite:///" + os.path.abspath(url[len("sqlite:///"):])
    return url


def _unicode_lower(value: Any) -> Any:
    return value.lower() if isinstance(value, str) else value


def install_unicode_lower(engine: Engine) -> Engine:
    """
    Replace SQLite's ASCII-only lower() on every new connection.

    The column store and FilterSet fold case with full Unicode rules; without
    this a filter on "ZÜRICH" would miss "Zürich" in SQLite only.
    """

    @event.listens_for(engine, "connect")
    def _register(dbapi_connection, connection_record):
        dbapi_connection.create_function("lower", 1, _unicode_lower, deterministic=True)

    return engine


def create_row_engine(url: str) -> Engine:
    """SQLAlchemy engine for the row store, tuned per backend."""
    if url in ("sqlite://", "sqlite:///:memory:"):
        return install_unicode_lower(create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        ))
    if url.startswith("sqlite"):
        return install_unicode_lower(create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 60},
            pool_pre_ping=True,
        ))
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=3,
        max_overflow=5,
        pool_recycle=300,
    )


def _to_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


class RowStore:
    """
    Async facade over a synchronous SQLAlchemy engine.

    Usage:
        store = RowStore("sqlite:///data/sales.db")
        await store.connect()
        rows = await store.fetch_aggregates(build_row_predicate(filters), group_by="platform")
        await store.close()
    """

    def __init__(
        self,
        url: str = "sqlite:///data/sales.db",
        query_timeout: float = 30.0,
        engine: Optional[Engine] = None,
        model=SalesFact,
        region_model=LocationRegion,
    ):
        self.url = url
        self.query_timeout = query_timeout
        self.model = model
        self.region_model = region_model
        self._engine = engine
        self._executor: Optional[ThreadPoolExecutor] = None
        self._lock = asyncio.Lock()
        self._total_queries = 0

    @classmethod
    def from_config(cls, row_config: RowStoreConfig) -> "RowStore":
        return cls(url=row_config.url, query_timeout=row_config.query_timeout)

    async def connect(self) -> None:
        """Create the engine (unless injected) and the worker pool."""
        async with self._lock:
            if self._engine is None:
                self._engine = create_row_engine(_resolve_url(self.url))
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="rowstore")
                logger.info(f"Row store connected: {self._engine.url.render_as_string(hide_password=True)}")

    async def close(self) -> None:
        async with self._lock:
            if self._executor:
                self._executor.shutdown(wait=True)
                self._executor = None
            if self._engine is not None:
                self._engine.dispose()
                logger.info("Row store closed")

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = create_row_engine(_resolve_url(self.url))
        return self._engine

    def get_connection_info(self) -> dict:
        return {
            "status": "active" if self._executor else "not_initialized",
            "total_queries": self._total_queries,
        }

    # ─── Query Execution with Timeout ────────────────────────────────────────

    async def _run(self, work: Callable[[], T], description: str, timeout: Optional[float] = None) -> T:
        """
        Run blocking query work on the pool with a timeout.

        Raises:
            QueryTimeoutError: If the query exceeds the timeout
            BackendQueryError: If SQLAlchemy reports an error
        """
        if self._executor is None:
            await self.connect()
        timeout = timeout or self.query_timeout
        self._total_queries += 1
        loop = asyncio.get_running_loop()
        try:
            with Timer(f"row_store:{description}", logger):
                return await asyncio.wait_for(loop.run_in_executor(self._executor, work), timeout=timeout)
        except asyncio.TimeoutError:
            raise QueryTimeoutError(description, timeout, backend=BACKEND)
        except SQLAlchemyError as e:
            raise BackendQueryError("Row store query failed", f"{description}: {e}", backend=BACKEND) from e

    def _execute(self, statement) -> list:
        with self.engine.connect() as conn:
            return conn.execute(statement).all()

    def _column(self, name: str):
        if name not in GROUPABLE_COLUMNS:
            raise ValidationError("group_by", f"must be one of {GROUPABLE_COLUMNS}", name)
        return getattr(self.model, name)

    def _measure(self, name: str):
        if name not in MEASURES:
            raise ValidationError("measure", f"must be one of {MEASURES}", name)
        return getattr(self.model, name)

    # ─── Aggregates ──────────────────────────────────────────────────────────

    async def fetch_aggregates(
        self,
        predicate: Optional[ColumnElement] = None,
        group_by: Optional[str] = None,
        measure: str = "sales",
    ) -> List[AggregateRow]:
        """
        Sum ``measure`` per group and day.

        Args:
            predicate: Clause from ``build_row_predicate`` (plus window bounds)
            group_by: Fact column to group on, or None for a single group
            measure: Fact column to sum

        Returns:
            One AggregateRow per (group, day) with data
        """
        day = func.date(getattr(self.model, FACT_COLUMNS["date"]), type_=Date).label("bucket")
        total = func.coalesce(func.sum(self._measure(measure)), 0).label("total")
        count = func.count().label("n")

        if group_by:
            group_column = self._column(group_by).label("group_key")
            statement = select(group_column, day, total, count).group_by(group_column, day)
        else:
            statement = select(day, total, count).group_by(day)
        statement = statement.where(predicate if predicate is not None else true())

        result = await self._run(lambda: self._execute(statement), f"aggregate {measure} by {group_by or 'day'}")

        rows = []
        for record in result:
            key = record.group_key if group_by else ""
            rows.append(AggregateRow(
                group_key=key or "",
                period_bucket=_to_date(record.bucket),
                sum_metric=float(record.total or 0.0),
                count=int(record.n or 0),
            ))
        return rows

    async def fetch_total(self, predicate: Optional[ColumnElement] = None, measure: str = "sales") -> float:
        """Sum of ``measure`` over matching rows, 0 when none match."""
        statement = select(func.coalesce(func.sum(self._measure(measure)), 0)).where(
            predicate if predicate is not None else true()
        )
        result = await self._run(lambda: self._execute(statement), f"total {measure}")
        return float(result[0][0] or 0.0) if result else 0.0

    async def fetch_distinct(self, column: str, predicate: Optional[ColumnElement] = None) -> List[str]:
        """Sorted distinct non-empty values of a dimension column."""
        target = self._column(column)
        statement = (
            select(target)
            .where(target.is_not(None), predicate if predicate is not None else true())
            .distinct()
        )
        result = await self._run(lambda: self._execute(statement), f"distinct {column}")
        return sorted({str(r[0]) for r in result if r[0] is not None and str(r[0]).strip()})

    async def fetch_region_rows(self) -> List[Tuple[Optional[str], Optional[str]]]:
        """Location/region pairs in table order."""
        statement = select(self.region_model.location, self.region_model.region).order_by(self.region_model.id)
        result = await self._run(lambda: self._execute(statement), "region lookup")
        return [(r[0], r[1]) for r in result]
