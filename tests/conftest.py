"""
Pytest configuration and shared fixtures.

The same fact rows are loaded into an in-memory SQLite row store and an
in-memory DuckDB column store so both backends can be checked against
each other.
"""
import fnmatch
from datetime import date, datetime
from typing import Any, Dict, List

import pytest
import pytest_asyncio
from sqlalchemy.orm import Session

from watchtower.cache import RedisCache
from watchtower.column_store import ColumnStore
from watchtower.models import LocationRegion, SalesFact, create_all
from watchtower.orchestrator import CacheOrchestrator
from watchtower.row_store import RowStore, create_row_engine

AS_OF = date(2025, 10, 6)

FACT_FIELDS = (
    "id", "sales_date", "platform", "brand", "location", "category",
    "sku_name", "comp_flag", "sales", "neno_osa", "deno_osa",
)

SALES_ROWS: List[Dict[str, Any]] = [
    # Zepto / Aer, current window (2025-10-01 .. 2025-10-06)
    {"id": 1, "sales_date": datetime(2025, 10, 1, 9, 0), "platform": "Zepto", "brand": "Aer Pocket",
     "location": "Mumbai", "category": "Air Care", "sku_name": "Aer Pocket 10g", "comp_flag": 0,
     "sales": 100.0, "neno_osa": 8.0, "deno_osa": 10.0},
    {"id": 2, "sales_date": datetime(2025, 10, 3, 14, 0), "platform": "Zepto", "brand": "AER Matic",
     "location": "Delhi", "category": "Air Care", "sku_name": "Aer Matic Refill", "comp_flag": 0,
     "sales": 150.0, "neno_osa": 8.0, "deno_osa": 10.0},
    {"id": 3, "sales_date": datetime(2025, 10, 6, 23, 30), "platform": "Zepto", "brand": "aer",
     "location": "Pune ", "category": "Air Care", "sku_name": "Aer Pocket 10g", "comp_flag": 0,
     "sales": 200.0, "neno_osa": 5.0, "deno_osa": 10.0},
    # Outside the window by one day
    {"id": 4, "sales_date": datetime(2025, 10, 7, 0, 0), "platform": "Zepto", "brand": "Aer Pocket",
     "location": "Mumbai", "category": "Air Care", "sku_name": "Aer Pocket 10g", "comp_flag": 0,
     "sales": 999.0, "neno_osa": 0.0, "deno_osa": 10.0},
    # Other platform / other brand / no brand
    {"id": 5, "sales_date": datetime(2025, 10, 2, 10, 0), "platform": "Blinkit", "brand": "Aer Pocket",
     "location": "Mumbai", "category": "Air Care", "sku_name": "Aer Pocket 10g", "comp_flag": 0,
     "sales": 50.0, "neno_osa": 9.0, "deno_osa": 10.0},
    {"id": 6, "sales_date": datetime(2025, 10, 2, 10, 0), "platform": "Zepto", "brand": "Godrej",
     "location": "Mumbai", "category": "Home Care", "sku_name": "Godrej Ezee", "comp_flag": 0,
     "sales": 70.0, "neno_osa": 7.0, "deno_osa": 10.0},
    {"id": 7, "sales_date": datetime(2025, 10, 2, 11, 0), "platform": "Zepto", "brand": None,
     "location": "Mumbai", "category": "Air Care", "sku_name": "Unbranded", "comp_flag": 0,
     "sales": 10.0, "neno_osa": 1.0, "deno_osa": 10.0},
    # Competitor row
    {"id": 8, "sales_date": datetime(2025, 10, 4, 12, 0), "platform": "Zepto", "brand": "Aer Rival",
     "location": "Mumbai", "category": "Air Care", "sku_name": "Rival Spray", "comp_flag": 1,
     "sales": 500.0, "neno_osa": 6.0, "deno_osa": 10.0},
    # Comparison window (September)
    {"id": 9, "sales_date": datetime(2025, 9, 10, 8, 0), "platform": "Zepto", "brand": "Aer Pocket",
     "location": "Mumbai", "category": "Air Care", "sku_name": "Aer Pocket 10g", "comp_flag": 0,
     "sales": 120.0, "neno_osa": 8.0, "deno_osa": 10.0},
    {"id": 10, "sales_date": datetime(2025, 9, 12, 8, 0), "platform": "Zepto", "brand": "AER Matic",
     "location": "Delhi", "category": "Air Care", "sku_name": "Aer Matic Refill", "comp_flag": 0,
     "sales": 180.0, "neno_osa": 8.0, "deno_osa": 10.0},
    # Last year
    {"id": 11, "sales_date": datetime(2024, 10, 3, 8, 0), "platform": "Zepto", "brand": "Aer Pocket",
     "location": "Mumbai", "category": "Air Care", "sku_name": "Aer Pocket 10g", "comp_flag": 0,
     "sales": 80.0, "neno_osa": 8.0, "deno_osa": 10.0},
    # Quotes and LIKE wildcards in values
    {"id": 12, "sales_date": datetime(2025, 2, 10, 8, 0), "platform": "Instamart", "brand": "O'Reilly Fresh",
     "location": "Bengaluru", "category": "Home Care", "sku_name": "Fresh Mist", "comp_flag": 0,
     "sales": 40.0, "neno_osa": 4.0, "deno_osa": 10.0},
    {"id": 13, "sales_date": datetime(2025, 10, 2, 8, 0), "platform": "Instamart", "brand": "Aer_Max",
     "location": "Bengaluru", "category": "Air Care", "sku_name": "Aer Max", "comp_flag": 0,
     "sales": 25.0, "neno_osa": 2.0, "deno_osa": 10.0},
    # Location missing from the region table
    {"id": 14, "sales_date": datetime(2025, 10, 5, 8, 0), "platform": "Blinkit", "brand": "Aer Pocket",
     "location": "Atlantis", "category": "Air Care", "sku_name": "Aer Pocket 10g", "comp_flag": 0,
     "sales": 30.0, "neno_osa": 3.0, "deno_osa": 10.0},
    {"id": 15, "sales_date": datetime(2025, 10, 5, 9, 0), "platform": "Blinkit", "brand": "Aer Pocket",
     "location": None, "category": None, "sku_name": None, "comp_flag": 0,
     "sales": 5.0, "neno_osa": 0.0, "deno_osa": 0.0},
]

REGION_ROWS = [
    {"id": 1, "location": "Mumbai", "region": "West"},
    {"id": 2, "location": "delhi", "region": "North"},
    {"id": 3, "location": " PUNE", "region": "West"},
    {"id": 4, "location": "mumbai ", "region": "South"},  # duplicate, first row wins
    {"id": 5, "location": "Bengaluru", "region": "South"},
]


class FakeRedis:
    """In-memory stand-in for the redis.asyncio client used by RedisCache."""

    def __init__(self):
        self.data: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}

    async def ping(self):
        return True

    async def get(self, key):
        return self.data.get(key)

    async def setex(self, key, ttl, value):
        self.data[key] = value
        self.ttls[key] = ttl
        return True

    async def delete(self, *keys):
        return sum(1 for key in keys if self.data.pop(key, None) is not None)

    async def scan(self, cursor=0, match=None, count=None):
        return 0, [key for key in self.data if fnmatch.fnmatchcase(key, match or "*")]

    async def dbsize(self):
        return len(self.data)

    async def aclose(self):
        return None


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def memory_cache(fake_redis) -> RedisCache:
    """A connected RedisCache backed by FakeRedis."""
    cache = RedisCache()
    cache._client = fake_redis
    cache._connected = True
    return cache


@pytest.fixture
def orchestrator(memory_cache) -> CacheOrchestrator:
    return CacheOrchestrator(memory_cache)


@pytest.fixture
def uncached_orchestrator() -> CacheOrchestrator:
    """Orchestrator whose cache is disabled: every call computes."""
    return CacheOrchestrator(RedisCache(enabled=False))


def make_sqlite_engine(rows=SALES_ROWS, regions=REGION_ROWS):
    engine = create_row_engine("sqlite://")
    create_all(engine)
    with Session(engine) as session:
        session.add_all(SalesFact(**row) for row in rows)
        session.add_all(LocationRegion(**row) for row in regions)
        session.commit()
    return engine


@pytest.fixture
def sqlite_engine():
    engine = make_sqlite_engine()
    yield engine
    engine.dispose()


@pytest_asyncio.fixture
async def row_store(sqlite_engine):
    store = RowStore(engine=sqlite_engine)
    await store.connect()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def empty_row_store():
    store = RowStore(engine=make_sqlite_engine(rows=[], regions=[]))
    await store.connect()
    yield store
    await store.close()


async def load_column_store(store: ColumnStore, rows=SALES_ROWS, regions=REGION_ROWS) -> None:
    await store.ensure_schema()
    if rows:
        placeholders = ", ".join("?" for _ in FACT_FIELDS)
        await store.executemany(
            f'INSERT INTO "{store.fact_table}" ({", ".join(FACT_FIELDS)}) VALUES ({placeholders})',
            [tuple(row[f] for f in FACT_FIELDS) for row in rows],
        )
    if regions:
        await store.executemany(
            f'INSERT INTO "{store.region_table}" (id, location, region) VALUES (?, ?, ?)',
            [(r["id"], r["location"], r["region"]) for r in regions],
        )


@pytest_asyncio.fixture
async def column_store():
    store = ColumnStore(path=":memory:")
    await store.connect()
    await load_column_store(store)
    yield store
    await store.close()


@pytest.fixture
def as_of() -> date:
    return AS_OF


@pytest.fixture
def sqlite_engine_factory():
    """Build SQLite row-store engines loaded with custom rows."""
    engines = []

    def build(rows, regions=()):
        engine = make_sqlite_engine(rows=rows, regions=regions)
        engines.append(engine)
        return engine

    yield build
    for engine in engines:
        engine.dispose()


@pytest_asyncio.fixture
async def column_store_factory():
    """Build in-memory column stores loaded with custom rows."""
    stores = []

    async def build(rows, regions=()):
        store = ColumnStore(path=":memory:")
        await store.connect()
        stores.append(store)
        await load_column_store(store, rows=rows, regions=regions)
        return store

    yield build
    for store in stores:
        await store.close()
