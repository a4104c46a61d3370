import fnmatch
import json
import re
from datetime import datetime, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from safequery.api.deps import get_query_service
from safequery.core.cache_store import get_redis
from safequery.core.database import DatabaseResult, get_db
from safequery.core.engine.cache import QueryCache
from safequery.core.engine.executor import QueryExecutor
from safequery.core.engine.explain import PlanAnalyzer
from safequery.core.engine.service import QueryService
from safequery.core.engine.validator import SQLValidator
from safequery.core.schemas import Dialect
from safequery.main import app

PAGE_PATTERN = re.compile(r"LIMIT (\d+) OFFSET (\d+)$")
INNER_LIMIT_PATTERN = re.compile(r"LIMIT\s+(\d+)\) AS count_query$", re.IGNORECASE)

SEQ_SCAN_PLAN = [
    {
        "Plan": {
            "Node Type": "Seq Scan",
            "Relation Name": "users",
            "Startup Cost": 0.0,
            "Total Cost": 35.5,
            "Plan Rows": 2550,
        }
    }
]


class InMemoryStore:
    """Stands in for RedisStore; TTLs are recorded but never expire."""

    def __init__(self):
        self.data = {}
        self.ttls = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise ConnectionError("cache store unavailable")

    async def ping(self):
        return not self.fail

    async def get(self, key):
        self._check()
        return self.data.get(key)

    async def set(self, key, value, ttl=None):
        self._check()
        self.data[key] = value
        self.ttls[key] = ttl
        return True

    async def mget(self, keys):
        self._check()
        return [self.data.get(key) for key in keys]

    async def delete(self, *keys):
        self._check()
        count = 0
        for key in keys:
            if key in self.data:
                del self.data[key]
                self.ttls.pop(key, None)
                count += 1
        return count

    async def keys(self, pattern):
        self._check()
        return [key for key in self.data if fnmatch.fnmatch(key, pattern)]

    async def flush_all(self):
        self._check()
        self.data.clear()
        self.ttls.clear()
        return True


class FakeDatabase:
    """
    Answers paginated, COUNT and EXPLAIN statements from an in-memory table.

    Every statement is recorded in `statements` so tests can assert on the
    SQL that actually reached the database.
    """

    def __init__(self, rows=None, fields=None, plan=None):
        self.rows = rows if rows is not None else make_rows(12)
        self.fields = fields or [
            {"name": "id", "type": 23},
            {"name": "email", "type": 1043},
            {"name": "balance", "type": 1700},
            {"name": "created_at", "type": 1184},
        ]
        self.plan = plan if plan is not None else SEQ_SCAN_PLAN
        self.statements = []
        self.fail_query = False
        self.fail_count = False
        self.fail_explain = False

    async def query(self, statement, parameters=None):
        self.statements.append(statement)

        if statement.startswith("EXPLAIN"):
            if self.fail_explain:
                raise RuntimeError('syntax error at or near "FROM"')
            return DatabaseResult(
                rows=[{"QUERY PLAN": json.dumps(self.plan)}],
                fields=[{"name": "QUERY PLAN", "type": 114}],
            )

        if statement.startswith("SELECT COUNT(*) AS total_count"):
            if self.fail_count:
                raise RuntimeError("canceling statement due to statement timeout")
            total = len(self.rows)
            inner_limit = INNER_LIMIT_PATTERN.search(statement)
            if inner_limit:
                total = min(total, int(inner_limit.group(1)))
            return DatabaseResult(
                rows=[{"total_count": total}],
                fields=[{"name": "total_count", "type": 20}],
            )

        if self.fail_query:
            raise RuntimeError('relation "missing_table" does not exist')

        selected = self.rows
        page_match = PAGE_PATTERN.search(statement)
        if page_match:
            limit, offset = int(page_match.group(1)), int(page_match.group(2))
            selected = self.rows[offset : offset + limit]
        return DatabaseResult(rows=[dict(row) for row in selected], fields=self.fields)

    async def test_connection(self):
        return not self.fail_query


def make_rows(count):
    return [
        {
            "id": i,
            "email": f"user{i}@example.com",
            "balance": Decimal("10.50") * i,
            "created_at": datetime(2024, 1, i % 28 + 1, tzinfo=timezone.utc),
        }
        for i in range(1, count + 1)
    ]


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def query_cache(store):
    return QueryCache(store)


@pytest.fixture
def query_service(fake_db, query_cache):
    return QueryService(
        validator=SQLValidator(),
        cache=query_cache,
        executor=QueryExecutor(fake_db),
        analyzer=PlanAnalyzer(fake_db, Dialect.POSTGRESQL),
        dialect=Dialect.POSTGRESQL,
        cache_ttl=300,
    )


# Client
@pytest_asyncio.fixture(scope="function")
async def client(query_service, fake_db, store):
    async def override_get_db():
        return fake_db

    async def override_get_redis():
        return store

    app.dependency_overrides[get_query_service] = lambda: query_service
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
