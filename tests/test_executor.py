import pytest

from safequery.core.engine.executor import QueryExecutor, normalize_fields
from safequery.core.engine.pagination import rewrite
from safequery.core.errors import QueryExecutionError


@pytest.mark.asyncio
async def test_execute_builds_pagination_metadata(fake_db):
    executor = QueryExecutor(fake_db)
    rewritten = rewrite("SELECT * FROM users", 5, 5)

    result = await executor.execute(rewritten, page=2, page_size=5)

    assert [row["id"] for row in result.rows] == [6, 7, 8, 9, 10]
    assert result.pagination.total_rows == 12
    assert result.pagination.total_pages == 3
    assert result.pagination.has_next_page is True
    assert result.pagination.has_previous_page is True
    assert result.metadata.row_count == 5
    assert result.metadata.execution_time_ms >= 0
    assert result.from_cache is False
    assert fake_db.statements == [rewritten.paginated_sql, rewritten.count_sql]


@pytest.mark.asyncio
async def test_last_page_has_no_next_page(fake_db):
    executor = QueryExecutor(fake_db)

    result = await executor.execute(rewrite("SELECT * FROM users", 5, 10), 3, 5)

    assert result.metadata.row_count == 2
    assert result.pagination.has_next_page is False


@pytest.mark.asyncio
async def test_count_failure_falls_back_to_zero(fake_db):
    fake_db.fail_count = True
    executor = QueryExecutor(fake_db)

    result = await executor.execute(rewrite("SELECT * FROM users", 5, 0), 1, 5)

    assert result.metadata.row_count == 5
    assert result.pagination.total_rows == 0
    assert result.pagination.total_pages == 0
    assert result.pagination.has_next_page is False


@pytest.mark.asyncio
async def test_paginated_query_failure_raises_execution_error(fake_db):
    fake_db.fail_query = True
    executor = QueryExecutor(fake_db)
    rewritten = rewrite("SELECT * FROM missing_table", 5, 0)

    with pytest.raises(QueryExecutionError) as exc:
        await executor.execute(rewritten, 1, 5)

    assert str(exc.value).startswith("Query execution failed:")
    assert "missing_table" in str(exc.value)
    assert exc.value.sql == rewritten.paginated_sql


@pytest.mark.asyncio
async def test_uppercase_count_column_is_accepted(fake_db):
    class UpperCaseCountDb(type(fake_db)):
        async def query(self, statement, parameters=None):
            result = await super().query(statement, parameters)
            if statement.startswith("SELECT COUNT(*)"):
                result.rows = [{"TOTAL_COUNT": result.rows[0]["total_count"]}]
            return result

    executor = QueryExecutor(UpperCaseCountDb())

    result = await executor.execute(rewrite("SELECT * FROM users", 5, 0), 1, 5)

    assert result.pagination.total_rows == 12


def test_normalize_fields():
    fields = normalize_fields(
        [
            {"name": "id", "type": 23},
            {"name": "email", "dataTypeID": 1043},
            {"name": "note"},
        ]
    )

    assert [(f.name, f.type) for f in fields] == [
        ("id", 23),
        ("email", 1043),
        ("note", None),
    ]
