import pytest

from safequery.core.engine.pagination import (
    add_pagination,
    build_count_sql,
    build_pagination_spec,
    clamp_pagination,
    rewrite,
)
from safequery.core.schemas import Dialect


def test_existing_limit_smaller_than_page_size_wins():
    spec = build_pagination_spec(page=1, page_size=50)
    rewritten = rewrite("SELECT * FROM orders LIMIT 5", spec.page_size, spec.offset)

    assert rewritten.effective_limit == 5
    assert rewritten.offset == 0
    assert rewritten.paginated_sql == "SELECT * FROM orders LIMIT 5 OFFSET 0"


def test_no_existing_limit_postgres_syntax():
    spec = build_pagination_spec(page=3, page_size=20)
    rewritten = rewrite("SELECT * FROM orders", spec.page_size, spec.offset)

    assert rewritten.paginated_sql == "SELECT * FROM orders LIMIT 20 OFFSET 40"
    assert rewritten.effective_limit == 20


def test_mysql_syntax_puts_offset_first():
    sql, limit = add_pagination("SELECT * FROM orders", 20, 40, Dialect.MYSQL)

    assert sql == "SELECT * FROM orders LIMIT 40, 20"
    assert limit == 20


def test_existing_limit_larger_than_page_size_is_replaced():
    sql, limit = add_pagination("SELECT * FROM orders LIMIT 500 OFFSET 10", 50, 100)

    assert limit == 50
    assert sql == "SELECT * FROM orders LIMIT 50 OFFSET 100"


def test_trailing_semicolons_are_stripped():
    sql, _ = add_pagination("SELECT id FROM users limit 3;;;", 10, 0)

    assert sql == "SELECT id FROM users LIMIT 3 OFFSET 0"


def test_limit_inside_subquery_is_not_detected():
    sql, limit = add_pagination(
        "SELECT * FROM (SELECT id FROM users LIMIT 5) AS u", 50, 0
    )

    assert limit == 50
    assert sql == "SELECT * FROM (SELECT id FROM users LIMIT 5) AS u LIMIT 50 OFFSET 0"


def test_count_sql_wraps_original_statement():
    assert build_count_sql("SELECT id FROM users LIMIT 10;") == (
        "SELECT COUNT(*) AS total_count FROM "
        "(SELECT id FROM users LIMIT 10) AS count_query"
    )


def test_rewrite_count_ignores_pagination():
    rewritten = rewrite("SELECT id FROM users", 25, 50)

    assert "OFFSET" not in rewritten.count_sql
    assert rewritten.count_sql.endswith("(SELECT id FROM users) AS count_query")


@pytest.mark.parametrize(
    "page, page_size, expected",
    [
        (1, 50, (1, 50)),
        (0, 20, (1, 20)),
        (-4, 20, (1, 20)),
        (2, 0, (2, 50)),
        (2, 101, (2, 50)),
        (2, 100, (2, 100)),
    ],
)
def test_clamp_pagination(page, page_size, expected):
    assert clamp_pagination(page, page_size) == expected


def test_pagination_spec_offset():
    assert build_pagination_spec(page=4, page_size=25).offset == 75
    assert build_pagination_spec(page=0, page_size=25).offset == 0
