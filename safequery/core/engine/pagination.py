import logging
import re
from dataclasses import dataclass
from typing import Tuple

from safequery.core.schemas import Dialect


# -----------------------------------------------------------------------------
# PAGINATION MODULE
# Purpose: bound a validated statement to a single page and build the
# companion COUNT statement over the full result set.
# Works on raw text: only a LIMIT clause at the very end of the statement is
# recognised, limits inside subqueries are left alone.
# -----------------------------------------------------------------------------

logger = logging.getLogger(__name__)

TRAILING_SEMICOLONS = re.compile(r";+$")
TRAILING_LIMIT = re.compile(r"\s+LIMIT\s+(\d+)(\s+OFFSET\s+\d+)?$", re.IGNORECASE)


@dataclass(frozen=True)
class PaginationSpec:
    page: int
    page_size: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


@dataclass(frozen=True)
class RewrittenQuery:
    paginated_sql: str
    count_sql: str
    effective_limit: int
    offset: int


def clamp_pagination(
    page: int, page_size: int, default_page_size: int = 50, max_page_size: int = 100
) -> Tuple[int, int]:
    """
    Force page and page size into their valid ranges.

    A page below 1 becomes 1. A page size outside [1, max_page_size] falls back
    to the default page size rather than the nearest bound.
    """
    if page < 1:
        page = 1
    if page_size < 1 or page_size > max_page_size:
        page_size = default_page_size
    return page, page_size


def build_pagination_spec(
    page: int, page_size: int, default_page_size: int = 50, max_page_size: int = 100
) -> PaginationSpec:
    page, page_size = clamp_pagination(page, page_size, default_page_size, max_page_size)
    return PaginationSpec(page=page, page_size=page_size)


def strip_trailing_semicolons(sql: str) -> str:
    return TRAILING_SEMICOLONS.sub("", sql.strip())


def build_count_sql(sql: str) -> str:
    """Wrap the un-paginated statement so the count covers every page."""
    clean_sql = strip_trailing_semicolons(sql)
    return f"SELECT COUNT(*) AS total_count FROM ({clean_sql}) AS count_query"


def add_pagination(
    sql: str, limit: int, offset: int, dialect: Dialect = Dialect.POSTGRESQL
) -> Tuple[str, int]:
    """
    Append a LIMIT/OFFSET clause in the dialect's syntax.

    Args:
        sql: Validated statement text.
        limit: Requested page size.
        offset: Row offset of the requested page.
        dialect: Which LIMIT syntax to emit.

    Returns:
        The paginated statement and the limit actually applied, which is the
        smaller of the requested limit and a trailing LIMIT already in the text.
    """
    clean_sql = strip_trailing_semicolons(sql)
    logger.debug(f"Clean SQL: {clean_sql}")

    final_limit = limit
    limit_match = TRAILING_LIMIT.search(clean_sql)
    if limit_match:
        existing_limit = int(limit_match.group(1))
        final_limit = min(existing_limit, limit)
        clean_sql = clean_sql[: limit_match.start()]
        logger.debug(f"Found existing LIMIT {existing_limit}, using {final_limit}")

    # Offset is always emitted, even for the first page
    if Dialect(dialect) == Dialect.MYSQL:
        final_sql = f"{clean_sql} LIMIT {offset}, {final_limit}"
    else:
        final_sql = f"{clean_sql} LIMIT {final_limit} OFFSET {offset}"

    logger.debug(f"Final SQL with pagination: {final_sql}")
    return final_sql, final_limit


def rewrite(
    sql: str, requested_limit: int, offset: int, dialect: Dialect = Dialect.POSTGRESQL
) -> RewrittenQuery:
    paginated_sql, effective_limit = add_pagination(
        sql, requested_limit, offset, dialect
    )
    return RewrittenQuery(
        paginated_sql=paginated_sql,
        count_sql=build_count_sql(sql),
        effective_limit=effective_limit,
        offset=offset,
    )
