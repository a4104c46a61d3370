import logging
import math
import time
from typing import Any, Dict, List

from safequery.core.errors import CountError, QueryExecutionError
from safequery.core.engine.pagination import RewrittenQuery
from safequery.core.schemas import (
    FieldInfo,
    PaginationInfo,
    QueryMetadata,
    QueryResult,
)


# -----------------------------------------------------------------------------
# EXECUTOR MODULE
# Purpose: run the paginated and count statements and assemble a QueryResult.
# Only a failure of the paginated statement fails the request; the count is
# best-effort.
# -----------------------------------------------------------------------------

logger = logging.getLogger(__name__)


def normalize_fields(fields: List[Dict[str, Any]]) -> List[FieldInfo]:
    """Reduce driver column descriptions to {name, type}."""
    normalized = []
    for column in fields or []:
        column_type = column.get("type")
        if column_type is None:
            column_type = column.get("dataTypeID")
        normalized.append(FieldInfo(name=str(column.get("name", "")), type=column_type))
    return normalized


def build_pagination_info(page: int, page_size: int, total_rows: int) -> PaginationInfo:
    total_pages = math.ceil(total_rows / page_size)
    return PaginationInfo(
        page=page,
        page_size=page_size,
        total_rows=total_rows,
        total_pages=total_pages,
        has_next_page=page < total_pages,
        has_previous_page=page > 1,
    )


class QueryExecutor:
    def __init__(self, db):
        self.db = db

    async def count_rows(self, count_sql: str) -> int:
        """
        Run the COUNT wrapper and return the total.

        Raises:
            CountError: when the statement fails or returns no usable count.
        """
        try:
            result = await self.db.query(count_sql)
            first = result.rows[0]
            total = first.get("total_count")
            if total is None:
                total = first.get("TOTAL_COUNT")
            return int(total or 0)
        except Exception as e:
            raise CountError(f"Could not get total count: {e}") from e

    async def execute(
        self, rewritten: RewrittenQuery, page: int, page_size: int
    ) -> QueryResult:
        """
        Execute one page of a rewritten statement.

        Args:
            rewritten: Output of the pagination rewriter.
            page: Clamped page number.
            page_size: Clamped page size.

        Returns:
            QueryResult with from_cache=False.

        Raises:
            QueryExecutionError: if the paginated statement fails.
        """
        start = time.perf_counter()
        try:
            result = await self.db.query(rewritten.paginated_sql)
        except Exception as e:
            raise QueryExecutionError(
                f"Query execution failed: {e}", sql=rewritten.paginated_sql
            ) from e
        execution_time_ms = int((time.perf_counter() - start) * 1000)

        try:
            total_rows = await self.count_rows(rewritten.count_sql)
        except CountError as e:
            logger.warning(f"{e}. Falling back to 0 total rows")
            total_rows = 0

        rows = list(result.rows)
        return QueryResult(
            rows=rows,
            pagination=build_pagination_info(page, page_size, total_rows),
            metadata=QueryMetadata(
                execution_time_ms=execution_time_ms,
                row_count=len(rows),
                fields=normalize_fields(result.fields),
            ),
            from_cache=False,
        )
