import logging
import threading
from typing import Optional, Union

from pydantic import ValidationError

from safequery.core.config import settings
from safequery.core.errors import QueryEngineError, QueryExecutionError
from safequery.core.engine import pagination
from safequery.core.engine.cache import QueryCache, generate_cache_key
from safequery.core.engine.executor import QueryExecutor
from safequery.core.engine.explain import PlanAnalyzer
from safequery.core.engine.validator import SQLValidator
from safequery.core.schemas import Dialect, ExecutionStats, ExplainResult, QueryResult


# -----------------------------------------------------------------------------
# SERVICE MODULE - Orchestration
# Purpose: run one request through validate -> cache -> rewrite -> execute,
# or validate -> explain for dry runs.
# -----------------------------------------------------------------------------

logger = logging.getLogger(__name__)


class ExecutionStatsTracker:
    """Running totals for executed (non cached, non dry-run) queries."""

    def __init__(self):
        self._lock = threading.Lock()
        self.total_queries = 0
        self.failed_queries = 0
        self.total_execution_time_ms = 0

    def record_success(self, execution_time_ms: int):
        with self._lock:
            self.total_queries += 1
            self.total_execution_time_ms += execution_time_ms

    def record_failure(self):
        with self._lock:
            self.total_queries += 1
            self.failed_queries += 1

    def snapshot(self, cache_hit_rate: str) -> ExecutionStats:
        with self._lock:
            succeeded = self.total_queries - self.failed_queries
            average = self.total_execution_time_ms / succeeded if succeeded else 0.0
            error_rate = (
                f"{self.failed_queries / self.total_queries * 100:.2f}%"
                if self.total_queries
                else "0%"
            )
            return ExecutionStats(
                total_queries=self.total_queries,
                failed_queries=self.failed_queries,
                average_execution_time_ms=round(average, 2),
                error_rate=error_rate,
                cache_hit_rate=cache_hit_rate,
            )


class QueryService:
    def __init__(
        self,
        validator: SQLValidator,
        cache: QueryCache,
        executor: QueryExecutor,
        analyzer: PlanAnalyzer,
        dialect: Dialect = Dialect.POSTGRESQL,
        cache_ttl: int = 300,
        default_page_size: int = 50,
        max_page_size: int = 100,
        stats: Optional[ExecutionStatsTracker] = None,
    ):
        self.validator = validator
        self.cache = cache
        self.executor = executor
        self.analyzer = analyzer
        self.dialect = Dialect(dialect)
        self.cache_ttl = cache_ttl
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size
        self.stats = stats if stats is not None else ExecutionStatsTracker()

    async def _cached_result(self, cache_key: str) -> Optional[QueryResult]:
        cached = await self.cache.get(cache_key)
        if cached is None:
            return None

        try:
            result = QueryResult.model_validate(cached)
        except ValidationError as e:
            # Decodable JSON but not a result; drop it like any corrupt entry
            logger.warning(f"Discarding malformed cached result {cache_key}: {e}")
            await self.cache.delete(cache_key)
            return None

        return result.model_copy(update={"from_cache": True})

    async def execute_query(
        self,
        sql: str,
        page: int = 1,
        page_size: Optional[int] = None,
        use_cache: bool = True,
        dry_run: bool = False,
    ) -> Union[QueryResult, ExplainResult]:
        """
        Execute a caller-supplied SELECT with validation, caching and pagination.

        Args:
            sql: Raw statement text.
            page: 1-based page number, clamped to >= 1.
            page_size: Rows per page; out of range values fall back to the default.
            use_cache: Read and populate the result cache.
            dry_run: Explain the statement instead of running it. Never
                touches the cache.

        Returns:
            QueryResult, or ExplainResult for dry runs.

        Raises:
            QueryValidationError: the statement is not a safe SELECT.
            QueryExecutionError: the database failed the paginated statement.
        """
        if page_size is None:
            page_size = self.default_page_size

        try:
            self.validator.validate(sql)

            if dry_run:
                return await self.analyzer.explain(sql)

            spec = pagination.build_pagination_spec(
                page, page_size, self.default_page_size, self.max_page_size
            )
            cache_key = generate_cache_key(sql, spec.page, spec.page_size)

            if use_cache:
                cached = await self._cached_result(cache_key)
                if cached is not None:
                    logger.debug("Query result retrieved from cache")
                    return cached

            rewritten = pagination.rewrite(
                sql, spec.page_size, spec.offset, self.dialect
            )
            result = await self.executor.execute(rewritten, spec.page, spec.page_size)
            self.stats.record_success(result.metadata.execution_time_ms)

            if use_cache and result.rows:
                await self.cache.set(
                    cache_key,
                    result.model_dump(mode="json", by_alias=True),
                    self.cache_ttl,
                )

            logger.info(
                f"Query executed successfully: rows={result.metadata.row_count} "
                f"time={result.metadata.execution_time_ms}ms sql={sql[:100]}"
            )
            return result

        except QueryExecutionError as e:
            self.stats.record_failure()
            logger.error(f"Query execution error: {e.message} | sql={sql[:200]}")
            raise
        except QueryEngineError as e:
            logger.error(f"Query rejected: {e.message} | sql={sql[:200]}")
            raise
        except Exception as e:
            self.stats.record_failure()
            logger.error(f"Unexpected query error: {e} | sql={sql[:200]}")
            raise QueryExecutionError(f"Query execution failed: {e}", sql=sql) from e

    def get_execution_stats(self) -> ExecutionStats:
        return self.stats.snapshot(self.cache.stats().hit_rate)


def build_query_service(db, store) -> QueryService:
    """Wire a QueryService from the application settings."""
    dialect = Dialect(settings.DB_TYPE)
    cache = QueryCache(
        store,
        max_value_bytes=settings.CACHE_MAX_VALUE_BYTES,
        compress_large_values=settings.CACHE_COMPRESS_LARGE_VALUES,
    )
    return QueryService(
        validator=SQLValidator(max_query_length=settings.MAX_QUERY_LENGTH),
        cache=cache,
        executor=QueryExecutor(db),
        analyzer=PlanAnalyzer(db, dialect),
        dialect=dialect,
        cache_ttl=settings.QUERY_CACHE_TTL_SECONDS,
        default_page_size=settings.DEFAULT_PAGE_SIZE,
        max_page_size=settings.MAX_PAGE_SIZE,
    )
