from typing import Optional


# =========================
# Query engine errors
# =========================
class QueryEngineError(Exception):
    """Base class for every error raised by the query engine."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class QueryValidationError(QueryEngineError):
    """The statement broke one of the validator's safety rules."""


class QueryExecutionError(QueryEngineError):
    """The database rejected or failed the paginated statement."""

    def __init__(self, message: str, sql: Optional[str] = None):
        super().__init__(message)
        # Keep only a prefix of the statement for logs and error context
        self.sql = sql[:200] if sql else None


# Recovered locally, never shown to callers
class CacheError(QueryEngineError):
    """Cache store failure or an undecodable cached value."""


class CountError(QueryEngineError):
    """The total-row count sub-query failed."""


class ExplainError(QueryEngineError):
    """The dry-run EXPLAIN statement could not be built or executed."""
