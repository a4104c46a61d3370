from typing import Optional, List, Dict, Any, Union
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# Every payload is camelCase on the wire and snake_case in Python
class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ResultModel(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )


# =========================
# Enums
# =========================
class Dialect(str, Enum):
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"


class InvalidationType(str, Enum):
    ALL = "all"
    QUERIES = "queries"
    LLM = "llm"


# =========================
# QUERY REQUEST
# =========================
class QueryRequest(CamelModel):
    sql: str = Field(min_length=1)
    # Out of range values are clamped by the service, not rejected here
    page: int = 1
    page_size: Optional[int] = None
    use_cache: bool = True
    dry_run: bool = False


# =========================
# QUERY RESULT
# =========================
class FieldInfo(ResultModel):
    name: str
    type: Optional[Union[int, str]] = None


class PaginationInfo(ResultModel):
    page: int
    page_size: int
    total_rows: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool


class QueryMetadata(ResultModel):
    execution_time_ms: int
    row_count: int
    fields: List[FieldInfo] = []


class QueryResult(ResultModel):
    rows: List[Dict[str, Any]]
    pagination: PaginationInfo
    metadata: QueryMetadata
    from_cache: bool = False


# =========================
# DRY RUN
# =========================
class EstimatedCost(ResultModel):
    startup_cost: Optional[float] = None
    total_cost: Optional[float] = None
    estimated_rows: Optional[float] = None


class ExplainResult(ResultModel):
    explain_plan: Optional[Any] = None
    is_valid: bool
    estimated_cost: Optional[EstimatedCost] = None
    warnings: List[str] = []
    error: Optional[str] = None


# =========================
# CACHE
# =========================
class CacheStats(CamelModel):
    hits: int
    misses: int
    errors: int
    total_requests: int
    hit_rate: str
    error_rate: str


class CacheInvalidateRequest(CamelModel):
    type: InvalidationType = InvalidationType.ALL
    pattern: Optional[str] = None


class CacheInvalidateResponse(CamelModel):
    success: bool = True
    message: str
    deleted_count: Union[int, str]


# =========================
# SERVICE STATS / HEALTH
# =========================
class ExecutionStats(CamelModel):
    total_queries: int
    failed_queries: int
    average_execution_time_ms: float
    error_rate: str
    cache_hit_rate: str
