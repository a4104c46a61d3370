import json
import logging
from typing import Any, Dict, List, Optional, Union

from safequery.core.errors import ExplainError
from safequery.core.schemas import Dialect, EstimatedCost, ExplainResult

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# EXPLAIN MODULE
# Purpose: dry-run support. Ask the database for a JSON plan without executing,
# pull the cost estimate out of it and flag expensive shapes.
# -----------------------------------------------------------------------------

VALIDATION_FAILED_WARNING = "Query validation failed"

FULL_SCAN_WARNING = "Query performs full table scan - consider adding indexes"
NESTED_LOOP_WARNING = (
    "Query uses nested loops on large datasets - performance may be slow"
)
DISK_SORT_WARNING = "Query requires disk-based sorting - consider optimizing"


def build_explain_sql(sql: str, dialect: Union[Dialect, str]) -> str:
    """
    Get the EXPLAIN statement asking for JSON output in the given dialect.

    Raises:
        ExplainError: for dialects without a JSON EXPLAIN form.
    """
    name = str(getattr(dialect, "value", dialect)).lower()
    if name == Dialect.POSTGRESQL.value:
        return f"EXPLAIN (FORMAT JSON, ANALYZE false) {sql}"
    if name == Dialect.MYSQL.value:
        return f"EXPLAIN FORMAT=JSON {sql}"
    raise ExplainError(f"Explain not supported for database type: {name}")


def _decode(value: Any) -> Any:
    # Drivers hand JSON plan columns back as text
    if isinstance(value, (str, bytes)):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


def decode_plan_rows(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [{column: _decode(value) for column, value in row.items()} for row in rows]


def unwrap_plan(plan_rows: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """
    Find the top-level plan document in decoded EXPLAIN rows.

    PostgreSQL returns one "QUERY PLAN" column holding a one-element list;
    MySQL returns one "EXPLAIN" column holding an object.
    """
    if not plan_rows:
        return None

    plan: Any = plan_rows[0]
    if isinstance(plan, dict) and "Plan" not in plan and "query_block" not in plan:
        plan = next(iter(plan.values()), None)
    if isinstance(plan, list):
        plan = plan[0] if plan else None
    return plan if isinstance(plan, dict) else None


def _to_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def extract_cost(plan_rows: List[Dict[str, Any]]) -> EstimatedCost:
    """Pull startup cost, total cost and row estimate out of a plan."""
    plan = unwrap_plan(plan_rows)

    if plan is not None and isinstance(plan.get("Plan"), dict):
        node = plan["Plan"]
        return EstimatedCost(
            startup_cost=_to_float(node.get("Startup Cost")),
            total_cost=_to_float(node.get("Total Cost")),
            estimated_rows=_to_float(node.get("Plan Rows")),
        )

    if plan is not None and isinstance(plan.get("query_block"), dict):
        block = plan["query_block"]
        cost_info = block.get("cost_info") or {}
        table = block.get("table") or {}
        rows = table.get("rows_produced_per_join", table.get("rows_examined_per_scan"))
        return EstimatedCost(
            total_cost=_to_float(cost_info.get("query_cost")) or 0,
            estimated_rows=_to_float(rows) or 0,
        )

    return EstimatedCost(estimated_rows=0, total_cost=0)


def analyze_plan(plan_rows: Any) -> List[str]:
    """
    Heuristic warnings from substrings of the serialized plan.

    May both over- and under-report; it never inspects plan structure.
    """
    warnings = []
    plan_text = json.dumps(plan_rows, default=str).lower()

    if "seq scan" in plan_text or "table scan" in plan_text:
        warnings.append(FULL_SCAN_WARNING)

    if "nested loop" in plan_text and "large" in plan_text:
        warnings.append(NESTED_LOOP_WARNING)

    if "sort" in plan_text and "disk" in plan_text:
        warnings.append(DISK_SORT_WARNING)

    return warnings


class PlanAnalyzer:
    def __init__(self, db, dialect: Union[Dialect, str] = Dialect.POSTGRESQL):
        self.db = db
        self.dialect = dialect

    async def explain(self, sql: str) -> ExplainResult:
        """
        Ask the database how it would run a validated statement.

        Never raises: any failure, including the database rejecting the
        statement, comes back as is_valid=False with a generic warning.
        """
        try:
            explain_sql = build_explain_sql(sql, self.dialect)
            result = await self.db.query(explain_sql)
            plan_rows = decode_plan_rows(result.rows)
        except Exception as e:
            logger.warning(f"Dry run failed: {e} | sql={sql[:200]}")
            return ExplainResult(
                explain_plan=None,
                is_valid=False,
                error=str(e),
                warnings=[VALIDATION_FAILED_WARNING],
            )

        return ExplainResult(
            explain_plan=plan_rows,
            is_valid=True,
            estimated_cost=extract_cost(plan_rows),
            warnings=analyze_plan(plan_rows),
        )
