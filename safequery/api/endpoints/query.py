from fastapi import APIRouter

from safequery.api.deps import service_dep
from safequery.core import schemas

router = APIRouter(prefix="/api/v1", tags=["Query"])


@router.post("/execute-sql")
async def execute_sql(payload: schemas.QueryRequest, service: service_dep):
    """
    Validate, paginate and run a SELECT statement.
    With dryRun=true the statement is only explained, never executed.
    """
    result = await service.execute_query(
        payload.sql,
        page=payload.page,
        page_size=payload.page_size,
        use_cache=payload.use_cache,
        dry_run=payload.dry_run,
    )
    return {"success": True, "data": result}


@router.get("/stats")
async def get_stats(service: service_dep):
    """Execution statistics and cache health for this process."""
    cache_health = await service.cache.health_check()
    return {
        "success": True,
        "data": {
            "execution": service.get_execution_stats(),
            "cache": cache_health,
        },
    }
