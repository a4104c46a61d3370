from datetime import datetime, timezone

from fastapi import APIRouter

from safequery.api.deps import service_dep
from safequery.core import schemas
from safequery.core.engine.cache import LLM_QUERY_PREFIX, QUERY_RESULT_PREFIX

router = APIRouter(prefix="/api/v1/cache", tags=["Cache"])


@router.get("/stats")
async def cache_stats(service: service_dep):
    """Hit/miss counters plus a live write/read probe of the store."""
    # Snapshot first so the probe below is not counted in the statistics
    statistics = service.cache.stats()
    health = await service.cache.health_check()
    return {
        "success": True,
        "data": {
            "statistics": statistics,
            "health": health,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    }


@router.post("/invalidate", response_model=schemas.CacheInvalidateResponse)
async def invalidate_cache(
    payload: schemas.CacheInvalidateRequest, service: service_dep
):
    """
    Delete cached entries.

    A pattern and the "queries"/"llm" key families add up; deletedCount is
    their sum. "all" flushes the whole store only when no pattern is given.
    """
    cache = service.cache
    invalidation_type = payload.type
    deleted_count = 0

    if payload.pattern:
        deleted_count += await cache.del_pattern(payload.pattern)

    if invalidation_type == schemas.InvalidationType.QUERIES:
        deleted_count += await cache.del_pattern(f"{QUERY_RESULT_PREFIX}*")
    elif invalidation_type == schemas.InvalidationType.LLM:
        deleted_count += await cache.del_pattern(f"{LLM_QUERY_PREFIX}*")
    elif not payload.pattern:
        await cache.flush()
        deleted_count = "all"

    return schemas.CacheInvalidateResponse(
        message=f"Cache invalidated: {invalidation_type.value}",
        deleted_count=deleted_count,
    )
