from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from safequery.core.cache_store import RedisStore, get_redis
from safequery.core.database import Database, get_db

router = APIRouter(tags=["Health"])

db_dep = Annotated[Database, Depends(get_db)]
redis_dep = Annotated[RedisStore, Depends(get_redis)]


@router.get("/health")
async def health_check(db: db_dep, store: redis_dep):
    """Report database and cache connectivity; 503 if either is down."""
    db_connected = await db.test_connection()
    redis_connected = await store.ping()
    healthy = db_connected and redis_connected

    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "services": {
                "database": "connected" if db_connected else "disconnected",
                "redis": "connected" if redis_connected else "disconnected",
            },
        },
    )
