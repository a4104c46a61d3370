import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from safequery.api.router import api_router
from safequery.core.cache_store import redis_store
from safequery.core.config import settings
from safequery.core.database import database
from safequery.core.errors import QueryEngineError

logging.basicConfig(level=settings.LOG_LEVEL.upper())
logger = logging.getLogger(__name__)


# Close the pool and the cache client once the app shuts down
@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Query engine starting (dialect={settings.DB_TYPE})")
    yield
    await database.close()
    await redis_store.close()


app = FastAPI(title="Safe SQL Query API", lifespan=lifespan)


# Validation and execution failures share the caller-facing error envelope
@app.exception_handler(QueryEngineError)
async def query_engine_error_handler(request: Request, exc: QueryEngineError):
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": "Failed to execute SQL query",
            "message": exc.message,
        },
    )


# Include the master router containing all our endpoints
app.include_router(api_router)


@app.get("/")
async def root():
    return {"message": "Welcome to the Safe SQL Query API"}
