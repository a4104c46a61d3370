from fastapi import APIRouter
from safequery.api.endpoints import query, cache, health

api_router = APIRouter()

# Combine all sub-routers into one
api_router.include_router(query.router)
api_router.include_router(cache.router)
api_router.include_router(health.router)
