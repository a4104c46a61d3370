from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from safequery.core.cache_store import redis_store
from safequery.core.database import database
from safequery.core.engine.service import QueryService, build_query_service


# One service per process so cache metrics and execution stats accumulate
@lru_cache(maxsize=1)
def get_query_service() -> QueryService:
    return build_query_service(database, redis_store)


service_dep = Annotated[QueryService, Depends(get_query_service)]
