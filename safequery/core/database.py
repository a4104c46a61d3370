import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from safequery.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class DatabaseResult:
    """Rows as plain dicts plus the driver-reported column description."""

    rows: List[Dict[str, Any]] = field(default_factory=list)
    fields: List[Dict[str, Any]] = field(default_factory=list)


def _type_code(type_code: Any) -> Any:
    # asyncpg reports type OIDs, aiomysql reports FIELD_TYPE ints
    if type_code is None or isinstance(type_code, (int, str)):
        return type_code
    return getattr(type_code, "__name__", None) or str(type_code)


class Database:
    """
    Read-only access to the configured relational database.

    Statements are executed on a short-lived connection taken from the
    engine's pool; nothing is ever committed.
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    async def query(
        self, statement: str, parameters: Optional[Dict[str, Any]] = None
    ) -> DatabaseResult:
        start = time.perf_counter()
        try:
            async with self.engine.connect() as conn:
                if parameters:
                    result = await conn.execute(text(statement), parameters)
                else:
                    # No parameters reach the driver, so ':' and '%' in user
                    # SQL stay literal for format-paramstyle drivers too
                    conn = await conn.execution_options(no_parameters=True)
                    result = await conn.exec_driver_sql(statement)

                if not result.returns_rows:
                    return DatabaseResult()

                description = getattr(result.cursor, "description", None) or []
                rows = [dict(row._mapping) for row in result.fetchall()]

            fields = [
                {"name": column[0], "type": _type_code(column[1])}
                for column in description
            ]
            return DatabaseResult(rows=rows, fields=fields)

        except Exception as e:
            logger.error(f"Database query error: {e} | query={statement[:200]}")
            raise
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.debug(f"Query executed in {duration_ms:.1f}ms")

    async def test_connection(self) -> bool:
        try:
            await self.query("SELECT 1 AS test")
            logger.info("Database connection test successful")
            return True
        except Exception as e:
            logger.error(f"Database connection test failed: {e}")
            return False

    async def close(self):
        await self.engine.dispose()
        logger.info("Database pool closed")


def build_engine(url: str = settings.DATABASE_URL) -> AsyncEngine:
    return create_async_engine(
        url,
        echo=settings.DB_ECHO,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_pre_ping=True,
    )


engine = build_engine()

# The "Bridge" that gives the routes and services access to the database
database = Database(engine)


async def get_db() -> Database:
    return database
