import asyncio
import base64
import gzip
import hashlib
import json
import logging
import threading
import zlib
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from pydantic_core import PydanticSerializationError, to_json

from safequery.core.errors import CacheError
from safequery.core.schemas import CacheStats


# -----------------------------------------------------------------------------
# CACHE MODULE
# Purpose: cache-aside storage of query results on top of the key-value store.
# Every store failure is absorbed here; callers only ever see a miss or False.
# -----------------------------------------------------------------------------

logger = logging.getLogger(__name__)

QUERY_RESULT_PREFIX = "query:result:"
LLM_QUERY_PREFIX = "llm:query:"
COMPRESSED_MARKER = "gz:"
HEALTH_CHECK_KEY = "health:check"


def generate_cache_key(sql: str, page: int, page_size: int) -> str:
    """
    Derive the cache key for one page of one statement.

    The exact statement text is hashed, so statements that differ only in
    whitespace or case never share an entry.
    """
    query_hash = hashlib.md5(f"{sql}:{page}:{page_size}".encode("utf-8")).hexdigest()
    return f"{QUERY_RESULT_PREFIX}{query_hash}"


def _percentage(part: int, total: int) -> str:
    if total <= 0:
        return "0%"
    return f"{part / total * 100:.2f}%"


class CacheMetrics:
    """Hit/miss/error counters owned by a single QueryCache."""

    def __init__(self):
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0
        self.errors = 0
        self.total_requests = 0

    def record_request(self):
        with self._lock:
            self.total_requests += 1

    def record_hit(self):
        with self._lock:
            self.hits += 1

    def record_miss(self):
        with self._lock:
            self.misses += 1

    def record_error(self):
        with self._lock:
            self.errors += 1

    def snapshot(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self.hits,
                misses=self.misses,
                errors=self.errors,
                total_requests=self.total_requests,
                hit_rate=_percentage(self.hits, self.total_requests),
                error_rate=_percentage(self.errors, self.total_requests),
            )

    def reset(self):
        with self._lock:
            self.hits = 0
            self.misses = 0
            self.errors = 0
            self.total_requests = 0


class QueryCache:
    def __init__(
        self,
        store,
        metrics: Optional[CacheMetrics] = None,
        max_value_bytes: int = 1024 * 1024,
        compress_large_values: bool = False,
    ):
        """
        Args:
            store: Key-value store (RedisStore or any object with the same
                async get/set/mget/delete/keys/flush_all methods).
            metrics: Counter object to record into. A fresh one is created
                when omitted.
            max_value_bytes: Serialized size above which a value is either
                compressed or refused.
            compress_large_values: Compress oversized values instead of
                refusing them.
        """
        self.store = store
        self.metrics = metrics if metrics is not None else CacheMetrics()
        self.max_value_bytes = max_value_bytes
        self.compress_large_values = compress_large_values

    # =========================
    # Serialization
    # =========================
    def _serialize(self, value: Any, compress: bool) -> Optional[str]:
        serialized = to_json(value, by_alias=True).decode("utf-8")
        size = len(serialized.encode("utf-8"))

        if size <= self.max_value_bytes:
            return serialized

        if not compress:
            return None

        packed = gzip.compress(serialized.encode("utf-8"))
        return COMPRESSED_MARKER + base64.b64encode(packed).decode("ascii")

    @staticmethod
    def _deserialize(raw: str) -> Any:
        try:
            if raw.startswith(COMPRESSED_MARKER):
                packed = base64.b64decode(raw[len(COMPRESSED_MARKER):], validate=True)
                raw = gzip.decompress(packed).decode("utf-8")
            return json.loads(raw)
        except (ValueError, OSError, EOFError, zlib.error) as e:
            raise CacheError(f"Undecodable cached value: {e}") from e

    # =========================
    # Primitives
    # =========================
    async def get(self, key: str) -> Optional[Any]:
        """
        Look a key up, recording exactly one hit, miss or error.

        A value that cannot be decoded is deleted so it cannot be served again.

        Returns:
            The decoded value, or None on a miss or any failure.
        """
        self.metrics.record_request()

        try:
            raw = await self.store.get(key)
        except Exception as e:
            self.metrics.record_error()
            logger.error(f"Cache GET error for key {key}: {e}")
            return None

        if raw is None:
            self.metrics.record_miss()
            logger.debug(f"Cache MISS for key: {key}")
            return None

        try:
            value = self._deserialize(raw)
        except CacheError as e:
            self.metrics.record_error()
            logger.warning(f"Failed to parse cached value for key {key}: {e}")
            await self.delete(key)
            return None

        self.metrics.record_hit()
        logger.debug(f"Cache HIT for key: {key}")
        return value

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = 3600,
        compress: Optional[bool] = None,
    ) -> bool:
        """
        Store a value as JSON.

        Returns:
            True when stored. False when the value is too large (and
            compression is off), cannot be serialized, or the store fails.
        """
        if compress is None:
            compress = self.compress_large_values

        try:
            serialized = self._serialize(value, compress)
        except PydanticSerializationError as e:
            logger.error(f"Cache value for key {key} is not serializable: {e}")
            return False

        if serialized is None:
            logger.warning(
                f"Cache value too large for key {key} (limit {self.max_value_bytes} bytes)"
            )
            return False

        try:
            await self.store.set(key, serialized, ttl)
        except Exception as e:
            logger.error(f"Cache SET error for key {key}: {e}")
            return False

        logger.debug(
            f"Cache SET for key: {key}, TTL: {ttl}s, Size: {len(serialized)} bytes"
        )
        return True

    async def delete(self, key: str) -> bool:
        try:
            deleted = await self.store.delete(key)
        except Exception as e:
            logger.error(f"Cache DELETE error for key {key}: {e}")
            return False
        return bool(deleted)

    async def del_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern and return how many went."""
        try:
            keys = await self.store.keys(pattern)
            if keys:
                await self.store.delete(*keys)
                logger.info(f"Deleted {len(keys)} cache keys matching pattern: {pattern}")
            return len(keys)
        except Exception as e:
            logger.error(f"Cache delete pattern error for {pattern}: {e}")
            return 0

    async def flush(self) -> bool:
        try:
            return await self.store.flush_all()
        except Exception as e:
            logger.error(f"Cache flush error: {e}")
            return False

    async def get_or_set(
        self,
        key: str,
        supplier: Callable[[], Awaitable[Any]],
        ttl: Optional[int] = 3600,
    ) -> Any:
        """
        Return the cached value, or compute, store and return a fresh one.

        Two concurrent misses on the same key both run the supplier and the
        last write wins. Supplier errors propagate; None is never stored.
        """
        cached = await self.get(key)
        if cached is not None:
            return cached

        logger.debug(f"Cache miss for {key}, fetching fresh data")
        fresh = await supplier()

        if fresh is not None:
            await self.set(key, fresh, ttl)

        return fresh

    # =========================
    # Batch operations
    # =========================
    async def mget(self, keys: List[str]) -> List[Optional[Any]]:
        if not keys:
            return []

        try:
            raw_values = await self.store.mget(keys)
        except Exception as e:
            logger.error(f"Cache multi-get error: {e}")
            return [None for _ in keys]

        values = []
        for key, raw in zip(keys, raw_values):
            if raw is None:
                values.append(None)
                continue
            try:
                values.append(self._deserialize(raw))
            except CacheError as e:
                logger.error(f"Multi-get error for key {key}: {e}")
                values.append(None)
        return values

    async def mset(self, items: Dict[str, Any], ttl: Optional[int] = 3600) -> bool:
        results = [await self.set(key, value, ttl) for key, value in items.items()]
        logger.debug(f"Cache multi-set completed for {len(items)} keys")
        return all(results)

    async def warm(
        self,
        entries: List[Tuple[str, Callable[[], Awaitable[Any]], Optional[int]]],
    ) -> List[Dict[str, Any]]:
        """
        Preload entries concurrently.

        Args:
            entries: (key, supplier, ttl) triples.

        Returns:
            One {"key", "success"[, "error"]} report per entry, in input order.
        """
        logger.info("Starting cache warmup...")

        async def _warm_one(key, supplier, ttl):
            try:
                data = await supplier()
                stored = await self.set(key, data, ttl)
                return {"key": key, "success": stored}
            except Exception as e:
                logger.error(f"Cache warmup failed for {key}: {e}")
                return {"key": key, "success": False, "error": str(e)}

        reports = await asyncio.gather(
            *(_warm_one(key, supplier, ttl) for key, supplier, ttl in entries)
        )

        successful = sum(1 for report in reports if report["success"])
        logger.info(f"Cache warmup completed: {successful}/{len(reports)} successful")
        return list(reports)

    # =========================
    # Stats / health
    # =========================
    def stats(self) -> CacheStats:
        return self.metrics.snapshot()

    def reset_stats(self):
        self.metrics.reset()

    async def health_check(self) -> Dict[str, Any]:
        """Write, read back and delete a probe key."""
        timestamp = datetime.now(timezone.utc).isoformat()
        probe = {"timestamp": timestamp}

        try:
            written = await self.set(HEALTH_CHECK_KEY, probe, 60)
            retrieved = await self.get(HEALTH_CHECK_KEY)
            await self.store.delete(HEALTH_CHECK_KEY)

            healthy = written and retrieved == probe
            return {
                "healthy": healthy,
                "connected": await self.store.ping(),
                "stats": self.stats().model_dump(by_alias=True),
                "timestamp": timestamp,
            }
        except Exception as e:
            logger.error(f"Cache health check failed: {e}")
            return {
                "healthy": False,
                "connected": False,
                "error": str(e),
                "timestamp": timestamp,
            }
