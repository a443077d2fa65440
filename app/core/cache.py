"""
Cache-aside manager over a Redis-compatible key/value backend
"""

import json
import logging
import hashlib
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Tuple, Type, Union

from pydantic import BaseModel, ValidationError

from app.config import settings
from app.core.metrics import CACHE_REQUESTS
from app.core.redis import get_redis

logger = logging.getLogger(__name__)

CacheKey = Union[str, Dict[str, Any]]


class CacheBackend(Protocol):
    """
    Subset of the redis.asyncio client used by the cache layer
    """

    async def get(self, name: str) -> Optional[str]: ...

    async def set(self, name: str, value: str, ex: Optional[int] = None) -> Any: ...

    async def delete(self, *names: str) -> int: ...

    async def scan(
        self,
        cursor: int = 0,
        match: Optional[str] = None,
        count: Optional[int] = None
    ) -> Tuple[int, List[str]]: ...


class CacheManager:
    """
    Cache-aside wrapper with deterministic keys and pattern invalidation.

    Backend failures never reach the caller: reads degrade to a miss and
    writes/deletes are skipped, each with a log line.
    """

    def __init__(
        self,
        backend: Optional[CacheBackend] = None,
        prefix: Optional[str] = None,
        default_ttl: Optional[int] = None,
        scan_count: Optional[int] = None
    ):
        self.logger = logging.getLogger(__name__)
        self._backend = backend
        self.prefix = prefix if prefix is not None else settings.CACHE_KEY_PREFIX
        self.default_ttl = default_ttl or settings.CACHE_DEFAULT_TTL
        self.scan_count = scan_count or settings.CACHE_SCAN_COUNT

    async def _client(self) -> CacheBackend:
        if self._backend is None:
            return await get_redis()
        return self._backend

    def generate_cache_key(self, key: CacheKey) -> str:
        """
        Strings are namespaced verbatim; mappings are canonicalized and hashed.
        """
        if isinstance(key, str):
            return f"{self.prefix}{key}"

        # Sort parameters for consistent key generation
        param_str = json.dumps(key, sort_keys=True, default=str)
        param_hash = hashlib.sha256(param_str.encode()).hexdigest()[:16]

        creator_id = key.get("creator_id")
        if creator_id:
            return f"{self.prefix}creator:{creator_id}:{param_hash}"
        return f"{self.prefix}{param_hash}"

    def _resolve_pattern(self, pattern: str) -> str:
        if pattern.startswith(self.prefix):
            return pattern
        return f"{self.prefix}{pattern}"

    async def get(
        self,
        key: CacheKey,
        response_model: Optional[Type[BaseModel]] = None
    ) -> Optional[Any]:
        """
        Get cached value, or None on miss or backend failure
        """
        cache_key = self.generate_cache_key(key)
        try:
            client = await self._client()
            cached = await client.get(cache_key)
        except Exception as e:
            self.logger.error(f"Error retrieving cache for key {cache_key}: {e}")
            CACHE_REQUESTS.labels(operation="get", result="error").inc()
            return None

        if cached is None:
            self.logger.debug(f"Cache MISS {cache_key}")
            CACHE_REQUESTS.labels(operation="get", result="miss").inc()
            return None

        try:
            value = json.loads(cached)
            if response_model is not None:
                value = response_model.model_validate(value)
        except (json.JSONDecodeError, ValidationError) as e:
            self.logger.warning(f"Discarding corrupt cache entry {cache_key}: {e}")
            CACHE_REQUESTS.labels(operation="get", result="corrupt").inc()
            await self.delete(cache_key)
            return None

        self.logger.debug(f"Cache HIT {cache_key}")
        CACHE_REQUESTS.labels(operation="get", result="hit").inc()
        return value

    async def set(self, key: CacheKey, value: Any, ttl: Optional[int] = None) -> bool:
        """
        Store value with TTL; returns False when the backend is unavailable
        """
        cache_key = self.generate_cache_key(key)
        ttl = ttl or self.default_ttl
        try:
            if isinstance(value, BaseModel):
                payload = value.model_dump_json()
            else:
                payload = json.dumps(value, default=str)

            client = await self._client()
            await client.set(cache_key, payload, ex=ttl)
            self.logger.debug(f"Cache SET {cache_key} (TTL: {ttl}s)")
            CACHE_REQUESTS.labels(operation="set", result="ok").inc()
            return True

        except Exception as e:
            self.logger.error(f"Error setting cache for key {cache_key}: {e}")
            CACHE_REQUESTS.labels(operation="set", result="error").inc()
            return False

    async def delete(self, key: CacheKey) -> bool:
        """
        Delete a single key; backend failures are logged and skipped
        """
        cache_key = key if isinstance(key, str) and key.startswith(self.prefix) else self.generate_cache_key(key)
        try:
            client = await self._client()
            await client.delete(cache_key)
            self.logger.debug(f"Cache DELETE {cache_key}")
            return True
        except Exception as e:
            self.logger.error(f"Error deleting cache key {cache_key}: {e}")
            CACHE_REQUESTS.labels(operation="delete", result="error").inc()
            return False

    async def get_or_set(
        self,
        key: CacheKey,
        fetcher: Callable[[], Awaitable[Any]],
        ttl: Optional[int] = None,
        response_model: Optional[Type[BaseModel]] = None
    ) -> Any:
        """
        Return the cached value, or compute it with fetcher and store it.

        Errors raised by fetcher propagate; cache errors do not.
        """
        cached = await self.get(key, response_model=response_model)
        if cached is not None:
            return cached

        value = await fetcher()
        if value is not None:
            await self.set(key, value, ttl=ttl)
        return value

    async def invalidate_pattern(self, pattern: str) -> int:
        """
        Invalidate all cache keys matching pattern, paging with SCAN.
        Returns number of keys deleted.
        """
        match = self._resolve_pattern(pattern)
        deleted_count = 0
        try:
            client = await self._client()
            cursor = 0
            while True:
                cursor, keys = await client.scan(cursor=cursor, match=match, count=self.scan_count)
                if keys:
                    deleted_count += await client.delete(*keys)
                if int(cursor) == 0:
                    break

            self.logger.info(f"Invalidated {deleted_count} cache keys matching pattern: {match}")
            return deleted_count

        except Exception as e:
            self.logger.error(f"Error invalidating cache pattern {match}: {e}")
            return deleted_count

    async def invalidate_creator_cache(self, creator_id: str) -> int:
        """
        Invalidate every key containing the creator's id
        """
        return await self.invalidate_pattern(f"*{creator_id}*")

    async def invalidate_all(self) -> int:
        return await self.invalidate_pattern("*")


_cache_manager: Optional[CacheManager] = None


def get_cache_manager() -> CacheManager:
    """
    Process-wide cache manager bound to the lazily created Redis client
    """
    global _cache_manager
    if _cache_manager is None:
        _cache_manager = CacheManager()
    return _cache_manager
