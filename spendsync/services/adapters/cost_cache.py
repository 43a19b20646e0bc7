"""
Cost Data Caching

TTL cache for normalized provider results, keyed by account + date range:
1. Redis backend for production (shared across API and scheduler workers)
2. In-memory backend for development and tests
3. Account-scoped invalidation on credential changes or disconnection

A cache hit skips the provider call entirely. Resolved credentials are never
cached, only the drafts produced with them.
"""

import hashlib
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Optional

import redis.asyncio as aioredis
import structlog
from pydantic import ValidationError as PydanticValidationError
from redis.exceptions import RedisError

from spendsync.core.config import get_settings
from spendsync.core.metrics import COST_CACHE_TOTAL
from spendsync.schemas.costs import CostSnapshotDraft

logger = structlog.get_logger()


class CacheBackend(ABC):
    """Abstract base class for cache backends."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass

    @abstractmethod
    async def delete_pattern(self, pattern: str) -> int:
        """Delete keys matching a trailing-* pattern. Returns count deleted."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        pass


class InMemoryCache(CacheBackend):
    """
    Process-local cache for development/testing.

    Note: Not suitable for multi-instance deployments.
    """

    def __init__(self):
        self._store: Dict[str, tuple[str, Optional[datetime]]] = {}

    async def get(self, key: str) -> Optional[str]:
        if key not in self._store:
            return None

        value, expires_at = self._store[key]
        if expires_at and datetime.now(timezone.utc) >= expires_at:
            del self._store[key]
            return None

        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)
        self._store[key] = (value, expires_at)

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)

    async def delete_pattern(self, pattern: str) -> int:
        prefix = pattern.rstrip("*")
        to_delete = [k for k in self._store if k.startswith(prefix)]
        for k in to_delete:
            del self._store[k]
        return len(to_delete)

    async def health_check(self) -> bool:
        return True


class RedisCache(CacheBackend):
    """
    Redis-backed cache. Connection failures degrade to cache misses so a Redis
    outage slows syncs down instead of failing them.
    """

    def __init__(self, redis_url: str):
        self.redis_url = redis_url
        self._client = None

    async def _get_client(self):
        if self._client is None:
            try:
                self._client = aioredis.from_url(
                    self.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_timeout=5
                )
                logger.info("redis_connected", url=self.redis_url.split("@")[-1])
            except (RedisError, ValueError) as e:
                logger.error("redis_connection_failed", error=str(e))
                return None
        return self._client

    async def get(self, key: str) -> Optional[str]:
        client = await self._get_client()
        if client is None:
            return None
        try:
            return await client.get(key)
        except RedisError as e:
            logger.warning("redis_get_failed", key=key, error=str(e))
            return None

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        client = await self._get_client()
        if client is None:
            return
        try:
            await client.setex(key, ttl_seconds, value)
        except RedisError as e:
            logger.warning("redis_set_failed", key=key, error=str(e))

    async def delete(self, key: str) -> None:
        client = await self._get_client()
        if client is None:
            return
        try:
            await client.delete(key)
        except RedisError as e:
            logger.warning("redis_delete_failed", key=key, error=str(e))

    async def delete_pattern(self, pattern: str) -> int:
        client = await self._get_client()
        if client is None:
            return 0
        try:
            cursor = 0
            deleted = 0
            while True:
                cursor, keys = await client.scan(cursor, match=pattern, count=100)
                if keys:
                    await client.delete(*keys)
                    deleted += len(keys)
                if cursor == 0:
                    break
            return deleted
        except RedisError as e:
            logger.warning("redis_delete_pattern_failed", pattern=pattern, error=str(e))
            return 0

    async def health_check(self) -> bool:
        client = await self._get_client()
        if client is None:
            return False
        try:
            await client.ping()
            return True
        except RedisError:
            return False


class CostCache:
    """
    High-level caching API for provider cost drafts.

    Usage:
        cache = get_cost_cache()
        draft = None if force else await cache.get_cost_draft(account_id, start, end)
        if draft is None:
            draft = await adapter.fetch_cost_data(creds, start, end)
            await cache.set_cost_draft(account_id, start, end, draft)
    """

    PREFIX = "spendsync:costs"

    def __init__(self, backend: CacheBackend, ttl_seconds: Optional[int] = None):
        self.backend = backend
        self.ttl_seconds = ttl_seconds or get_settings().SYNC_CACHE_TTL_SECONDS

    def _generate_key(self, account_id, start_date: date, end_date: date) -> str:
        """Account id stays readable so invalidation can match on it."""
        range_hash = hashlib.sha256(f"{start_date.isoformat()}:{end_date.isoformat()}".encode()).hexdigest()[:16]
        return f"{self.PREFIX}:{account_id}:{range_hash}"

    async def get_cost_draft(self, account_id, start_date: date, end_date: date) -> Optional[CostSnapshotDraft]:
        key = self._generate_key(account_id, start_date, end_date)
        cached = await self.backend.get(key)
        if not cached:
            COST_CACHE_TOTAL.labels(result="miss").inc()
            logger.debug("cache_miss", type="cost_draft", account_id=str(account_id))
            return None

        try:
            draft = CostSnapshotDraft.model_validate_json(cached)
        except PydanticValidationError:
            # Entry written by an older schema; treat as a miss
            await self.backend.delete(key)
            COST_CACHE_TOTAL.labels(result="miss").inc()
            logger.warning("cache_entry_invalid", account_id=str(account_id))
            return None

        COST_CACHE_TOTAL.labels(result="hit").inc()
        logger.debug("cache_hit", type="cost_draft", account_id=str(account_id))
        return draft

    async def set_cost_draft(self, account_id, start_date: date, end_date: date, draft: CostSnapshotDraft) -> None:
        key = self._generate_key(account_id, start_date, end_date)
        await self.backend.set(key, draft.model_dump_json(), self.ttl_seconds)
        logger.debug("cache_set", type="cost_draft", account_id=str(account_id), daily_points=len(draft.daily))

    async def invalidate_account(self, account_id) -> int:
        """
        Drop every cached range for an account.

        Use on:
        - credential or role changes
        - account disconnection
        """
        deleted = await self.backend.delete_pattern(f"{self.PREFIX}:{account_id}:*")
        logger.info("cache_invalidated", account_id=str(account_id), keys_deleted=deleted)
        return deleted

    async def health_check(self) -> bool:
        return await self.backend.health_check()


_cost_cache: Optional[CostCache] = None


def get_cost_cache() -> CostCache:
    """Process-wide CostCache; Redis when REDIS_URL is set, memory otherwise."""
    global _cost_cache
    if _cost_cache is None:
        settings = get_settings()
        if settings.REDIS_URL:
            backend = RedisCache(settings.REDIS_URL)
            logger.info("cost_cache_initialized", backend="redis")
        else:
            backend = InMemoryCache()
            logger.info("cost_cache_initialized", backend="memory")
        _cost_cache = CostCache(backend)
    return _cost_cache
