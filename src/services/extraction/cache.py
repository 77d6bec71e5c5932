"""Cache of completed extraction results, keyed by menu id."""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from typing import Any, Protocol
from uuid import UUID

from upstash_redis.asyncio import Redis

from core.config import get_settings
from core.upstash import get_redis_client


logger = logging.getLogger(__name__)


class ExtractionCache(Protocol):
    async def get(self, menu_id: UUID) -> dict[str, Any] | None: ...

    async def set(self, menu_id: UUID, result: dict[str, Any]) -> None: ...


class NullExtractionCache(ExtractionCache):
    """Cache used when Redis is not configured; never hits."""

    async def get(self, menu_id: UUID) -> dict[str, Any] | None:
        return None

    async def set(self, menu_id: UUID, result: dict[str, Any]) -> None:
        return None


class RedisExtractionCache(ExtractionCache):
    """Extraction results stored as JSON strings with a TTL.

    Cache failures are logged and treated as misses; a Redis outage must not
    fail an extraction that could otherwise run.
    """

    def __init__(self, redis: Redis, *, key_prefix: str, ttl_seconds: int) -> None:
        self._redis = redis
        self._key_prefix = key_prefix
        self._ttl_seconds = ttl_seconds

    def key_for(self, menu_id: UUID) -> str:
        return f"{self._key_prefix}{menu_id}"

    async def get(self, menu_id: UUID) -> dict[str, Any] | None:
        key = self.key_for(menu_id)
        try:
            raw = await self._redis.get(key)
        except Exception as e:
            logger.warning("Extraction cache read failed for %s: %s", key, e)
            return None
        if raw is None:
            return None
        try:
            cached = json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            logger.warning("Discarding unreadable cache entry %s", key)
            return None
        return cached if isinstance(cached, dict) else None

    async def set(self, menu_id: UUID, result: dict[str, Any]) -> None:
        key = self.key_for(menu_id)
        try:
            await self._redis.set(key, json.dumps(result), ex=self._ttl_seconds)
        except Exception as e:
            logger.warning("Extraction cache write failed for %s: %s", key, e)


@lru_cache
def get_extraction_cache() -> ExtractionCache:
    redis = get_redis_client()
    if redis is None:
        return NullExtractionCache()
    settings = get_settings()
    return RedisExtractionCache(
        redis,
        key_prefix=settings.EXTRACTION_CACHE_KEY_PREFIX,
        ttl_seconds=settings.EXTRACTION_CACHE_TTL_SECONDS,
    )
