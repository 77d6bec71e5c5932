"""Shared Upstash Redis client.

Rate limiting and the extraction cache talk to the same Upstash database.
Returns None when Upstash is not configured so development and test
environments run without Redis.
"""

from __future__ import annotations

import logging
from functools import lru_cache

from upstash_redis.asyncio import Redis

from core.config import get_settings


logger = logging.getLogger(__name__)


@lru_cache
def get_redis_client() -> Redis | None:
    settings = get_settings()

    if not settings.UPSTASH_REDIS_REST_URL or not settings.UPSTASH_REDIS_REST_TOKEN:
        logger.warning(
            "Upstash Redis not configured. Rate limiting and extraction caching "
            "are disabled. Set UPSTASH_REDIS_REST_URL and UPSTASH_REDIS_REST_TOKEN "
            "to enable."
        )
        return None

    return Redis(
        url=settings.UPSTASH_REDIS_REST_URL,
        token=settings.UPSTASH_REDIS_REST_TOKEN,
    )
