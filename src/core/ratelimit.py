"""Rate limiting using Upstash Redis.

Provides distributed rate limiting for API endpoints using Upstash's
serverless Redis service. Falls back to allowing requests if Upstash
is not configured (development/test environments).
"""

from __future__ import annotations

import logging
import math
import time
import uuid
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from upstash_ratelimit.asyncio import Ratelimit, SlidingWindow

from core.config import Settings, get_settings
from core.upstash import get_redis_client


logger = logging.getLogger(__name__)

RATE_LIMIT_PREFIX = "menustream:ratelimit"

# Paths that bypass rate limiting (health checks, etc.)
RATE_LIMIT_BYPASS_PATHS: set[str] = {
    "/api/v1/health",
    "/api/v1/health/",
    "/health",
    "/health/",
}


@lru_cache
def get_ratelimiter() -> Ratelimit | None:
    """Create and cache the rate limiter instance.

    Returns None if Upstash is not configured.
    """
    redis = get_redis_client()
    if redis is None:
        return None

    settings = get_settings()
    try:
        ratelimit = Ratelimit(
            redis=redis,
            limiter=SlidingWindow(
                max_requests=settings.RATE_LIMIT_REQUESTS,
                window=settings.RATE_LIMIT_WINDOW_SECONDS,
            ),
            prefix=RATE_LIMIT_PREFIX,
        )
    except Exception as e:
        logger.error("Failed to initialize rate limiter: %s", e)
        return None

    logger.info(
        "Rate limiting enabled: %d requests per %d seconds",
        settings.RATE_LIMIT_REQUESTS,
        settings.RATE_LIMIT_WINDOW_SECONDS,
    )
    return ratelimit


def _get_client_identifier(request: Request) -> str:
    """Extract client identifier from request for rate limiting.

    Uses X-Forwarded-For header if present (for reverse proxy setups),
    otherwise falls back to the direct client IP.
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # First IP in the chain is the original client
        return forwarded_for.split(",")[0].strip()

    if request.client and request.client.host:
        return request.client.host

    # Unidentifiable clients must not share a bucket
    return f"unknown:{uuid.uuid4()}"


async def check_rate_limit(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
) -> None:
    """FastAPI dependency to enforce rate limits on endpoints.

    Raises HTTPException with 429 status if rate limit is exceeded.
    Bypasses rate limiting for health check endpoints and when
    Upstash is not configured.

    Usage:
        @router.post("/extract-stream", dependencies=[Depends(check_rate_limit)])
        async def extract_stream(...): ...
    """
    path = request.url.path
    if path in RATE_LIMIT_BYPASS_PATHS:
        return

    ratelimiter = get_ratelimiter()
    if ratelimiter is None:
        return

    identifier = _get_client_identifier(request)

    try:
        response = await ratelimiter.limit(identifier)
    except Exception as e:
        # Redis outages must not block traffic
        logger.error("Rate limit check failed: %s", e)
        return

    if not response.allowed:
        # `reset` is a unix timestamp in seconds
        retry_after = max(1, math.ceil(response.reset - time.time()))
        logger.warning(
            "Rate limit exceeded for %s on %s. Reset in %d seconds.",
            identifier,
            path,
            retry_after,
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests. Please try again later.",
            headers={
                "Retry-After": str(retry_after),
                "X-RateLimit-Limit": str(settings.RATE_LIMIT_REQUESTS),
                "X-RateLimit-Remaining": str(response.remaining),
            },
        )
