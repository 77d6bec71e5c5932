"""Tests for rate limiting functionality.

Tests cover:
- Graceful degradation when Redis fails
- 429 response when rate limit exceeded
- Client identifier extraction from various sources
"""

from __future__ import annotations

import time
import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import HTTPException, Request

from core.ratelimit import _get_client_identifier, check_rate_limit, get_ratelimiter


class TestGetRatelimiter:
    def test_returns_none_without_redis(self) -> None:
        get_ratelimiter.cache_clear()
        with patch("core.ratelimit.get_redis_client", return_value=None):
            assert get_ratelimiter() is None
        get_ratelimiter.cache_clear()

    def test_builds_sliding_window_limiter(self) -> None:
        get_ratelimiter.cache_clear()
        redis = MagicMock()
        with (
            patch("core.ratelimit.get_redis_client", return_value=redis),
            patch("core.ratelimit.Ratelimit") as mock_ratelimit,
            patch("core.ratelimit.SlidingWindow") as mock_window,
        ):
            limiter = get_ratelimiter()

        assert limiter is mock_ratelimit.return_value
        mock_window.assert_called_once_with(max_requests=10, window=60)
        assert mock_ratelimit.call_args.kwargs["redis"] is redis
        assert mock_ratelimit.call_args.kwargs["prefix"] == "menustream:ratelimit"
        get_ratelimiter.cache_clear()


class TestCheckRateLimit:
    """Tests for the check_rate_limit dependency."""

    @pytest.mark.asyncio
    async def test_check_rate_limit_allows_request_on_redis_error(self) -> None:
        """Verify requests proceed when rate limiter raises exception.

        This tests graceful degradation - when Redis fails, requests should
        still be allowed through rather than blocking all traffic.
        """
        mock_request = MagicMock(spec=Request)
        mock_request.url.path = "/api/v1/menu/extract-stream"
        mock_request.headers.get.return_value = "192.168.1.1"
        mock_request.client.host = "192.168.1.1"

        mock_settings = MagicMock()
        mock_settings.RATE_LIMIT_REQUESTS = 10

        mock_ratelimiter = MagicMock()
        mock_ratelimiter.limit = AsyncMock(
            side_effect=Exception("Redis connection failed")
        )

        with patch("core.ratelimit.get_ratelimiter", return_value=mock_ratelimiter):
            # Should not raise - graceful degradation allows request through
            await check_rate_limit(mock_request, mock_settings)

            mock_ratelimiter.limit.assert_awaited_once_with("192.168.1.1")

    @pytest.mark.asyncio
    async def test_check_rate_limit_returns_429_when_exceeded(self) -> None:
        """Verify 429 response when rate limit exceeded."""
        mock_request = MagicMock(spec=Request)
        mock_request.url.path = "/api/v1/menu/extract-stream"
        mock_request.headers.get.return_value = None
        mock_request.client.host = "192.168.1.1"

        mock_settings = MagicMock()
        mock_settings.RATE_LIMIT_REQUESTS = 10

        mock_response = MagicMock()
        mock_response.allowed = False
        mock_response.remaining = 0
        mock_response.reset = time.time() + 30  # 30 seconds from now

        mock_ratelimiter = MagicMock()
        mock_ratelimiter.limit = AsyncMock(return_value=mock_response)

        with patch("core.ratelimit.get_ratelimiter", return_value=mock_ratelimiter):
            with pytest.raises(HTTPException) as exc_info:
                await check_rate_limit(mock_request, mock_settings)

            assert exc_info.value.status_code == 429
            assert exc_info.value.headers is not None
            assert 29 <= int(exc_info.value.headers["Retry-After"]) <= 30
            assert exc_info.value.headers["X-RateLimit-Limit"] == "10"
            assert exc_info.value.headers["X-RateLimit-Remaining"] == "0"

    @pytest.mark.asyncio
    async def test_check_rate_limit_allows_within_limit(self) -> None:
        mock_request = MagicMock(spec=Request)
        mock_request.url.path = "/api/v1/menu/extract-stream"
        mock_request.headers.get.return_value = "10.0.0.9"

        mock_response = MagicMock()
        mock_response.allowed = True

        mock_ratelimiter = MagicMock()
        mock_ratelimiter.limit = AsyncMock(return_value=mock_response)

        with patch("core.ratelimit.get_ratelimiter", return_value=mock_ratelimiter):
            await check_rate_limit(mock_request, MagicMock())

    @pytest.mark.asyncio
    async def test_check_rate_limit_bypasses_health_endpoints(self) -> None:
        """Verify health check endpoints bypass rate limiting."""
        mock_request = MagicMock(spec=Request)
        mock_request.url.path = "/api/v1/health"

        mock_settings = MagicMock()

        # Should not call get_ratelimiter for health endpoints
        with patch("core.ratelimit.get_ratelimiter") as mock_get_ratelimiter:
            await check_rate_limit(mock_request, mock_settings)
            mock_get_ratelimiter.assert_not_called()

    @pytest.mark.asyncio
    async def test_check_rate_limit_allows_when_not_configured(self) -> None:
        """Verify requests proceed when rate limiting is not configured."""
        mock_request = MagicMock(spec=Request)
        mock_request.url.path = "/api/v1/menu/extract-stream"

        mock_settings = MagicMock()

        # Rate limiter returns None (not configured)
        with patch("core.ratelimit.get_ratelimiter", return_value=None):
            # Should not raise - allows request through
            await check_rate_limit(mock_request, mock_settings)


class TestGetClientIdentifier:
    """Tests for client identifier extraction."""

    def test_get_client_identifier_uses_forwarded_for(self) -> None:
        """Verify X-Forwarded-For header is used when present."""
        mock_request = MagicMock(spec=Request)
        mock_request.headers.get.return_value = "10.0.0.1, 192.168.1.1"

        result = _get_client_identifier(mock_request)

        assert result == "10.0.0.1"  # First IP in chain

    def test_get_client_identifier_uses_forwarded_for_single_ip(self) -> None:
        """Verify single X-Forwarded-For IP is handled correctly."""
        mock_request = MagicMock(spec=Request)
        mock_request.headers.get.return_value = "10.0.0.1"

        result = _get_client_identifier(mock_request)

        assert result == "10.0.0.1"

    def test_get_client_identifier_uses_client_host(self) -> None:
        """Verify client.host is used when no X-Forwarded-For."""
        mock_request = MagicMock(spec=Request)
        mock_request.headers.get.return_value = None
        mock_request.client.host = "192.168.1.100"

        result = _get_client_identifier(mock_request)

        assert result == "192.168.1.100"

    def test_get_client_identifier_returns_uuid_when_no_client(self) -> None:
        """Verify UUID is generated when client is None."""
        mock_request = MagicMock(spec=Request)
        mock_request.headers.get.return_value = None
        mock_request.client = None  # No client info

        result = _get_client_identifier(mock_request)

        assert result.startswith("unknown:")
        # Verify it's a valid UUID format
        uuid_part = result.split(":")[1]
        uuid.UUID(uuid_part)  # Will raise if invalid

    def test_get_client_identifier_returns_uuid_when_no_host(self) -> None:
        """Verify UUID is generated when client.host is None."""
        mock_request = MagicMock(spec=Request)
        mock_request.headers.get.return_value = None
        mock_request.client = MagicMock()
        mock_request.client.host = None

        result = _get_client_identifier(mock_request)

        assert result.startswith("unknown:")
        # Verify it's a valid UUID format
        uuid_part = result.split(":")[1]
        uuid.UUID(uuid_part)  # Will raise if invalid

    def test_get_client_identifier_strips_whitespace(self) -> None:
        """Verify whitespace is stripped from X-Forwarded-For IPs."""
        mock_request = MagicMock(spec=Request)
        mock_request.headers.get.return_value = "  10.0.0.1  , 192.168.1.1"

        result = _get_client_identifier(mock_request)

        assert result == "10.0.0.1"  # Whitespace stripped
