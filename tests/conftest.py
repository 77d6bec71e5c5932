"""Shared test fixtures for pytest.

ENVIRONMENT is pinned to ``test`` before anything imports settings so no
``.env`` file is read and no Upstash or model credentials are needed.
"""

import asyncio
import os
from collections.abc import AsyncGenerator, AsyncIterator, Generator
from typing import Any
from uuid import UUID

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient


os.environ["ENVIRONMENT"] = "test"

from core.config import get_settings
from core.ratelimit import check_rate_limit
from main import app
from services.extraction.orchestrator import (
    ExtractionStreamService,
    get_extraction_stream_service,
)


class FakeStreamSource:
    """Replays canned chunks in place of the extraction model."""

    def __init__(
        self,
        chunks: list[str],
        *,
        error: Exception | None = None,
        hang: bool = False,
    ) -> None:
        self.chunks = chunks
        self.error = error
        self.hang = hang
        self.calls: list[tuple[str, str | None]] = []

    async def stream_chunks(
        self, image_url: str, prompt_override: str | None = None
    ) -> AsyncIterator[str]:
        self.calls.append((image_url, prompt_override))
        for chunk in self.chunks:
            yield chunk
            await asyncio.sleep(0)
        if self.error is not None:
            raise self.error
        if self.hang:
            await asyncio.Event().wait()


class InMemoryExtractionCache:
    def __init__(self, initial: dict[UUID, dict[str, Any]] | None = None) -> None:
        self.store: dict[UUID, dict[str, Any]] = dict(initial or {})
        self.get_calls = 0

    async def get(self, menu_id: UUID) -> dict[str, Any] | None:
        self.get_calls += 1
        return self.store.get(menu_id)

    async def set(self, menu_id: UUID, result: dict[str, Any]) -> None:
        self.store[menu_id] = result


SAMPLE_STREAM = (
    "THINKING: Looking at the menu layout\n"
    "SECTION: Starters|92\n"
    "ITEM: Garlic Bread|4.50|Toasted with herb butter|88\n"
    "ITEM: Soup of the Day|6|  |75\n"
    "PROGRESS: 40\n"
    "SECTION: Mains|90\n"
    "ITEM: Margherita|11.00|Tomato, mozzarella, basil|95\n"
    'COMPLETE: {"sections": [{"name": "Starters"}, {"name": "Mains"}]}\n'
)


@pytest.fixture(autouse=True)
def _reset_settings_cache() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def sample_chunks() -> list[str]:
    """SAMPLE_STREAM cut into awkward chunks that split lines mid-field."""
    return [SAMPLE_STREAM[i : i + 7] for i in range(0, len(SAMPLE_STREAM), 7)]


@pytest.fixture
def cache() -> InMemoryExtractionCache:
    return InMemoryExtractionCache()


@pytest.fixture
def make_service(cache: InMemoryExtractionCache):
    def _make(source: Any, **kwargs: Any) -> ExtractionStreamService:
        # Long poll interval keeps timer narration out of fast tests
        kwargs.setdefault("poll_interval_ms", 60_000)
        return ExtractionStreamService(source, cache, **kwargs)

    return _make


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    """
    Create a test client for the FastAPI application.
    """
    with TestClient(app) as client:
        yield client


async def _no_rate_limit() -> None:
    return None


@pytest_asyncio.fixture
async def async_client(
    make_service, sample_chunks: list[str]
) -> AsyncGenerator[AsyncClient, None]:
    """Async client whose extraction service replays SAMPLE_STREAM."""
    service = make_service(FakeStreamSource(sample_chunks))
    app.dependency_overrides[get_extraction_stream_service] = lambda: service
    app.dependency_overrides[check_rate_limit] = _no_rate_limit
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
    app.dependency_overrides.pop(get_extraction_stream_service, None)
    app.dependency_overrides.pop(check_rate_limit, None)
