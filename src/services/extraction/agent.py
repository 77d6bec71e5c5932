"""Streaming extraction agent and the source protocol the stream service uses."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from functools import lru_cache
from typing import Any, Protocol

from pydantic_ai import Agent
from pydantic_ai.messages import ImageUrl

from services.extraction.model_factory import (
    create_resilient_http_client,
    get_extraction_model,
)


logger = logging.getLogger(__name__)


MENU_STREAM_SYSTEM_PROMPT = """
You are a restaurant menu digitization assistant. You read a photo of a menu
and report what you find, line by line, as you find it.

OUTPUT FORMAT - every line MUST start with exactly one of these prefixes:
THINKING: <short note about what you are looking at>
SECTION: <section name>|<confidence 0-100>
ITEM: <dish name>|<price as a plain number>|<description or empty>|<confidence 0-100>
PROGRESS: <estimated percent complete 0-100>
COMPLETE: <single-line JSON object with the full menu>
ERROR: <reason the menu cannot be read>

RULES:
- Emit a SECTION line before the items that belong to it, in reading order.
- Prices are numbers only: no currency symbols, no ranges. Use 0 when unclear.
- Never use the "|" character inside names or descriptions.
- Keep every line on a single line; the COMPLETE JSON must not contain newlines.
- The COMPLETE object has the shape:
  {"sections": [{"name": str, "confidence": int, "items": [{"name": str,
  "price": number, "description": str, "confidence": int}]}],
  "detectedLanguage": str, "detectedCurrency": str}
- Emit COMPLETE exactly once, as the last line.
- If the image is not a menu or is unreadable, emit a single ERROR line.
"""

DEFAULT_USER_PROMPT = "Extract every section and dish from this menu image."


class ExtractionStreamSource(Protocol):
    """Produces raw protocol text for one menu image, chunk by chunk."""

    def stream_chunks(
        self, image_url: str, prompt_override: str | None = None
    ) -> AsyncIterator[str]:
        """Yield text chunks; chunk boundaries carry no meaning."""
        ...


@lru_cache
def create_menu_stream_agent() -> Agent[None, str]:
    """Create and cache the streaming menu extraction agent."""
    model = get_extraction_model(create_resilient_http_client())
    return Agent(
        model,
        output_type=str,
        system_prompt=MENU_STREAM_SYSTEM_PROMPT,
        name="menu-stream-extractor",
    )


class MenuStreamAgentAdapter(ExtractionStreamSource):
    """Adapter streaming text deltas from the pydantic-ai extraction agent."""

    def __init__(self, agent: Any | None = None) -> None:
        # Lazy creation keeps model credentials optional until first use
        self._agent = agent

    async def stream_chunks(
        self, image_url: str, prompt_override: str | None = None
    ) -> AsyncIterator[str]:
        if self._agent is None:
            self._agent = create_menu_stream_agent()

        prompt = prompt_override or DEFAULT_USER_PROMPT
        logger.debug("Starting menu stream for image %s", image_url)
        async with self._agent.run_stream([prompt, ImageUrl(url=image_url)]) as result:
            async for delta in result.stream_text(delta=True):
                if delta:
                    yield delta
