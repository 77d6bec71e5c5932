"""Model construction for the streaming menu extraction agent.

Supports Gemini (default) and Azure OpenAI, selected by ``LLM_PROVIDER``.
Both providers share an HTTP client that retries transient upstream errors.

Usage:
    from services.extraction.model_factory import get_extraction_model

    model = get_extraction_model(create_resilient_http_client())
"""

from __future__ import annotations

import logging
from typing import Any, cast

from httpx import AsyncClient, HTTPStatusError
from pydantic_ai.models import Model
from pydantic_ai.models.google import GoogleModel
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.google import GoogleProvider
from pydantic_ai.providers.openai import OpenAIProvider
from pydantic_ai.retries import AsyncTenacityTransport, RetryConfig, wait_retry_after
from tenacity import retry_if_exception_type, stop_after_attempt, wait_exponential

from core.config import get_settings


logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = (429, 502, 503, 504)
# Upstream retries: one initial attempt plus two retries
MAX_UPSTREAM_ATTEMPTS = 3


def create_resilient_http_client() -> AsyncClient:
    """Create an HTTP client with exponential backoff for transient errors.

    Retries rate limits (429) and gateway/overload errors, honouring any
    ``Retry-After`` header the provider sends.
    """

    def should_retry_status(response: Any) -> None:
        if response.status_code in RETRYABLE_STATUS_CODES:
            response.raise_for_status()

    transport = AsyncTenacityTransport(
        config=RetryConfig(
            retry=retry_if_exception_type(HTTPStatusError),
            wait=wait_retry_after(
                fallback_strategy=wait_exponential(multiplier=1, min=1, max=10),
                max_wait=30,
            ),
            stop=stop_after_attempt(MAX_UPSTREAM_ATTEMPTS),
            reraise=True,
        ),
        validate_response=should_retry_status,
    )
    return AsyncClient(transport=transport, timeout=120)


def _normalize_azure_endpoint(endpoint: str) -> str:
    # A trailing slash produces `//openai/...` paths which Azure answers with 404
    return endpoint.rstrip("/")


def _azure_configured() -> bool:
    settings = get_settings()
    if settings.LLM_PROVIDER != "azure_openai":
        return False
    if (
        not settings.AZURE_OPENAI_ENDPOINT
        or not settings.AZURE_OPENAI_API_KEY
        or not settings.AZURE_OPENAI_API_VERSION
    ):
        logger.warning(
            "LLM_PROVIDER=azure_openai but credentials missing, falling back to Gemini"
        )
        return False
    return True


def _create_azure_model(model_name: str, http_client: AsyncClient | None) -> Model:
    from openai import AsyncAzureOpenAI

    settings = get_settings()
    azure_client = AsyncAzureOpenAI(
        azure_endpoint=_normalize_azure_endpoint(settings.AZURE_OPENAI_ENDPOINT or ""),
        api_key=settings.AZURE_OPENAI_API_KEY,
        api_version=settings.AZURE_OPENAI_API_VERSION,
        http_client=http_client,
    )
    provider = OpenAIProvider(openai_client=azure_client)
    return OpenAIChatModel(model_name, provider=provider)


def _create_gemini_model(model_name: str, http_client: AsyncClient | None) -> Model:
    settings = get_settings()
    provider = GoogleProvider(api_key=settings.GEMINI_API_KEY, http_client=http_client)
    return cast(Model, GoogleModel(model_name, provider=provider))


def get_extraction_model(http_client: AsyncClient | None = None) -> Model:
    """Return the vision-capable model used for menu extraction.

    Raises:
        ValueError: when neither provider has credentials configured.
    """
    settings = get_settings()

    if _azure_configured():
        logger.info(f"Using Azure OpenAI extraction model: {settings.EXTRACTION_MODEL}")
        return _create_azure_model(settings.EXTRACTION_MODEL, http_client)

    if not settings.GEMINI_API_KEY:
        raise ValueError(
            "No valid LLM provider configured. Either set Azure OpenAI "
            "credentials (AZURE_OPENAI_ENDPOINT + AZURE_OPENAI_API_KEY) "
            "or Gemini credentials (GEMINI_API_KEY)."
        )

    logger.info(f"Using Gemini extraction model: {settings.EXTRACTION_MODEL}")
    return _create_gemini_model(settings.EXTRACTION_MODEL, http_client)
