"""Application settings and CORS configuration."""

import json
import os
from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=(".env"), env_file_encoding="utf-8")

    # App
    APP_NAME: str = "MenuStream"
    ENVIRONMENT: str = "development"  # development | production | test

    # CORS
    # Accept list or CSV/JSON string from env; normalized to list[str] by validators
    CORS_ORIGINS: list[str] | str = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    ALLOW_CREDENTIALS: bool = True

    # AI / LLM provider configuration
    LLM_PROVIDER: str = "gemini"  # gemini | azure_openai
    GEMINI_API_KEY: str | None = None
    AZURE_OPENAI_ENDPOINT: str | None = None
    AZURE_OPENAI_API_KEY: str | None = None
    AZURE_OPENAI_API_VERSION: str | None = None
    EXTRACTION_MODEL: str = "gemini-2.5-flash"

    # Upstash Redis (rate limiting + extraction result cache)
    # REST URL and token for Upstash Redis; optional in development/test
    UPSTASH_REDIS_REST_URL: str | None = None
    UPSTASH_REDIS_REST_TOKEN: str | None = None

    # Rate limit settings (requests per window)
    RATE_LIMIT_REQUESTS: int = 10
    RATE_LIMIT_WINDOW_SECONDS: int = 60

    # Extraction caching
    EXTRACTION_CACHE_TTL_SECONDS: int = 86_400  # 24 hours
    EXTRACTION_CACHE_KEY_PREFIX: str = "extraction:"

    # Extraction timing
    EXTRACTION_TOTAL_TIMEOUT_SECONDS: float = 90.0
    PROGRESS_POLL_INTERVAL_MS: int = 500
    PROGRESS_WINDOW_MS: int = 3000
    TIMEOUT_WARNING_WINDOW_MS: int = 1000

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: object) -> list[str]:
        """Allow list, CSV string, or JSON array string for CORS origins."""
        if isinstance(v, list):
            return [str(i).strip() for i in v]
        if isinstance(v, str):
            s = v.strip()
            if not s:
                return []
            if s.startswith("["):
                try:
                    parsed = json.loads(s)
                except json.JSONDecodeError as e:
                    raise ValueError(
                        "CORS_ORIGINS must be a CSV list or JSON array string"
                    ) from e
                if not isinstance(parsed, list):
                    raise ValueError("CORS_ORIGINS JSON must be a list")
                return [str(i).strip() for i in parsed]
            # CSV fallback
            return [i.strip() for i in s.split(",") if i.strip()]
        raise ValueError("Invalid CORS_ORIGINS type; expected str or list[str]")

    @field_validator("LLM_PROVIDER")
    @classmethod
    def _validate_llm_provider(cls, v: str) -> str:
        value = v.strip().lower()
        if value not in {"gemini", "azure_openai"}:
            raise ValueError("LLM_PROVIDER must be 'gemini' or 'azure_openai'")
        return value

    @model_validator(mode="after")
    def _validate_cors_credentials(self) -> "Settings":
        """Ensure wildcard origins are not used when credentials are allowed."""
        # Normalize in case the union allows a stray string at runtime
        if isinstance(self.CORS_ORIGINS, str):
            self.CORS_ORIGINS = self.assemble_cors_origins(self.CORS_ORIGINS)
        if self.ALLOW_CREDENTIALS and any(
            o.strip() == "*" for o in (self.CORS_ORIGINS or [])
        ):
            raise ValueError(
                "CORS configuration error: ALLOW_CREDENTIALS=True but "
                "CORS_ORIGINS contains '*'. Use explicit origins when credentials "
                "are allowed."
            )
        return self

    @model_validator(mode="after")
    def _validate_progress_timing(self) -> "Settings":
        """Poll interval must be shorter than the windows it samples."""
        if self.PROGRESS_POLL_INTERVAL_MS <= 0:
            raise ValueError("PROGRESS_POLL_INTERVAL_MS must be positive")
        if self.PROGRESS_POLL_INTERVAL_MS >= min(
            self.PROGRESS_WINDOW_MS, self.TIMEOUT_WARNING_WINDOW_MS
        ):
            raise ValueError(
                "PROGRESS_POLL_INTERVAL_MS must be smaller than both "
                "PROGRESS_WINDOW_MS and TIMEOUT_WARNING_WINDOW_MS"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    env = os.getenv("ENVIRONMENT", "development").lower()
    if env not in {"development", "production", "test"}:
        raise ValueError("ENVIRONMENT must be 'development', 'production', or 'test'")

    if env == "production":
        env_file = ".env.prod"
    elif env == "development":
        env_file = ".env.dev"
    else:
        # test environment - no env file needed, use defaults
        env_file = ""

    # Production requires credentials for at least one LLM provider.
    if env == "production":
        if not (os.getenv("GEMINI_API_KEY") or os.getenv("AZURE_OPENAI_API_KEY")):
            raise RuntimeError(
                "GEMINI_API_KEY or AZURE_OPENAI_API_KEY must be set in production"
            )

    # The Settings initializer accepts a runtime-only `_env_file` kwarg used by
    # pydantic-settings; mypy's stub doesn't allow this call argument.
    return Settings(_env_file=env_file or None)  # type: ignore[call-arg]
