"""Observability configuration for Azure Monitor and OpenTelemetry.

Call configure_observability() at the very start of application
initialization (before importing FastAPI) so HTTP requests and outbound LLM
calls are instrumented.

PII and Sensitive Data Guidance:
--------------------------------
- NEVER put raw menu text, signed image URLs or upstream API keys in span
  attributes
- Use correlation IDs and menu/restaurant UUIDs to link traces
- Prefer the StructuredLogger (core/error_handler.py), which redacts
  sensitive keys from structured fields
- Counts (sections, items, chunks) and durations are safe attributes

Set ENABLE_OBSERVABILITY=false locally if traces are not needed.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache

from opentelemetry import trace


logger = logging.getLogger(__name__)

_ENV_ENABLE_OBSERVABILITY = "ENABLE_OBSERVABILITY"
_ENV_APP_INSIGHTS_CONN_STRING = "APPLICATIONINSIGHTS_CONNECTION_STRING"
_ENV_OTEL_SERVICE_NAME = "OTEL_SERVICE_NAME"

_DEFAULT_SERVICE_NAME = "menustream-backend"

# Paths to exclude from automatic tracing (reduce noise for health checks)
EXCLUDED_URLS = "health,health/,favicon.ico"


def _is_observability_enabled() -> bool:
    """Return True if ENABLE_OBSERVABILITY is set to a truthy value."""
    value = os.getenv(_ENV_ENABLE_OBSERVABILITY, "false").lower()
    return value in {"true", "1", "yes", "on"}


def _get_connection_string() -> str | None:
    return os.getenv(_ENV_APP_INSIGHTS_CONN_STRING)


@lru_cache
def configure_observability() -> bool:
    """Configure OpenTelemetry with Azure Monitor.

    Returns:
        True if observability was configured successfully, False otherwise.

    Environment Variables:
        ENABLE_OBSERVABILITY: Set to "true" to enable (default: "false")
        APPLICATIONINSIGHTS_CONNECTION_STRING: Azure Monitor connection string
        OTEL_SERVICE_NAME: Service name for traces (default: "menustream-backend")
    """
    if not _is_observability_enabled():
        logger.info(
            "Observability disabled. Set %s=true to enable Azure Monitor.",
            _ENV_ENABLE_OBSERVABILITY,
        )
        return False

    connection_string = _get_connection_string()
    if not connection_string:
        logger.warning(
            "Observability enabled but %s not set. Skipping Azure Monitor setup.",
            _ENV_APP_INSIGHTS_CONN_STRING,
        )
        return False

    try:
        from azure.monitor.opentelemetry import configure_azure_monitor

        service_name = os.getenv(_ENV_OTEL_SERVICE_NAME, _DEFAULT_SERVICE_NAME)
        os.environ.setdefault("OTEL_SERVICE_NAME", service_name)
        # FastAPI instrumentation reads excluded URLs from the environment
        os.environ.setdefault("OTEL_PYTHON_FASTAPI_EXCLUDED_URLS", EXCLUDED_URLS)

        configure_azure_monitor(connection_string=connection_string)

        logger.info(
            "Azure Monitor observability configured for service '%s'",
            service_name,
        )
        return True

    except ImportError:
        logger.warning(
            "azure-monitor-opentelemetry package not installed. "
            "Install the 'observability' extra to enable it."
        )
        return False
    except Exception as e:
        logger.exception("Failed to configure Azure Monitor observability: %s", e)
        return False


def get_tracer(name: str) -> trace.Tracer:
    """Get an OpenTelemetry tracer for custom instrumentation.

    Without a configured SDK the API returns a non-recording tracer, so
    callers can always write ``with tracer.start_as_current_span(...)``.

    WARNING: Never add menu content or PII to span attributes!
    """
    return trace.get_tracer(name)
