"""Tests for optional Azure Monitor setup and the tracer helper."""

from __future__ import annotations

import os
from collections.abc import Generator
from unittest.mock import MagicMock, patch

import pytest
from opentelemetry import trace

from core.observability import (
    EXCLUDED_URLS,
    _is_observability_enabled,
    configure_observability,
    get_tracer,
)


CONNECTION_STRING = "InstrumentationKey=test;IngestionEndpoint=https://test.com"


@pytest.fixture
def azure_monitor() -> Generator[MagicMock, None, None]:
    """Stand-in for the optional azure-monitor-opentelemetry distribution."""
    module = MagicMock()
    with patch.dict("sys.modules", {"azure.monitor.opentelemetry": module}):
        yield module


@pytest.fixture(autouse=True)
def _fresh_configuration() -> Generator[None, None, None]:
    # configure_observability writes OTEL_* defaults into the environment
    with patch.dict(os.environ):
        os.environ.pop("OTEL_SERVICE_NAME", None)
        os.environ.pop("OTEL_PYTHON_FASTAPI_EXCLUDED_URLS", None)
        configure_observability.cache_clear()
        yield
    configure_observability.cache_clear()


@pytest.mark.parametrize("value", ["true", "1", "YES", "On"])
def test_truthy_flag_enables(value: str, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENABLE_OBSERVABILITY", value)
    assert _is_observability_enabled() is True


@pytest.mark.parametrize("value", ["false", "0", "", "maybe"])
def test_other_values_disable(value: str, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENABLE_OBSERVABILITY", value)
    assert _is_observability_enabled() is False


def test_disabled_by_default(
    monkeypatch: pytest.MonkeyPatch, azure_monitor: MagicMock
) -> None:
    monkeypatch.delenv("ENABLE_OBSERVABILITY", raising=False)

    assert configure_observability() is False
    azure_monitor.configure_azure_monitor.assert_not_called()


def test_enabled_without_connection_string_is_skipped(
    monkeypatch: pytest.MonkeyPatch, azure_monitor: MagicMock
) -> None:
    monkeypatch.setenv("ENABLE_OBSERVABILITY", "true")
    monkeypatch.delenv("APPLICATIONINSIGHTS_CONNECTION_STRING", raising=False)

    assert configure_observability() is False
    azure_monitor.configure_azure_monitor.assert_not_called()


def test_configures_azure_monitor_for_menustream(
    monkeypatch: pytest.MonkeyPatch, azure_monitor: MagicMock
) -> None:
    monkeypatch.setenv("ENABLE_OBSERVABILITY", "true")
    monkeypatch.setenv("APPLICATIONINSIGHTS_CONNECTION_STRING", CONNECTION_STRING)

    assert configure_observability() is True
    azure_monitor.configure_azure_monitor.assert_called_once_with(
        connection_string=CONNECTION_STRING
    )
    assert os.environ["OTEL_SERVICE_NAME"] == "menustream-backend"
    assert os.environ["OTEL_PYTHON_FASTAPI_EXCLUDED_URLS"] == EXCLUDED_URLS


def test_configuration_is_cached(
    monkeypatch: pytest.MonkeyPatch, azure_monitor: MagicMock
) -> None:
    monkeypatch.setenv("ENABLE_OBSERVABILITY", "true")
    monkeypatch.setenv("APPLICATIONINSIGHTS_CONNECTION_STRING", CONNECTION_STRING)

    configure_observability()
    configure_observability()

    azure_monitor.configure_azure_monitor.assert_called_once()


def test_exporter_failure_does_not_break_startup(
    monkeypatch: pytest.MonkeyPatch, azure_monitor: MagicMock
) -> None:
    monkeypatch.setenv("ENABLE_OBSERVABILITY", "true")
    monkeypatch.setenv("APPLICATIONINSIGHTS_CONNECTION_STRING", CONNECTION_STRING)
    azure_monitor.configure_azure_monitor.side_effect = RuntimeError("bad key")

    assert configure_observability() is False


def test_missing_extra_does_not_break_startup(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("ENABLE_OBSERVABILITY", "true")
    monkeypatch.setenv("APPLICATIONINSIGHTS_CONNECTION_STRING", CONNECTION_STRING)

    # A None entry in sys.modules makes the import raise ImportError
    with patch.dict("sys.modules", {"azure.monitor.opentelemetry": None}):
        assert configure_observability() is False


def test_tracer_works_without_sdk() -> None:
    tracer = get_tracer("services.extraction.orchestrator")

    assert isinstance(tracer, trace.Tracer)
    with tracer.start_as_current_span("menu_extraction.stream") as span:
        span.set_attribute("status", "completed")
        span.set_attribute("sections", 2)
