"""
Unit tests for shared configuration, errors, logging and metrics.
"""

import pytest
import structlog
from unittest.mock import patch
from pydantic import ValidationError

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.config import RequestSettings, get_settings, reset_settings
from shared.errors import (
    AdvancedRequestException,
    ConfigurationError,
    ErrorResponse,
    RetriesExhaustedError,
    TimeoutGuardTripped,
    TransportError,
)
from shared.logging import (
    add_correlation_context,
    add_service_context,
    configure_logging,
    attempt_var,
    bind_request_context,
    clear_context,
    request_name_var,
)
from shared.metrics import get_metrics_collector
from shared.test_helpers import create_test_metrics, create_test_settings, metric_value


class TestRequestSettings:
    """Test cases for RequestSettings."""

    @pytest.fixture(autouse=True)
    def fresh_settings(self):
        """Drop cached settings around each test."""
        reset_settings()
        yield
        reset_settings()

    def test_defaults(self, monkeypatch):
        """Test default values."""
        for key in list(os.environ):
            if key.upper().startswith("ADVREQ_"):
                monkeypatch.delenv(key)

        settings = RequestSettings(_env_file=None)

        assert settings.default_max_retries == 10
        assert settings.transport_timeout == 60.0
        assert settings.timeout_margin == 2.0
        assert settings.transport_error_backoff == 10.0
        assert settings.timeout_backoff == 0.1
        assert settings.spacing_policy == "completion"
        assert settings.intervals_file is None
        assert settings.metrics_port is None

    def test_environment_override(self, monkeypatch):
        """Test ADVREQ_ prefixed environment variables."""
        monkeypatch.setenv("ADVREQ_DEFAULT_MAX_RETRIES", "3")
        monkeypatch.setenv("ADVREQ_SPACING_POLICY", "dispatch")

        settings = get_settings()

        assert settings.default_max_retries == 3
        assert settings.spacing_policy == "dispatch"

    def test_settings_are_cached(self):
        """Test that get_settings returns one instance until reset."""
        first = get_settings()
        assert get_settings() is first

        reset_settings()
        assert get_settings() is not first

    def test_invalid_policy(self):
        """Test that unknown spacing policies are rejected."""
        with pytest.raises(ValidationError):
            RequestSettings(spacing_policy="whenever")

    def test_negative_retries(self):
        """Test that negative ceilings are rejected."""
        with pytest.raises(ValidationError):
            RequestSettings(default_max_retries=-1)


class TestErrors:
    """Test cases for error types."""

    def test_base_exception(self):
        """Test the base exception fields."""
        error = AdvancedRequestException("CODE", "message", {"a": 1})

        assert str(error) == "message"
        assert error.details == {"a": 1}

    def test_to_response(self):
        """Test conversion to an error report without an active span."""
        response = ConfigurationError("bad header", details={"header": "x"}).to_response()

        assert isinstance(response, ErrorResponse)
        assert response.code == "CONFIGURATION_ERROR"
        assert response.message == "bad header"
        assert response.details == {"header": "x"}
        assert response.trace_id is None

    def test_transport_error(self):
        """Test the transport error code."""
        assert TransportError("boom").code == "TRANSPORT_ERROR"

    def test_timeout_guard_tripped(self):
        """Test the guard message."""
        error = TimeoutGuardTripped(62.0)

        assert error.code == "TIMEOUT_GUARD_TRIPPED"
        assert error.timeout == 62.0
        assert "62.0s" in error.message

    def test_retries_exhausted(self):
        """Test the exhaustion details."""
        error = RetriesExhaustedError("X", 3, "blank", details={"url": "u"})

        assert error.details == {"name": "X", "attempts": 3, "last_reason": "blank", "url": "u"}
        assert "'X'" in error.message
        assert isinstance(error, AdvancedRequestException)


class TestLoggingContext:
    """Test cases for request correlation context."""

    def teardown_method(self):
        clear_context()

    def test_bind_and_clear(self):
        """Test binding and clearing the correlation variables."""
        bind_request_context("X", 2)

        assert request_name_var.get() == "X"
        assert attempt_var.get() == 2

        clear_context()

        assert request_name_var.get() is None
        assert attempt_var.get() is None

    def test_correlation_processor(self):
        """Test that bound context is added to events without overriding them."""
        bind_request_context("X", 1)

        event = add_correlation_context(None, "info", {"event": "hello"})
        explicit = add_correlation_context(None, "info", {"event": "hello", "request_name": "Y"})

        assert event["request_name"] == "X"
        assert event["attempt"] == 1
        assert explicit["request_name"] == "Y"

    def test_configure_logging(self):
        """Test that the configured service name is added to events."""
        try:
            configure_logging("friend_sync", "debug")
            event = add_service_context(None, "info", {"event": "hello"})
        finally:
            configure_logging()
            structlog.reset_defaults()

        assert event["service"] == "friend_sync"

    def test_get_logger_returns_structlog_logger(self):
        """Test that loggers are structlog loggers."""
        from shared.logging import get_logger

        with patch.object(structlog, "get_logger", wraps=structlog.get_logger) as mock_get_logger:
            get_logger("advanced_request.test")

        mock_get_logger.assert_called_once_with("advanced_request.test")


class TestRequestMetrics:
    """Test cases for RequestMetrics."""

    @pytest.fixture
    def metrics(self):
        """Create metrics on a private registry."""
        return create_test_metrics()

    def test_counters(self, metrics):
        """Test lifecycle counters."""
        metrics.record_attempt("X")
        metrics.record_attempt("X")
        metrics.record_failure("X", "timeout")
        metrics.record_completion("X")
        metrics.record_exhaustion("Y")
        metrics.record_cancellation("Z")

        assert metric_value(metrics, "attempts_total", name="X") == 2
        assert metric_value(metrics, "failures_total", name="X", kind="timeout") == 1
        assert metric_value(metrics, "completions_total", name="X") == 1
        assert metric_value(metrics, "exhaustions_total", name="Y") == 1
        assert metric_value(metrics, "cancellations_total", name="Z") == 1

    def test_time_transport(self, metrics):
        """Test that transport calls are timed even when they raise."""
        with pytest.raises(RuntimeError):
            with metrics.time_transport("X", "GET"):
                raise RuntimeError("boom")

        count = metrics.registry.get_sample_value(
            "advanced_request_transport_duration_seconds_count", {"name": "X", "method": "GET"}
        )
        assert count == 1

    def test_throttle_wait(self, metrics):
        """Test the throttle wait histogram."""
        metrics.observe_throttle_wait("X", 0.5)

        total = metrics.registry.get_sample_value(
            "advanced_request_throttle_wait_seconds_sum", {"name": "X"}
        )
        assert total == 0.5

    def test_start_metrics_server(self, metrics):
        """Test that the exporter serves the collector's registry."""
        with patch("shared.metrics.start_http_server") as mock_server:
            metrics.start_metrics_server(9100)

        mock_server.assert_called_once_with(9100, registry=metrics.registry)

    def test_collector_starts_server_when_port_set(self):
        """Test that the process collector exposes metrics on the configured port."""
        settings = create_test_settings(metrics_port=9464)
        with patch("shared.metrics._default_collector", None), \
                patch("shared.metrics.get_settings", return_value=settings), \
                patch("shared.metrics.RequestMetrics") as mock_metrics:
            collector = get_metrics_collector()
            assert get_metrics_collector() is collector

        mock_metrics.return_value.start_metrics_server.assert_called_once_with(9464)

    def test_collector_without_port(self):
        """Test that no server is started by default."""
        with patch("shared.metrics._default_collector", None), \
                patch("shared.metrics.get_settings", return_value=create_test_settings()), \
                patch("shared.metrics.RequestMetrics") as mock_metrics:
            get_metrics_collector()

        mock_metrics.return_value.start_metrics_server.assert_not_called()
