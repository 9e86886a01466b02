"""
Shared logging configuration for the advanced request manager.
"""

import sys
import structlog
import logging
import time
from typing import Any, Dict, Optional
from contextvars import ContextVar

from opentelemetry import trace

from shared.config import get_settings

# Context variables for per-request correlation
request_name_var: ContextVar[Optional[str]] = ContextVar('request_name', default=None)
attempt_var: ContextVar[Optional[int]] = ContextVar('attempt', default=None)


_service_name = "advanced_request"


def configure_logging(service_name: str = "advanced_request", log_level: Optional[str] = None) -> None:
    """Configure structured logging for the process.

    The level defaults to ``RequestSettings.log_level``.
    """
    global _service_name
    _service_name = service_name
    if log_level is None:
        log_level = get_settings().log_level

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_service_context,
            add_trace_context,
            add_correlation_context,
            add_timestamp,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )


def add_service_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add the configured service name."""
    event_dict.setdefault("service", _service_name)

    return event_dict


def add_trace_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add trace context to log events."""
    current_span = trace.get_current_span()
    if current_span and current_span.is_recording():
        span_context = current_span.get_span_context()
        if span_context.trace_id != 0:
            event_dict["trace_id"] = f"{span_context.trace_id:032x}"
        if span_context.span_id != 0:
            event_dict["span_id"] = f"{span_context.span_id:016x}"

    return event_dict


def add_correlation_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add request identity and attempt number to log events."""
    request_name = request_name_var.get()
    if request_name:
        event_dict.setdefault("request_name", request_name)

    attempt = attempt_var.get()
    if attempt is not None:
        event_dict.setdefault("attempt", attempt)

    return event_dict


def add_timestamp(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add high-precision timestamp to log events."""
    event_dict["timestamp"] = time.time()
    return event_dict


def bind_request_context(request_name: str, attempt: Optional[int] = None) -> None:
    """Set request correlation values for the current task."""
    request_name_var.set(request_name)
    attempt_var.set(attempt)


def clear_context():
    """Clear all context variables."""
    request_name_var.set(None)
    attempt_var.set(None)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
