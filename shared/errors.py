"""
Shared error handling for the advanced request manager.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel
from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error report format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class AdvancedRequestException(Exception):
    """Base exception for the request manager."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to an error report."""
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class ConfigurationError(AdvancedRequestException):
    """Invalid construction parameters or interval definitions."""

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class TransportError(AdvancedRequestException):
    """Connection failures and malformed responses from the transport."""

    def __init__(self, message: str = "Transport error", details: Optional[Dict[str, Any]] = None):
        super().__init__("TRANSPORT_ERROR", message, details)


class TimeoutGuardTripped(AdvancedRequestException):
    """The protective timeout fired before the transport returned."""

    def __init__(self, timeout: float, details: Optional[Dict[str, Any]] = None):
        self.timeout = timeout
        super().__init__(
            "TIMEOUT_GUARD_TRIPPED",
            f"No transport result after {timeout:.1f}s, aborted",
            details
        )


class RetriesExhaustedError(AdvancedRequestException):
    """Fatal: a request used up its attempt ceiling."""

    def __init__(self, name: str, attempts: int, reason: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        self.name = name
        self.attempts = attempts
        self.reason = reason
        merged = {"name": name, "attempts": attempts, "last_reason": reason}
        merged.update(details or {})
        super().__init__(
            "RETRIES_EXHAUSTED",
            f"Max request retries exceeded for request named '{name}' after {attempts} attempts",
            merged
        )
