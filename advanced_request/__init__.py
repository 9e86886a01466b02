"""
Advanced request manager.

Sends outbound HTTP requests with bounded retries, per-identity interval
throttling and a protective timeout above the transport's own.

Throttling is configured per request name::

    from advanced_request import AdvancedRequest, add_intervals

    # at most one DevAPI_SendFriendRequest per minute
    add_intervals({"DevAPI_SendFriendRequest": {"required_interval_ms": 60_000}})

    payload = await AdvancedRequest(url, name="DevAPI_SendFriendRequest").run()
"""

from advanced_request.lifecycle import AdvancedRequest, RequestState, TERMINAL_STATES, UNNAMED
from advanced_request.outcomes import (
    Attempt,
    DefaultClassifier,
    Fail,
    Finish,
    Outcome,
    OutcomeClassifier,
    ResponseClassifier,
)
from advanced_request.registry import (
    IntervalEntry,
    IntervalRegistry,
    add_intervals,
    get_default_registry,
    load_intervals_file,
    remove_intervals,
    set_intervals,
)
from advanced_request.retry import RetryController
from advanced_request.storage import FileWriter, LocalFileWriter
from advanced_request.throttle import SpacingPolicy, ThrottleGate
from advanced_request.timeout_guard import TimeoutGuard
from advanced_request.transport import HttpxTransport, PreparedRequest, Transport, TransportResponse

__all__ = [
    "AdvancedRequest",
    "Attempt",
    "DefaultClassifier",
    "Fail",
    "FileWriter",
    "Finish",
    "HttpxTransport",
    "IntervalEntry",
    "IntervalRegistry",
    "LocalFileWriter",
    "Outcome",
    "OutcomeClassifier",
    "PreparedRequest",
    "RequestState",
    "ResponseClassifier",
    "RetryController",
    "SpacingPolicy",
    "TERMINAL_STATES",
    "ThrottleGate",
    "TimeoutGuard",
    "Transport",
    "TransportResponse",
    "UNNAMED",
    "add_intervals",
    "get_default_registry",
    "load_intervals_file",
    "remove_intervals",
    "set_intervals",
]
