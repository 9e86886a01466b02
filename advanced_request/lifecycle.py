"""
Request lifecycle: throttled, retried, timeout-guarded execution of one request.

Usage::

    request = AdvancedRequest(
        "https://api.example.com/friends",
        method="POST",
        name="DevAPI_SendFriendRequest",
        post_data={"user": "abc"},
        callback=on_done,
    )
    payload = await request.run()

Subclasses can override ``post_process`` to inspect the response and return
``Fail(delay, reason)`` instead of finishing; or pass a classifier.
"""

import asyncio
import json
import time
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union

from shared.config import RequestSettings, get_settings
from shared.errors import (
    ConfigurationError,
    RetriesExhaustedError,
    TimeoutGuardTripped,
    TransportError,
)
from shared.logging import bind_request_context, clear_context, get_logger
from shared.metrics import RequestMetrics, get_metrics_collector

from advanced_request.outcomes import (
    Attempt,
    DefaultClassifier,
    Fail,
    Finish,
    Outcome,
    OutcomeClassifier,
)
from advanced_request.registry import IntervalRegistry
from advanced_request.retry import RetryController
from advanced_request.storage import FileWriter, LocalFileWriter
from advanced_request.throttle import SpacingPolicy, ThrottleGate
from advanced_request.timeout_guard import TimeoutGuard
from advanced_request.transport import HttpxTransport, PreparedRequest, Transport


UNNAMED = "unnamed request"


class RequestState(Enum):
    """Lifecycle states."""
    CREATED = "created"
    THROTTLED = "throttled"        # waiting out the identity's interval
    DISPATCHING = "dispatching"
    IN_FLIGHT = "in_flight"
    BACKING_OFF = "backing_off"    # failed, waiting for the next attempt
    SUCCEEDED = "succeeded"
    EXHAUSTED = "exhausted"
    CANCELED = "canceled"


TERMINAL_STATES = frozenset({RequestState.SUCCEEDED, RequestState.EXHAUSTED, RequestState.CANCELED})


def _serialize_post_data(post_data: Any) -> Optional[str]:
    if post_data is None or isinstance(post_data, str):
        return post_data
    if isinstance(post_data, bytes):
        try:
            return post_data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ConfigurationError(
                "post_data bytes must be UTF-8 text",
                details={"error": str(e)}
            )
    if isinstance(post_data, (dict, list, tuple)):
        return json.dumps(post_data)
    return str(post_data)


class AdvancedRequest:
    """One request with retries, per-identity interval throttling and a
    protective timeout.

    At most one attempt is in flight at a time. Completion is observed either
    through ``callback`` or by awaiting the request (``await request``,
    ``await request.result()`` or ``start()``), never both: awaiting a request
    that has a callback raises ConfigurationError. Either way the payload is
    delivered once. A canceled request never reports a payload.
    """

    def __init__(self,
                 url: str,
                 method: str = "GET",
                 name: str = UNNAMED,
                 max_retries: Optional[int] = None,
                 no_multipart_header: bool = False,
                 save_as: Optional[Union[str, Path]] = None,
                 is_binary_request: Optional[bool] = None,
                 post_data: Any = None,
                 callback: Optional[Callable[[Any], Any]] = None,
                 extra_options: Optional[Mapping[str, Any]] = None,
                 *,
                 transport: Optional[Transport] = None,
                 registry: Optional[IntervalRegistry] = None,
                 classifier: Optional[OutcomeClassifier] = None,
                 file_writer: Optional[FileWriter] = None,
                 settings: Optional[RequestSettings] = None,
                 spacing_policy: Optional[Union[SpacingPolicy, str]] = None,
                 timeout_margin: Optional[float] = None,
                 clock: Callable[[], float] = time.time,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 metrics: Optional[RequestMetrics] = None):
        if not url:
            raise ConfigurationError("A url is required", details={"name": name})

        self.settings = settings or get_settings()
        self.url = url
        self.method = (method or "GET").upper()
        self.name = name or UNNAMED

        self.max_retries = self.settings.default_max_retries if max_retries is None else max_retries
        if self.max_retries < 0:
            raise ConfigurationError(
                "max_retries must be 0 (unlimited) or positive",
                details={"name": self.name, "max_retries": self.max_retries}
            )

        # Single-part form body instead of multipart; some endpoints reject multipart
        self.no_multipart_header = no_multipart_header
        self.save_as = save_as
        self.is_binary_request = (save_as is not None) if is_binary_request is None else is_binary_request
        self.post_data = _serialize_post_data(post_data)
        self.callback = callback
        # passed through to the transport, e.g. params or cookies
        self.extra_options: Dict[str, Any] = dict(extra_options or {})

        self.transport = transport or HttpxTransport(
            timeout=self.settings.transport_timeout,
            verify=self.settings.verify_tls
        )
        self.classifier = classifier or DefaultClassifier()
        self.file_writer = file_writer or LocalFileWriter()
        self.spacing_policy = SpacingPolicy(spacing_policy or self.settings.spacing_policy)
        self.timeout_margin = self.settings.timeout_margin if timeout_margin is None else timeout_margin
        self.throttle = ThrottleGate(registry, clock=clock, sleep=sleep)
        self.retry = RetryController(self.max_retries, name=self.name)
        self.metrics = metrics or get_metrics_collector()
        self.logger = get_logger("advanced_request.lifecycle")
        self._sleep = sleep

        self.request_headers: Dict[str, str] = {}
        self.request_options: Optional[PreparedRequest] = None
        self.response_headers: Dict[str, str] = {}
        self.status_code: Optional[int] = None
        self.data: Union[str, bytes, None] = None
        self.payload: Any = None

        self.state = RequestState.CREATED
        self.is_request_complete = False
        self.cancel_requested = False
        self.error: Optional[RetriesExhaustedError] = None

        self._completion: Optional[asyncio.Future] = None
        self._pending: Optional[asyncio.Future] = None
        self._guard: Optional[TimeoutGuard] = None
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def attempts(self) -> int:
        """Failed attempts so far."""
        return self.retry.attempts

    @property
    def guard_timeout(self) -> float:
        return getattr(self.transport, "timeout", self.settings.transport_timeout) + self.timeout_margin

    def add_header(self, full_header: str) -> None:
        """Add a request header given in full, e.g. ``"Cookie: a=b; c=d"``.

        Only the first ``": "`` separates name from value.
        """
        header_name, sep, value = full_header.partition(": ")
        if not sep or not header_name:
            raise ConfigurationError(
                "Header must be formatted as 'Name: Value'",
                details={"header": full_header}
            )
        self.request_headers[header_name] = value

    def get_response_headers(self) -> Dict[str, str]:
        return self.response_headers

    def build_request_options(self) -> PreparedRequest:
        """Merge per-request options with the settings every attempt needs."""
        headers = {
            "Accept-Encoding": "gzip, deflate",
            "User-Agent": self.settings.user_agent,
        }
        headers.update(self.request_headers)

        body_encoding = None
        if self.post_data:
            body_encoding = "form" if self.no_multipart_header else "multipart"

        return PreparedRequest(
            url=self.url,
            method=self.method,
            headers=headers,
            body=self.post_data or None,
            body_encoding=body_encoding,
            binary=self.is_binary_request,
            extra=dict(self.extra_options)
        )

    def post_process(self, attempt: Attempt) -> Outcome:
        """Decide what a completed attempt means. Override for custom checks,
        e.g. ``if not attempt.body: return Fail(10, "Response was blank!")``.
        """
        return self.classifier.classify(attempt)

    def finish(self, payload: Any) -> Any:
        """Complete the request and notify the caller."""
        # Spacing is measured from the end of the request, not its dispatch
        if self.spacing_policy is SpacingPolicy.COMPLETION:
            self.throttle.record(self.name)

        if self.save_as is not None and payload is not None:
            self.file_writer.write(self.save_as, payload)

        self.payload = payload
        self.is_request_complete = True
        self.state = RequestState.SUCCEEDED
        self.metrics.record_completion(self.name)
        self.logger.info(
            "Request finished",
            name=self.name,
            url=self.url,
            status_code=self.status_code,
            failed_attempts=self.retry.attempts
        )

        if self._completion is not None:
            if not self._completion.done():
                self._completion.set_result(payload)
        elif self.callback is not None:
            self.callback(payload)
        return payload

    def fail(self, delay_seconds: float, reason: Optional[str] = None) -> float:
        """Count a failed attempt; returns the backoff before the next one.

        Raises RetriesExhaustedError when the ceiling is reached.
        """
        try:
            delay = self.retry.on_failure(delay_seconds, reason)
        except RetriesExhaustedError as e:
            self._log_failure(reason, delay_seconds)
            self._exhaust(e)
            self.on_request_retries_exhausted(e)
            raise
        self._log_failure(reason, delay)
        return delay

    def _log_failure(self, reason: Optional[str], delay: float) -> None:
        self.logger.warning(
            reason or "AdvancedRequest.fail call",
            name=self.name,
            status_code=self.status_code,
            url=self.url,
            method=self.method,
            tries_left=self.retry.tries_left,
            retry_in_seconds=delay
        )

    def _exhaust(self, error: RetriesExhaustedError) -> None:
        self.error = error
        self.state = RequestState.EXHAUSTED
        self.metrics.record_exhaustion(self.name)
        if self._completion is not None and not self._completion.done():
            self._completion.set_exception(error)

    def on_request_retries_exhausted(self, error: RetriesExhaustedError) -> None:
        """Called once the request ran out of retries.

        State and completion are already settled when this runs; override to
        alert or clean up. The completion callback is not called.
        """
        self.logger.error(
            "Max request retries exceeded",
            name=self.name,
            url=self.url,
            error=error.to_response().model_dump(exclude_none=True)
        )

    def cancel_request(self) -> bool:
        """Stop the request from being sent or retried.

        Aborts an in-flight call and clears any pending throttle wait, backoff
        or timeout guard. The callback is never called for a canceled request.
        Returns False when there was nothing to cancel.
        """
        if self.cancel_requested:
            self.logger.debug("This request is already canceled", name=self.name)
            return False
        if self.is_request_complete:
            self.logger.warning("Trying to cancel a request that already completed", name=self.name)
            return False
        if self.state is RequestState.EXHAUSTED:
            self.logger.warning("Trying to cancel a request that already ran out of retries", name=self.name)
            return False

        self.cancel_requested = True
        self.state = RequestState.CANCELED
        if self._guard is not None:
            self._guard.disarm()
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        if self._completion is not None and not self._completion.done():
            self._completion.cancel()

        self.metrics.record_cancellation(self.name)
        self.logger.info("Request canceled", name=self.name, url=self.url, failed_attempts=self.retry.attempts)
        return True

    async def _suspend(self, awaitable: Awaitable) -> Any:
        """Await something that cancel_request must be able to interrupt."""
        self._pending = asyncio.ensure_future(awaitable)
        try:
            return await self._pending
        finally:
            self._pending = None

    async def _attempt(self) -> Outcome:
        self.state = RequestState.DISPATCHING
        prepared = self.build_request_options()
        self.request_options = prepared
        bind_request_context(self.name, self.retry.attempts + 1)

        if self.spacing_policy is SpacingPolicy.DISPATCH:
            self.throttle.record(self.name)

        self.metrics.record_attempt(self.name)
        guard = TimeoutGuard(self.guard_timeout, name=self.name)
        self._guard = guard
        send = asyncio.ensure_future(self.transport.send(prepared))
        guard.arm(send)
        self.state = RequestState.IN_FLIGHT

        try:
            with self.metrics.time_transport(self.name, self.method):
                response = await self._suspend(send)
        except asyncio.CancelledError:
            if guard.tripped and not self.cancel_requested:
                self.metrics.record_failure(self.name, "timeout")
                tripped = TimeoutGuardTripped(guard.timeout, details={"url": self.url})
                return Fail(self.settings.timeout_backoff, tripped.message)
            raise
        except TransportError as e:
            self.metrics.record_failure(self.name, "transport")
            return Fail(
                self.settings.transport_error_backoff,
                f"ERROR with advanced request code somehow!! Err: {e.message}"
            )
        finally:
            guard.disarm()
            self._guard = None

        self.status_code = response.status_code
        self.response_headers = dict(response.headers)
        self.data = response.body

        outcome = self.post_process(Attempt(
            name=self.name,
            url=self.url,
            method=self.method,
            attempt_number=self.retry.attempts + 1,
            status_code=response.status_code,
            headers=self.response_headers,
            body=response.body
        ))
        if isinstance(outcome, Fail):
            self.metrics.record_failure(self.name, "classifier")
        return outcome

    async def run(self) -> Any:
        """Perform the request until it finishes, is canceled or runs out of
        retries.

        Returns the payload, or None when canceled. Raises
        RetriesExhaustedError on exhaustion.
        """
        if self.state is RequestState.SUCCEEDED:
            self.logger.warning("Request already finished, not running again", name=self.name)
            return self.payload
        if self.state is RequestState.EXHAUSTED and self.error is not None:
            raise self.error
        if self._running:
            raise RuntimeError(f"Request '{self.name}' is already running")

        self._running = True
        try:
            while True:
                if self.cancel_requested:
                    return None

                if self.throttle.is_wait_required(self.name):
                    self.state = RequestState.THROTTLED
                    waited = await self._suspend(self.throttle.wait(self.name))
                    self.metrics.observe_throttle_wait(self.name, waited)
                    # cancellation may have arrived while we slept
                    continue

                outcome = await self._attempt()
                if self.cancel_requested:
                    return None

                if isinstance(outcome, Finish):
                    return self.finish(outcome.payload)

                delay = self.fail(outcome.delay_seconds, outcome.reason)
                self.state = RequestState.BACKING_OFF
                await self._suspend(self._sleep(delay))
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if self.cancel_requested and (task is None or not task.cancelling()):
                return None
            raise
        finally:
            self._running = False
            clear_context()

    def _completion_future(self) -> asyncio.Future:
        if self._completion is None:
            self._completion = asyncio.get_running_loop().create_future()
            if self.state is RequestState.SUCCEEDED:
                self._completion.set_result(self.payload)
            elif self.state is RequestState.EXHAUSTED and self.error is not None:
                self._completion.set_exception(self.error)
            elif self.state is RequestState.CANCELED:
                self._completion.cancel()
        return self._completion

    async def _run_in_background(self) -> None:
        try:
            await self.run()
        except RetriesExhaustedError as e:
            if self._completion is not None and not self._completion.done():
                self._completion.set_exception(e)
        except Exception as e:
            if self._completion is None or self._completion.done():
                raise
            self._completion.set_exception(e)

    def start(self) -> asyncio.Future:
        """Schedule the lifecycle on the running loop and return its
        completion future.

        Raises ConfigurationError when the request reports through a callback.
        """
        if self.callback is not None:
            raise ConfigurationError(
                "Request completes through its callback and cannot also be awaited",
                details={"name": self.name}
            )
        completion = self._completion_future()
        if self._task is None and not self._running and self.state not in TERMINAL_STATES:
            self._task = asyncio.ensure_future(self._run_in_background())
        return completion

    async def result(self) -> Any:
        """Start if needed and wait for the payload."""
        return await self.start()

    def __await__(self):
        return self.result().__await__()

    def __repr__(self) -> str:
        return (f"<AdvancedRequest name={self.name!r} {self.method} {self.url} "
                f"state={self.state.value} attempts={self.retry.attempts}>")
