"""
Outcome classification for completed attempts.

A classifier looks at what the transport returned and decides whether the
request is done (``Finish``) or should be retried later (``Fail``). The
default accepts any response; ``ResponseClassifier`` knows the usual ways an
API says "not now" without raising a transport error.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from email.utils import parsedate_to_datetime
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional, Tuple, Union


@dataclass(frozen=True)
class Attempt:
    """Snapshot of one completed transport call."""
    name: str
    url: str
    method: str
    attempt_number: int
    status_code: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Union[str, bytes, None] = None


@dataclass(frozen=True)
class Finish:
    """The request is complete; ``payload`` goes to the caller."""
    payload: Any


@dataclass(frozen=True)
class Fail:
    """The attempt failed; retry after ``delay_seconds``."""
    delay_seconds: float
    reason: str = "AdvancedRequest.fail call"


Outcome = Union[Finish, Fail]


class OutcomeClassifier(ABC):
    """Decides success or retry for a completed attempt."""

    @abstractmethod
    def classify(self, attempt: Attempt) -> Outcome:
        ...


class DefaultClassifier(OutcomeClassifier):
    """Treats every returned body as final."""

    def classify(self, attempt: Attempt) -> Outcome:
        return Finish(attempt.body)


def _is_blank(body: Union[str, bytes, None]) -> bool:
    return body is None or not body.strip()


def _retry_after_seconds(headers: Mapping[str, str]) -> Optional[float]:
    """Parse a Retry-After header given as seconds or an HTTP date."""
    value = None
    for key, header_value in headers.items():
        if key.lower() == "retry-after":
            value = header_value
            break
    if value is None:
        return None

    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


class ResponseClassifier(OutcomeClassifier):
    """Fails blank, rate-limited and server-error responses.

    Checks, in order:

    - HTTP 429: retry after ``Retry-After`` if present, else ``rate_limit_delay``
    - body containing one of ``rate_limit_markers``: ``rate_limit_delay``
    - status in ``retry_statuses`` (5xx by default): ``server_error_delay``
    - blank body (when ``allow_blank`` is off): ``blank_delay``

    Anything else finishes with the body as payload.
    """

    def __init__(self,
                 rate_limit_markers: Iterable[str] = (),
                 rate_limit_delay: float = 3600.0,
                 server_error_delay: float = 10.0,
                 blank_delay: float = 10.0,
                 retry_statuses: Tuple[int, ...] = (500, 502, 503, 504),
                 allow_blank: bool = False):
        self.rate_limit_markers = tuple(rate_limit_markers)
        self.rate_limit_delay = rate_limit_delay
        self.server_error_delay = server_error_delay
        self.blank_delay = blank_delay
        self.retry_statuses = retry_statuses
        self.allow_blank = allow_blank

    def classify(self, attempt: Attempt) -> Outcome:
        if attempt.status_code == 429:
            delay = _retry_after_seconds(attempt.headers)
            if delay is None:
                delay = self.rate_limit_delay
            return Fail(delay, f"Rate limited (429). Retrying in {delay} seconds")

        if self.rate_limit_markers and attempt.body is not None:
            text = attempt.body.decode("utf-8", errors="replace") if isinstance(attempt.body, bytes) else attempt.body
            for marker in self.rate_limit_markers:
                if marker in text:
                    return Fail(
                        self.rate_limit_delay,
                        f"Rate limit message '{marker}' in response. Retrying in {self.rate_limit_delay} seconds"
                    )

        if attempt.status_code in self.retry_statuses:
            return Fail(
                self.server_error_delay,
                f"Server error {attempt.status_code}. Retrying in {self.server_error_delay} seconds"
            )

        if not self.allow_blank and _is_blank(attempt.body):
            return Fail(self.blank_delay, f"Response was blank! Retrying in {self.blank_delay} seconds")

        return Finish(attempt.body)
