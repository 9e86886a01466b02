"""
Retry controller: attempt accounting against a ceiling.
"""

from typing import Optional

from shared.errors import RetriesExhaustedError
from shared.logging import get_logger


class RetryController:
    """Tracks failed attempts for one request and decides retry vs. exhaustion.

    A ceiling of N allows exactly N attempts in total; 0 means unlimited.
    """

    def __init__(self, max_retries: int = 10, name: str = "unnamed request"):
        if max_retries < 0:
            raise ValueError(f"max_retries must be non-negative, got {max_retries}")
        self.max_retries = max_retries
        self.name = name
        self.attempts = 0
        self.last_reason: Optional[str] = None
        self.logger = get_logger("advanced_request.retry")

    @property
    def unlimited(self) -> bool:
        return self.max_retries == 0

    @property
    def tries_left(self) -> Optional[int]:
        """Attempts remaining, or None when unlimited."""
        if self.unlimited:
            return None
        return max(0, self.max_retries - self.attempts)

    @property
    def exhausted(self) -> bool:
        return not self.unlimited and self.attempts >= self.max_retries

    def on_failure(self, delay_seconds: float, reason: Optional[str] = None) -> float:
        """Count a failed attempt.

        Returns the delay before the next attempt, or raises
        RetriesExhaustedError once the ceiling is reached.
        """
        if delay_seconds < 0:
            raise ValueError(f"Retry delay must be non-negative, got {delay_seconds}")

        self.attempts += 1
        self.last_reason = reason

        if self.exhausted:
            self.logger.error(
                "All retry attempts exhausted",
                name=self.name,
                attempts=self.attempts,
                max_retries=self.max_retries,
                reason=reason
            )
            raise RetriesExhaustedError(self.name, self.attempts, reason)

        return delay_seconds
