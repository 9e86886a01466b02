"""
Throttle gate: decides whether an identity must wait before dispatching.
"""

import asyncio
import math
import time
from enum import Enum
from typing import Awaitable, Callable, Optional

from shared.logging import get_logger

from advanced_request.registry import IntervalRegistry, get_default_registry


Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class SpacingPolicy(Enum):
    """Which moment of a request stamps its identity's interval entry."""
    COMPLETION = "completion"  # spacing measured finish-to-finish
    DISPATCH = "dispatch"      # spacing measured send-to-send


class ThrottleGate:
    """Per-identity interval throttling on top of an IntervalRegistry."""

    def __init__(self,
                 registry: Optional[IntervalRegistry] = None,
                 clock: Clock = time.time,
                 sleep: Sleep = asyncio.sleep):
        self.registry = registry if registry is not None else get_default_registry()
        self.clock = clock
        self.sleep = sleep
        self.logger = get_logger("advanced_request.throttle")

    def applies_to(self, identity: str) -> bool:
        """Check whether the identity is registered for throttling."""
        return identity in self.registry

    def remaining_ms(self, identity: str) -> float:
        """Milliseconds left before the identity may dispatch (0 if none)."""
        now = self.clock()
        # first use of an entry without a timestamp is eligible at once;
        # later uses are spaced from this stamp
        if self.registry.ensure_started(identity, now):
            return 0.0
        entry = self.registry.get(identity)
        if entry is None:
            return 0.0
        elapsed_ms = (now - entry.last_completion) * 1000.0
        return max(0.0, entry.required_interval_ms - elapsed_ms)

    def is_wait_required(self, identity: str) -> bool:
        return self.remaining_ms(identity) > 0

    async def wait(self, identity: str) -> float:
        """Suspend until the identity is eligible; returns seconds waited.

        The remaining time is recomputed from the registry after every sleep,
        since the entry may be replaced or re-stamped while we are suspended.
        """
        waited = 0.0
        while True:
            remaining = self.remaining_ms(identity)
            if remaining <= 0:
                return waited
            # whole milliseconds, never less than one, so the loop always advances
            seconds = math.ceil(remaining) / 1000.0
            self.logger.debug("Sleeping before dispatch", name=identity, seconds=seconds)
            await self.sleep(seconds)
            waited += seconds

    def record(self, identity: str) -> bool:
        """Stamp the identity's entry with the current time."""
        return self.registry.mark_completed(identity, self.clock())
