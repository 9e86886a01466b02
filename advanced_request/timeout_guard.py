"""
Protective timeout above the transport's own timeout.

Some transports fail to honor their configured timeout under certain error
conditions and hang. The guard is an independent loop timer that cancels the
in-flight call once ``transport timeout + margin`` has passed.
"""

import asyncio
from typing import Optional

from shared.logging import get_logger


class TimeoutGuard:
    """One-shot timer that aborts a task when it fires.

    ``arm`` starts the timer for a task, ``disarm`` stops it. Both, and the
    timer firing after the task already finished, are safe no-ops when
    repeated.
    """

    def __init__(self, timeout: float, name: str = "unnamed request"):
        if timeout <= 0:
            raise ValueError(f"Guard timeout must be positive, got {timeout}")
        self.timeout = timeout
        self.name = name
        self.tripped = False
        self._handle: Optional[asyncio.TimerHandle] = None
        self._task: Optional["asyncio.Future"] = None
        self.logger = get_logger("advanced_request.timeout_guard")

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def arm(self, task: "asyncio.Future") -> None:
        self.disarm()
        self.tripped = False
        self._task = task
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.timeout, self._fire)

    def disarm(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._task = None

    def _fire(self) -> None:
        self._handle = None
        task, self._task = self._task, None
        if task is None or task.done():
            return
        self.tripped = True
        self.logger.warning(
            "Timeout guard fired, aborting in-flight request",
            name=self.name,
            timeout=self.timeout
        )
        task.cancel()
