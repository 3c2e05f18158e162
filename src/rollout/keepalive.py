"""Keepalive heartbeat for long-running steps.

Some CI supervisors kill a step that prints nothing for a while.  The
heartbeat logs a line at a fixed interval while a step runs and is
cancelled as soon as the step finishes, whatever its outcome.  It carries
no data and touches no shared state.
"""

from __future__ import annotations

import asyncio
import logging
import time
from types import TracebackType

logger = logging.getLogger(__name__)


class Heartbeat:
    """Async context manager that logs ``still running`` every *interval* seconds.

    Usage::

        async with Heartbeat("docker build", interval=60):
            await long_step()
    """

    def __init__(self, label: str, interval: float = 60) -> None:
        self.label = label
        self.interval = interval
        self.beats = 0
        self._task: asyncio.Task[None] | None = None
        self._started = 0.0

    async def _beat(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.beats += 1
            logger.info(
                "%s still running (%.0fs elapsed)",
                self.label, time.monotonic() - self._started,
            )

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def __aenter__(self) -> "Heartbeat":
        self._started = time.monotonic()
        if self.interval > 0:
            self._task = asyncio.create_task(self._beat())
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
