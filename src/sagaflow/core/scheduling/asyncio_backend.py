"""Asyncio scheduler backend.

For applications that already own an event loop (web servers, workers):
the tick loop is a task on that loop, so scheduled workflows run on the
same loop as the rest of the application. ``start`` must be called from
inside a running loop.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import Any

from sagaflow.core.logging import get_logger
from sagaflow.core.scheduling.protocol import BackendHealth, TickCallback

logger = get_logger(__name__)


class AsyncioSchedulerBackend:
    """Runs the tick loop as an ``asyncio.Task``."""

    name = "asyncio"

    def __init__(self) -> None:
        self._task: asyncio.Task[None] | None = None
        self._tick_count = 0
        self._last_tick: datetime | None = None
        self._interval: float = 1.0

    def start(self, tick_callback: TickCallback, interval_seconds: float = 1.0) -> None:
        """Schedule the loop on the running event loop.

        Raises:
            RuntimeError: called outside a running event loop
        """
        if self.is_running:
            logger.warning("scheduler.backend.already_started", backend=self.name)
            return
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._interval = interval_seconds
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._loop(tick_callback, interval_seconds), name="sagaflow-scheduler")
        logger.info("scheduler.backend.started", backend=self.name, interval_seconds=interval_seconds)

    async def _loop(self, tick_callback: TickCallback, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            self._tick_count += 1
            self._last_tick = datetime.now(UTC)
            try:
                await tick_callback()
            except Exception:
                logger.exception("scheduler.tick_failed", backend=self.name)

    def stop(self) -> None:
        """Cancel the loop task; a tick in progress is cancelled with it."""
        if self._task is not None:
            self._task.cancel()
            self._task = None
            logger.info("scheduler.backend.stopped", backend=self.name)

    async def aclose(self) -> None:
        """Cancel the loop and wait for the task to finish unwinding."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("scheduler.backend.stopped", backend=self.name)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def tick_count(self) -> int:
        return self._tick_count

    def health(self) -> dict[str, Any]:
        return BackendHealth(
            healthy=self.is_running,
            backend=self.name,
            tick_count=self._tick_count,
            last_tick=self._last_tick,
            extra={"interval_seconds": self._interval},
        ).to_dict()
