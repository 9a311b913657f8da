"""Threading-based scheduler backend (the default).

┌──────────────────────────────────────────────────────────────────────────────┐
│  ThreadSchedulerBackend                                                       │
│                                                                               │
│   start()  ──►  daemon thread:                                               │
│                   while not stop_event.wait(interval):                       │
│                       tick_count += 1                                        │
│                       asyncio.run(tick_callback())                           │
│                                                                               │
│   stop()   ──►  stop_event.set(); thread.join(timeout)                       │
│                                                                               │
│  Each start() gets its own stop event, and start() refuses to run while a    │
│  thread from an earlier start() is still alive.                              │
│                                                                               │
│  Works from synchronous programs: every tick gets its own event loop, so    │
│  the scheduler needs no loop of its own.                                    │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import asyncio
import threading
from datetime import UTC, datetime
from typing import Any

from sagaflow.core.logging import get_logger
from sagaflow.core.scheduling.protocol import BackendHealth, TickCallback

logger = get_logger(__name__)


class ThreadSchedulerBackend:
    """Runs the tick loop on a daemon thread.

    Example:
        >>> backend = ThreadSchedulerBackend()
        >>> backend.start(scheduler.tick, interval_seconds=1.0)
        >>> # ... later ...
        >>> backend.stop()
    """

    name = "thread"

    def __init__(self, join_timeout: float = 5.0) -> None:
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._tick_count = 0
        self._last_tick: datetime | None = None
        self._interval: float = 1.0
        self._started = False
        self._lock = threading.Lock()
        self._join_timeout = join_timeout

    def start(self, tick_callback: TickCallback, interval_seconds: float = 1.0) -> None:
        if self._started:
            logger.warning("scheduler.backend.already_started", backend=self.name)
            return
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if self._thread is not None and self._thread.is_alive():
            raise RuntimeError("the previous tick loop is still finishing its last tick")
        self._interval = interval_seconds
        stop_event = threading.Event()
        self._stop_event = stop_event

        def _loop() -> None:
            logger.info("scheduler.backend.started", backend=self.name, interval_seconds=interval_seconds)
            while not stop_event.wait(interval_seconds):
                with self._lock:
                    self._tick_count += 1
                    self._last_tick = datetime.now(UTC)
                try:
                    asyncio.run(tick_callback())
                except Exception:
                    logger.exception("scheduler.tick_failed", backend=self.name)
            logger.info("scheduler.backend.stopped", backend=self.name)

        self._thread = threading.Thread(target=_loop, daemon=True, name="sagaflow-scheduler")
        self._thread.start()
        self._started = True

    def stop(self) -> None:
        """Stop the loop, waiting up to ``join_timeout`` for the current tick."""
        if not self._started:
            return
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=self._join_timeout)
            if self._thread.is_alive():
                logger.warning("scheduler.backend.stop_timeout", backend=self.name)
        self._started = False

    @property
    def is_running(self) -> bool:
        return self._started and self._thread is not None and self._thread.is_alive()

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def last_tick(self) -> datetime | None:
        return self._last_tick

    def health(self) -> dict[str, Any]:
        return self.get_health().to_dict()

    def get_health(self) -> BackendHealth:
        return BackendHealth(
            healthy=self.is_running,
            backend=self.name,
            tick_count=self._tick_count,
            last_tick=self._last_tick,
            extra={"interval_seconds": self._interval},
        )
