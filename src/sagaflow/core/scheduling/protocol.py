"""Scheduler backend protocol.

┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULER BACKEND PROTOCOL                                                   │
│                                                                               │
│  Backends control WHEN ticks happen; WorkflowScheduler controls WHAT        │
│  happens on each tick (find due entries, resolve, run, reschedule).          │
│                                                                               │
│   ┌──────────────────┐        tick()        ┌──────────────────────┐        │
│   │ Thread backend   │ ───────────────────► │  WorkflowScheduler   │        │
│   │ (default)        │                      │  - due entries       │        │
│   └──────────────────┘                      │  - registry.resolve  │        │
│   ┌──────────────────┐        tick()        │  - runner.execute    │        │
│   │ Asyncio backend  │ ───────────────────► │  - next occurrence   │        │
│   └──────────────────┘                      └──────────────────────┘        │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

TickCallback = Callable[[], Awaitable[Any]]


@runtime_checkable
class SchedulerBackend(Protocol):
    """Pluggable timing backend.

    A backend only calls the tick callback every ``interval_seconds``;
    successive ticks never overlap.

    Implementations:
        - ThreadSchedulerBackend: daemon thread, ``asyncio.run`` per tick (default)
        - AsyncioSchedulerBackend: task on the caller's running event loop
    """

    name: str

    def start(self, tick_callback: TickCallback, interval_seconds: float = 1.0) -> None:
        """Start calling ``tick_callback`` on a fixed interval."""
        ...

    def stop(self) -> None:
        """Stop the loop, waiting for an in-progress tick where possible."""
        ...

    def health(self) -> dict[str, Any]:
        """Return at least ``healthy``, ``backend``, ``tick_count`` and ``last_tick``."""
        ...


@dataclass
class BackendHealth:
    """Structured backend health response."""

    healthy: bool
    backend: str
    tick_count: int = 0
    last_tick: datetime | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "backend": self.backend,
            "tick_count": self.tick_count,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            **self.extra,
        }
