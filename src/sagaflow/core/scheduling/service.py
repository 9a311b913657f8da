"""Workflow scheduler - fires registered workflows at an instant or on a cron cadence.

Manifesto:
    The scheduler knows workflows only by name. Each tick it finds the
    entries whose time has come, resolves them through the registry and
    hands them to the runner. Timing is delegated to a backend (beat-as-poller)
    so tests can drive ``tick()`` directly with an injected clock.

┌──────────────────────────────────────────────────────────────────────────────┐
│  WORKFLOW SCHEDULER                                                           │
│                                                                               │
│   schedule(name, at, ctx)          ─┐                                        │
│   schedule_cron(name, expr, fac)   ─┼──►  pending {id: ScheduledEntry}       │
│   cancel(id)                       ─┘     (threading.Lock)                   │
│                                                    │                          │
│   backend ──tick()──►  due = execute_at <= now, not in flight                │
│                        for each due entry (sequentially):                    │
│                          ├── registry.resolve(name)                          │
│                          ├── runner.execute(workflow, context)               │
│                          └── one-shot: remove                                │
│                              recurring: execute_at = next occurrence > now   │
│                                         (removed when none in horizon)       │
└──────────────────────────────────────────────────────────────────────────────┘

An entry still running when the next tick finds it due again is skipped
for that tick rather than started a second time.

Tags:
    sagaflow, scheduling, orchestrator, beat-as-poller, cron, service

Doc-Types:
    api-reference, architecture-diagram
"""

from __future__ import annotations

import dataclasses
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from sagaflow.core.config import SchedulerBackendKind, get_settings
from sagaflow.core.errors import ScheduleError
from sagaflow.core.logging import get_logger
from sagaflow.core.scheduling.cron import CronExpression
from sagaflow.core.scheduling.protocol import SchedulerBackend

if TYPE_CHECKING:
    from sagaflow.orchestration.workflow_context import WorkflowContext
    from sagaflow.orchestration.workflow_registry import WorkflowRegistry
    from sagaflow.orchestration.workflow_runner import WorkflowRunner

logger = get_logger(__name__)

Clock = Callable[[], datetime]
ContextFactory = Callable[[], "WorkflowContext"]


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class ScheduledEntry:
    """A pending one-shot or recurring schedule."""

    id: str
    workflow_name: str
    execute_at: datetime
    cron_expression: str | None = None
    context: WorkflowContext | None = None
    context_factory: ContextFactory | None = None
    created_at: datetime = field(default_factory=_utcnow)
    run_count: int = 0

    @property
    def is_recurring(self) -> bool:
        return self.cron_expression is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workflow_name": self.workflow_name,
            "execute_at": self.execute_at.isoformat(),
            "cron_expression": self.cron_expression,
            "is_recurring": self.is_recurring,
            "created_at": self.created_at.isoformat(),
            "run_count": self.run_count,
        }


@dataclass
class SchedulerStats:
    """Counters for the scheduler."""

    tick_count: int = 0
    executed: int = 0
    failed: int = 0
    skipped: int = 0
    expired: int = 0
    last_tick: datetime | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tick_count": self.tick_count,
            "executed": self.executed,
            "failed": self.failed,
            "skipped": self.skipped,
            "expired": self.expired,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            "last_error": self.last_error,
        }


def create_backend(kind: SchedulerBackendKind | str | None = None) -> SchedulerBackend:
    """Build the backend named by ``kind`` (defaults to ``SAGAFLOW_SCHEDULER_BACKEND``)."""
    from sagaflow.core.scheduling.asyncio_backend import AsyncioSchedulerBackend
    from sagaflow.core.scheduling.thread_backend import ThreadSchedulerBackend

    kind = SchedulerBackendKind(kind or get_settings().scheduler_backend)
    if kind is SchedulerBackendKind.ASYNCIO:
        return AsyncioSchedulerBackend()
    return ThreadSchedulerBackend()


class WorkflowScheduler:
    """Runs registered workflows at scheduled times.

    Example:
        >>> scheduler = WorkflowScheduler(registry)
        >>> await scheduler.schedule("reports.daily", datetime.now(UTC) + timedelta(minutes=5))
        >>> await scheduler.schedule_cron("cleanup", "*/15 * * * *")
        >>> scheduler.start()
        >>> # ... later ...
        >>> scheduler.stop()

    Tests drive ``tick()`` directly and inject ``clock`` to control ``now``.
    """

    def __init__(
        self,
        registry: WorkflowRegistry | None = None,
        runner: WorkflowRunner | None = None,
        backend: SchedulerBackend | None = None,
        clock: Clock | None = None,
        interval_seconds: float | None = None,
        horizon: timedelta | None = None,
    ) -> None:
        from sagaflow.orchestration.workflow_registry import get_default_registry
        from sagaflow.orchestration.workflow_runner import WorkflowRunner

        settings = get_settings()
        self.registry = registry if registry is not None else get_default_registry()
        self.runner = runner or WorkflowRunner()
        self.backend = backend
        self.clock = clock or _utcnow
        self.interval = interval_seconds if interval_seconds is not None else settings.scheduler_interval_seconds
        if self.interval <= 0:
            raise ValueError("interval_seconds must be positive")
        self.horizon = horizon or timedelta(days=settings.cron_horizon_days)

        self._pending: dict[str, ScheduledEntry] = {}
        self._crons: dict[str, CronExpression] = {}
        self._in_flight: set[str] = set()
        self._lock = threading.Lock()
        self._stats = SchedulerStats()
        self._running = False

    # === Scheduling ===

    def _now(self) -> datetime:
        return self.clock()

    def _align(self, when: datetime) -> datetime:
        """Give naive times the clock's zone so comparisons with ``now`` work."""
        now = self._now()
        if when.tzinfo is None and now.tzinfo is not None:
            return when.replace(tzinfo=now.tzinfo)
        if when.tzinfo is not None and now.tzinfo is None:
            raise ValueError("execute_at is timezone-aware but the scheduler clock is naive")
        return when

    async def schedule(
        self,
        workflow_name: str,
        execute_at: datetime,
        context: WorkflowContext | None = None,
    ) -> str:
        """Run ``workflow_name`` once at (or after) ``execute_at``; return the schedule id."""
        if not workflow_name:
            raise ValueError("workflow_name must be a non-empty string")
        entry = ScheduledEntry(
            id=uuid.uuid4().hex,
            workflow_name=workflow_name,
            execute_at=self._align(execute_at),
            context=context,
            created_at=self._now(),
        )
        with self._lock:
            self._pending[entry.id] = entry
        logger.info(
            "schedule.created",
            schedule_id=entry.id,
            workflow=workflow_name,
            execute_at=entry.execute_at.isoformat(),
        )
        return entry.id

    async def schedule_cron(
        self,
        workflow_name: str,
        cron_expression: str,
        context_factory: ContextFactory | None = None,
    ) -> str:
        """Run ``workflow_name`` every time ``cron_expression`` fires.

        ``context_factory`` builds a fresh context for each run.

        Raises:
            CronFormatError: the expression does not parse
            ScheduleError: the expression never fires within the horizon
        """
        if not workflow_name:
            raise ValueError("workflow_name must be a non-empty string")
        cron = CronExpression.parse(cron_expression)
        now = self._now()
        first = cron.next_occurrence(now, self.horizon)
        if first is None:
            raise ScheduleError(
                f"Cron expression '{cron_expression}' has no occurrence within {self.horizon.days} days"
            ).with_context(workflow=workflow_name)
        entry = ScheduledEntry(
            id=uuid.uuid4().hex,
            workflow_name=workflow_name,
            execute_at=first,
            cron_expression=cron.expression,
            context_factory=context_factory,
            created_at=now,
        )
        with self._lock:
            self._pending[entry.id] = entry
            self._crons[entry.id] = cron
        logger.info(
            "schedule.created",
            schedule_id=entry.id,
            workflow=workflow_name,
            cron=cron.expression,
            execute_at=first.isoformat(),
        )
        return entry.id

    async def cancel(self, schedule_id: str) -> bool:
        """Remove a pending entry; ``False`` when the id is unknown."""
        with self._lock:
            entry = self._pending.pop(schedule_id, None)
            self._crons.pop(schedule_id, None)
        if entry is None:
            return False
        logger.info("schedule.cancelled", schedule_id=schedule_id, workflow=entry.workflow_name)
        return True

    async def get_pending(self) -> list[ScheduledEntry]:
        """Snapshot of pending entries ordered by ``execute_at``."""
        with self._lock:
            entries = [dataclasses.replace(e) for e in self._pending.values()]
        return sorted(entries, key=lambda e: e.execute_at)

    # === Tick Processing ===

    async def tick(self) -> int:
        """Run every entry due now; return how many were run."""
        now = self._now()
        with self._lock:
            self._stats.tick_count += 1
            self._stats.last_tick = now
            due: list[ScheduledEntry] = []
            for entry in self._pending.values():
                if entry.execute_at > now:
                    continue
                if entry.id in self._in_flight:
                    self._stats.skipped += 1
                    logger.debug("schedule.skipped", schedule_id=entry.id, reason="in_flight")
                    continue
                self._in_flight.add(entry.id)
                due.append(entry)
        due.sort(key=lambda e: e.execute_at)

        if not due:
            logger.debug("scheduler.tick.idle")
            return 0

        logger.info("scheduler.tick", due=len(due))
        for entry in due:
            try:
                await self._run_entry(entry)
            finally:
                self._settle(entry, now)
        return len(due)

    async def _run_entry(self, entry: ScheduledEntry) -> None:
        try:
            workflow = self.registry.resolve(entry.workflow_name)
            context = entry.context
            if entry.is_recurring and entry.context_factory is not None:
                context = entry.context_factory()
            result = await self.runner.execute(workflow, context)
        except Exception as exc:
            with self._lock:
                self._stats.failed += 1
                self._stats.last_error = str(exc)
            logger.exception(
                "schedule.failed",
                schedule_id=entry.id,
                workflow=entry.workflow_name,
                error_type=type(exc).__name__,
            )
            return

        with self._lock:
            self._stats.executed += 1
            entry.run_count += 1
        log = logger.info if result.succeeded else logger.warning
        log(
            "schedule.executed",
            schedule_id=entry.id,
            workflow=entry.workflow_name,
            run_id=result.run_id,
            status=result.status.value,
        )

    def _settle(self, entry: ScheduledEntry, now: datetime) -> None:
        with self._lock:
            self._in_flight.discard(entry.id)
            if entry.id not in self._pending:
                return  # cancelled while running
            cron = self._crons.get(entry.id)
            if cron is None:
                del self._pending[entry.id]
                return
            following = cron.next_occurrence(now, self.horizon)
            if following is None:
                del self._pending[entry.id]
                del self._crons[entry.id]
                self._stats.expired += 1
                logger.info("schedule.expired", schedule_id=entry.id, workflow=entry.workflow_name)
                return
            entry.execute_at = following

    # === Lifecycle ===

    def start(self) -> None:
        """Start ticking on the backend (chosen from settings when not given)."""
        if self._running:
            logger.warning("scheduler.already_running")
            return
        if self.backend is None:
            self.backend = create_backend()
        logger.info("scheduler.start", backend=self.backend.name, interval_seconds=self.interval)
        self.backend.start(self.tick, self.interval)
        self._running = True

    def stop(self) -> None:
        if not self._running:
            return
        logger.info("scheduler.stop")
        if self.backend is not None:
            self.backend.stop()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def executed_count(self) -> int:
        return self._stats.executed

    # === Health & Stats ===

    def get_stats(self) -> SchedulerStats:
        with self._lock:
            return dataclasses.replace(self._stats)

    def health(self) -> dict[str, Any]:
        backend_health = self.backend.health() if self.backend is not None else None
        with self._lock:
            pending = len(self._pending)
            recurring = len(self._crons)
        healthy = self._running and bool(backend_health and backend_health.get("healthy"))
        return {
            "healthy": healthy,
            "running": self._running,
            "backend": backend_health,
            "pending": pending,
            "recurring": recurring,
            "stats": self.get_stats().to_dict(),
        }


__all__ = [
    "ScheduledEntry",
    "SchedulerStats",
    "WorkflowScheduler",
    "create_backend",
]
