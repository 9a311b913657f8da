"""Tests for WorkflowScheduler, driven by tick() and an injected clock."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from sagaflow.core.config import clear_settings_cache
from sagaflow.core.errors import CronFormatError, ScheduleError
from sagaflow.core.scheduling import (
    AsyncioSchedulerBackend,
    SchedulerBackend,
    ThreadSchedulerBackend,
    WorkflowScheduler,
    create_backend,
)
from sagaflow.orchestration import (
    Step,
    Workflow,
    WorkflowContext,
    WorkflowRegistry,
    WorkflowStatus,
    register_workflow,
)


class ContextStep(Step):
    """Journals ``(name, context)`` for every run."""

    def __init__(self, name, runs):
        self.name = name
        self.runs = runs

    async def execute(self, context):
        self.runs.append((self.name, context))


class GateStep(Step):
    """Blocks until ``release`` is set."""

    name = "Gate"

    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def execute(self, context):
        self.started.set()
        await self.release.wait()


class RecordingBackend:
    name = "fake"

    def __init__(self):
        self.starts = []
        self.stopped = False

    def start(self, tick_callback, interval_seconds=1.0):
        self.starts.append((tick_callback, interval_seconds))

    def stop(self):
        self.stopped = True

    def health(self):
        return {"healthy": bool(self.starts) and not self.stopped, "backend": self.name}


@pytest.fixture
def runs():
    return []


@pytest.fixture
def registry(runs):
    registry = WorkflowRegistry()
    registry.register("report", lambda: Workflow.create("report").step(ContextStep("report", runs)).build())
    registry.register("cleanup", lambda: Workflow.create("cleanup").step(ContextStep("cleanup", runs)).build())
    return registry


@pytest.fixture
def scheduler(registry, clock):
    return WorkflowScheduler(registry, clock=clock)


def names(runs):
    return [name for name, _ in runs]


# =============================================================================
# One-shot schedules
# =============================================================================


class TestOneShot:
    @pytest.mark.asyncio
    async def test_schedule_adds_pending_entry(self, scheduler, clock):
        at = clock.now + timedelta(minutes=5)
        schedule_id = await scheduler.schedule("report", at)

        pending = await scheduler.get_pending()
        assert [e.id for e in pending] == [schedule_id]
        entry = pending[0]
        assert entry.workflow_name == "report"
        assert entry.execute_at == at
        assert not entry.is_recurring
        assert entry.created_at == clock.now
        assert entry.to_dict()["is_recurring"] is False

    @pytest.mark.asyncio
    async def test_runs_once_when_due(self, scheduler, clock, runs):
        await scheduler.schedule("report", clock.now + timedelta(minutes=5))

        assert await scheduler.tick() == 0
        assert runs == []

        clock.advance(minutes=5)
        assert await scheduler.tick() == 1
        assert names(runs) == ["report"]
        assert await scheduler.get_pending() == []
        assert scheduler.executed_count == 1

        clock.advance(minutes=5)
        assert await scheduler.tick() == 0
        assert names(runs) == ["report"]

    @pytest.mark.asyncio
    async def test_past_time_runs_on_next_tick(self, scheduler, clock, runs):
        await scheduler.schedule("report", clock.now - timedelta(hours=1))
        assert await scheduler.tick() == 1
        assert names(runs) == ["report"]

    @pytest.mark.asyncio
    async def test_due_entries_run_in_time_order(self, scheduler, clock, runs):
        await scheduler.schedule("cleanup", clock.now + timedelta(minutes=2))
        await scheduler.schedule("report", clock.now + timedelta(minutes=1))

        clock.advance(minutes=3)
        assert await scheduler.tick() == 2
        assert names(runs) == ["report", "cleanup"]

    @pytest.mark.asyncio
    async def test_supplied_context_is_used(self, scheduler, clock, runs):
        ctx = WorkflowContext.create({"tenant": "acme"})
        await scheduler.schedule("report", clock.now, ctx)

        await scheduler.tick()

        assert runs[0][1] is ctx
        assert ctx.status is WorkflowStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_naive_time_takes_clock_zone(self, scheduler, clock):
        await scheduler.schedule("report", datetime(2024, 1, 1, 11, 0))
        pending = await scheduler.get_pending()
        assert pending[0].execute_at == datetime(2024, 1, 1, 11, 0, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_aware_time_with_naive_clock_rejected(self, registry):
        naive = WorkflowScheduler(registry, clock=lambda: datetime(2024, 1, 1))
        with pytest.raises(ValueError, match="naive"):
            await naive.schedule("report", datetime(2024, 1, 2, tzinfo=UTC))

    @pytest.mark.asyncio
    async def test_blank_name_rejected(self, scheduler, clock):
        with pytest.raises(ValueError):
            await scheduler.schedule("", clock.now)

    @pytest.mark.asyncio
    async def test_get_pending_returns_copies(self, scheduler, clock):
        await scheduler.schedule("report", clock.now + timedelta(minutes=1))
        (entry,) = await scheduler.get_pending()
        entry.execute_at = clock.now - timedelta(days=1)

        assert await scheduler.tick() == 0


# =============================================================================
# Cancellation
# =============================================================================


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_removes_entry(self, scheduler, clock, runs):
        schedule_id = await scheduler.schedule("report", clock.now + timedelta(minutes=1))

        assert await scheduler.cancel(schedule_id) is True
        assert await scheduler.cancel(schedule_id) is False

        clock.advance(minutes=2)
        assert await scheduler.tick() == 0
        assert runs == []

    @pytest.mark.asyncio
    async def test_cancel_unknown_id(self, scheduler):
        assert await scheduler.cancel("nope") is False

    @pytest.mark.asyncio
    async def test_cancel_recurring_while_running_is_not_rescheduled(self, clock):
        gate = GateStep()
        registry = WorkflowRegistry()
        registry.register("gated", Workflow.create("gated").step(gate).build())
        scheduler = WorkflowScheduler(registry, clock=clock)
        schedule_id = await scheduler.schedule_cron("gated", "* * * * *")
        clock.advance(minutes=1)

        running = asyncio.create_task(scheduler.tick())
        await asyncio.wait_for(gate.started.wait(), timeout=1.0)
        assert await scheduler.cancel(schedule_id) is True
        gate.release.set()

        assert await running == 1
        assert await scheduler.get_pending() == []
        assert scheduler.health()["recurring"] == 0


# =============================================================================
# Recurring schedules
# =============================================================================


class TestCron:
    @pytest.mark.asyncio
    async def test_first_occurrence_from_clock(self, scheduler):
        await scheduler.schedule_cron("report", "30 * * * *")
        (entry,) = await scheduler.get_pending()

        assert entry.is_recurring
        assert entry.cron_expression == "30 * * * *"
        assert entry.execute_at == datetime(2024, 1, 1, 10, 30, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_reschedules_after_each_run(self, scheduler, clock, runs):
        await scheduler.schedule_cron("report", "30 * * * *")

        clock.now = datetime(2024, 1, 1, 10, 30, tzinfo=UTC)
        assert await scheduler.tick() == 1
        (entry,) = await scheduler.get_pending()
        assert entry.execute_at == datetime(2024, 1, 1, 11, 30, tzinfo=UTC)
        assert entry.run_count == 1

        clock.advance(hours=1)
        assert await scheduler.tick() == 1
        assert names(runs) == ["report", "report"]
        (entry,) = await scheduler.get_pending()
        assert entry.run_count == 2

    @pytest.mark.asyncio
    async def test_missed_occurrences_collapse_into_one_run(self, scheduler, clock, runs):
        await scheduler.schedule_cron("report", "30 * * * *")

        clock.now = datetime(2024, 1, 1, 13, 5, tzinfo=UTC)
        assert await scheduler.tick() == 1
        assert len(runs) == 1
        (entry,) = await scheduler.get_pending()
        assert entry.execute_at == datetime(2024, 1, 1, 13, 30, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_context_factory_builds_fresh_context_per_run(self, scheduler, clock, runs):
        made = []

        def factory():
            ctx = WorkflowContext.create({"n": len(made)})
            made.append(ctx)
            return ctx

        await scheduler.schedule_cron("report", "*/5 * * * *", factory)
        for _ in range(2):
            clock.advance(minutes=5)
            await scheduler.tick()

        assert [ctx for _, ctx in runs] == made
        assert [ctx.get("n") for ctx in made] == [0, 1]

    @pytest.mark.asyncio
    async def test_without_factory_each_run_gets_new_context(self, scheduler, clock, runs):
        await scheduler.schedule_cron("report", "* * * * *")
        clock.advance(minutes=1)
        await scheduler.tick()
        clock.advance(minutes=1)
        await scheduler.tick()

        assert runs[0][1] is not runs[1][1]

    @pytest.mark.asyncio
    async def test_invalid_expression(self, scheduler):
        with pytest.raises(CronFormatError):
            await scheduler.schedule_cron("report", "every minute")
        assert await scheduler.get_pending() == []

    @pytest.mark.asyncio
    async def test_expression_that_never_fires(self, scheduler):
        with pytest.raises(ScheduleError, match="no occurrence"):
            await scheduler.schedule_cron("report", "0 0 31 2 *")

    @pytest.mark.asyncio
    async def test_entry_expires_when_horizon_runs_out(self, registry, clock, runs):
        scheduler = WorkflowScheduler(registry, clock=clock, horizon=timedelta(days=40))
        await scheduler.schedule_cron("report", "0 12 1 1 *")

        clock.now = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
        assert await scheduler.tick() == 1

        assert names(runs) == ["report"]
        assert await scheduler.get_pending() == []
        assert scheduler.get_stats().expired == 1


# =============================================================================
# Failures and overlap
# =============================================================================


class TestTickFailures:
    @pytest.mark.asyncio
    async def test_unknown_workflow_is_counted_and_removed(self, scheduler, clock, runs):
        await scheduler.schedule("missing", clock.now)
        await scheduler.schedule("report", clock.now + timedelta(seconds=1))
        clock.advance(seconds=1)

        assert await scheduler.tick() == 2

        stats = scheduler.get_stats()
        assert stats.failed == 1
        assert stats.executed == 1
        assert "Workflow not found: missing" in stats.last_error
        assert names(runs) == ["report"]
        assert await scheduler.get_pending() == []

    @pytest.mark.asyncio
    async def test_recurring_entry_survives_failure(self, scheduler, clock):
        await scheduler.schedule_cron("missing", "* * * * *")
        clock.advance(minutes=1)
        await scheduler.tick()

        (entry,) = await scheduler.get_pending()
        assert entry.execute_at == datetime(2024, 1, 1, 10, 17, tzinfo=UTC)
        assert entry.run_count == 0

    @pytest.mark.asyncio
    async def test_faulted_workflow_still_counts_as_executed(self, clock, failing):
        registry = WorkflowRegistry()
        registry.register("broken", Workflow.create("broken").step(failing("Boom")).build())
        scheduler = WorkflowScheduler(registry, clock=clock)
        await scheduler.schedule("broken", clock.now)

        await scheduler.tick()

        stats = scheduler.get_stats()
        assert stats.executed == 1
        assert stats.failed == 0

    @pytest.mark.asyncio
    async def test_in_flight_entry_is_skipped(self, clock):
        gate = GateStep()
        registry = WorkflowRegistry()
        registry.register("gated", Workflow.create("gated").step(gate).build())
        scheduler = WorkflowScheduler(registry, clock=clock)
        await scheduler.schedule("gated", clock.now)

        first = asyncio.create_task(scheduler.tick())
        await asyncio.wait_for(gate.started.wait(), timeout=1.0)

        assert await scheduler.tick() == 0
        assert scheduler.get_stats().skipped == 1

        gate.release.set()
        assert await first == 1
        assert scheduler.executed_count == 1
        assert scheduler.get_stats().tick_count == 2


# =============================================================================
# Lifecycle and health
# =============================================================================


class TestLifecycle:
    def test_start_and_stop_drive_backend(self, scheduler):
        backend = RecordingBackend()
        scheduler.backend = backend

        scheduler.start()
        scheduler.start()

        assert scheduler.is_running
        assert backend.starts == [(scheduler.tick, scheduler.interval)]

        scheduler.stop()
        assert backend.stopped
        assert not scheduler.is_running

    def test_stop_when_not_started_is_noop(self, scheduler):
        scheduler.stop()
        assert not scheduler.is_running

    def test_recording_backend_satisfies_protocol(self):
        assert isinstance(RecordingBackend(), SchedulerBackend)
        assert isinstance(ThreadSchedulerBackend(), SchedulerBackend)
        assert isinstance(AsyncioSchedulerBackend(), SchedulerBackend)

    @pytest.mark.asyncio
    async def test_health(self, scheduler, clock):
        await scheduler.schedule("report", clock.now + timedelta(minutes=1))
        await scheduler.schedule_cron("cleanup", "0 * * * *")

        health = scheduler.health()
        assert health["healthy"] is False
        assert health["running"] is False
        assert health["backend"] is None
        assert health["pending"] == 2
        assert health["recurring"] == 1
        assert health["stats"]["tick_count"] == 0

        scheduler.backend = RecordingBackend()
        scheduler.start()
        assert scheduler.health()["healthy"] is True

    @pytest.mark.asyncio
    async def test_stats_snapshot(self, scheduler):
        await scheduler.tick()
        stats = scheduler.get_stats()
        stats.tick_count = 99
        assert scheduler.get_stats().tick_count == 1
        assert scheduler.get_stats().last_tick is not None

    def test_interval_must_be_positive(self, registry):
        with pytest.raises(ValueError):
            WorkflowScheduler(registry, interval_seconds=0)

    def test_interval_from_settings(self, registry, monkeypatch):
        monkeypatch.setenv("SAGAFLOW_SCHEDULER_INTERVAL_SECONDS", "2.5")
        clear_settings_cache()
        assert WorkflowScheduler(registry).interval == 2.5

    @pytest.mark.asyncio
    async def test_default_registry(self, clock, runs):
        register_workflow(Workflow.create("nightly").step(ContextStep("nightly", runs)).build())
        scheduler = WorkflowScheduler(clock=clock)
        await scheduler.schedule("nightly", clock.now)

        await scheduler.tick()
        assert names(runs) == ["nightly"]


class TestCreateBackend:
    def test_default_is_thread(self):
        assert isinstance(create_backend(), ThreadSchedulerBackend)

    def test_explicit_kind(self):
        assert isinstance(create_backend("asyncio"), AsyncioSchedulerBackend)

    def test_kind_from_settings(self, monkeypatch):
        monkeypatch.setenv("SAGAFLOW_SCHEDULER_BACKEND", "asyncio")
        clear_settings_cache()
        assert isinstance(create_backend(), AsyncioSchedulerBackend)

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            create_backend("cron-daemon")
