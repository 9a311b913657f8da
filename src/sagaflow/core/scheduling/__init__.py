"""Scheduling - cron evaluation, timing backends and the workflow scheduler.

Example:
    >>> from sagaflow.core.scheduling import WorkflowScheduler
    >>> scheduler = WorkflowScheduler(registry)
    >>> await scheduler.schedule_cron("reports.daily", "0 6 * * 1-5")
    >>> scheduler.start()
"""

from sagaflow.core.scheduling.asyncio_backend import AsyncioSchedulerBackend
from sagaflow.core.scheduling.cron import DEFAULT_HORIZON, CronExpression, get_next_occurrence
from sagaflow.core.scheduling.protocol import BackendHealth, SchedulerBackend, TickCallback
from sagaflow.core.scheduling.service import (
    ScheduledEntry,
    SchedulerStats,
    WorkflowScheduler,
    create_backend,
)
from sagaflow.core.scheduling.thread_backend import ThreadSchedulerBackend

__all__ = [
    "AsyncioSchedulerBackend",
    "BackendHealth",
    "CronExpression",
    "DEFAULT_HORIZON",
    "ScheduledEntry",
    "SchedulerBackend",
    "SchedulerStats",
    "ThreadSchedulerBackend",
    "TickCallback",
    "WorkflowScheduler",
    "create_backend",
    "get_next_occurrence",
]
