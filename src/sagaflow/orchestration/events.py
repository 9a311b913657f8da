"""Workflow lifecycle hooks.

Subclass :class:`WorkflowEvents`, override the hooks you care about and
register the instance with ``builder.with_events(...)``. Hooks are awaited
inline by the runner. A hook that raises is logged and ignored; it never
changes the outcome of the run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from sagaflow.orchestration.step_types import Step
    from sagaflow.orchestration.workflow import Workflow
    from sagaflow.orchestration.workflow_context import WorkflowContext
    from sagaflow.orchestration.workflow_runner import WorkflowResult


class WorkflowEvents:
    """No-op base; every hook is optional."""

    async def on_workflow_started(self, workflow: Workflow, context: WorkflowContext) -> None:
        pass

    async def on_workflow_completed(self, workflow: Workflow, result: WorkflowResult) -> None:
        pass

    async def on_workflow_failed(self, workflow: Workflow, result: WorkflowResult) -> None:
        pass

    async def on_workflow_aborted(self, workflow: Workflow, result: WorkflowResult) -> None:
        pass

    async def on_step_started(self, context: WorkflowContext, step: Step) -> None:
        pass

    async def on_step_completed(self, context: WorkflowContext, step: Step) -> None:
        pass

    async def on_step_failed(self, context: WorkflowContext, step: Step, error: BaseException) -> None:
        pass

    async def on_compensation(self, context: WorkflowContext, step: Step, error: BaseException | None) -> None:
        """Called after each undo; ``error`` is set when the undo failed."""


@dataclass
class RecordedEvent:
    name: str
    step: str | None = None
    detail: Any = None
    at: datetime = field(default_factory=lambda: datetime.now(UTC))


class RecordingEvents(WorkflowEvents):
    """Keeps every hook call in memory; handy in tests and debugging sessions."""

    def __init__(self) -> None:
        self.events: list[RecordedEvent] = []

    @property
    def names(self) -> list[str]:
        return [e.name for e in self.events]

    async def on_workflow_started(self, workflow: Workflow, context: WorkflowContext) -> None:
        self.events.append(RecordedEvent("workflow_started", detail=workflow.name))

    async def on_workflow_completed(self, workflow: Workflow, result: WorkflowResult) -> None:
        self.events.append(RecordedEvent("workflow_completed", detail=result.status))

    async def on_workflow_failed(self, workflow: Workflow, result: WorkflowResult) -> None:
        self.events.append(RecordedEvent("workflow_failed", detail=result.status))

    async def on_workflow_aborted(self, workflow: Workflow, result: WorkflowResult) -> None:
        self.events.append(RecordedEvent("workflow_aborted", detail=result.status))

    async def on_step_started(self, context: WorkflowContext, step: Step) -> None:
        self.events.append(RecordedEvent("step_started", step=step.name))

    async def on_step_completed(self, context: WorkflowContext, step: Step) -> None:
        self.events.append(RecordedEvent("step_completed", step=step.name))

    async def on_step_failed(self, context: WorkflowContext, step: Step, error: BaseException) -> None:
        self.events.append(RecordedEvent("step_failed", step=step.name, detail=str(error)))

    async def on_compensation(self, context: WorkflowContext, step: Step, error: BaseException | None) -> None:
        self.events.append(RecordedEvent("compensation", step=step.name, detail=error))
