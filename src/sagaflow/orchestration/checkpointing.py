"""Checkpointing - persist run progress after each leaf and resume later.

ARCHITECTURE
────────────
::

    CheckpointMiddleware(store)        ── after every successful leaf:
        store.save_checkpoint(run_id, WorkflowCheckpoint(...))

    CheckpointStore (protocol)         ── save / load / delete by run id
      └── InMemoryCheckpointStore      ── process-local reference store

    WorkflowResumeEngine(store)
      execute(workflow, ctx)           ── run with checkpointing enabled
      resume(workflow, run_id)         ── replace properties with the saved ones,
                                          continue after the last completed
                                          top-level step (or from the start when
                                          nothing was saved), delete the
                                          checkpoint on success

``step_index`` is the last *top-level* node known to be complete. A leaf
nested inside a conditional, parallel group or sub-workflow records the
index before its enclosing node, so resuming re-runs that node whole.

Persistence backends (SQL, document stores, files) implement
:class:`CheckpointStore`; ``WorkflowCheckpoint`` is a pydantic model so
``model_dump_json()`` / ``model_validate_json()`` cover serialization.
Resuming does not roll back steps completed before the checkpoint.

Tags:
    sagaflow, orchestration, checkpoint, resume, persistence

Doc-Types:
    api-reference
"""

from __future__ import annotations

import dataclasses
import threading
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from sagaflow.core.logging import get_logger
from sagaflow.orchestration.exceptions import CheckpointNotFoundError
from sagaflow.orchestration.middleware import Middleware, NextDelegate
from sagaflow.orchestration.workflow import Workflow
from sagaflow.orchestration.workflow_context import WorkflowContext, WorkflowStatus
from sagaflow.orchestration.workflow_runner import WorkflowResult, WorkflowRunner

if TYPE_CHECKING:
    from sagaflow.orchestration.step_types import Step

logger = get_logger(__name__)


class WorkflowCheckpoint(BaseModel):
    """Snapshot of a run's progress."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    workflow_name: str = ""
    correlation_id: str | None = None
    step_index: int = Field(default=-1, ge=-1)
    step_name: str | None = None
    status: WorkflowStatus = WorkflowStatus.RUNNING
    properties: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


@runtime_checkable
class CheckpointStore(Protocol):
    """Contract for checkpoint persistence backends."""

    async def save_checkpoint(self, run_id: str, checkpoint: WorkflowCheckpoint) -> None: ...

    async def load_checkpoint(self, run_id: str) -> WorkflowCheckpoint | None: ...

    async def delete_checkpoint(self, run_id: str) -> bool: ...


class InMemoryCheckpointStore:
    """Process-local :class:`CheckpointStore`."""

    def __init__(self) -> None:
        self._checkpoints: dict[str, WorkflowCheckpoint] = {}
        self._lock = threading.Lock()
        self.save_count = 0

    async def save_checkpoint(self, run_id: str, checkpoint: WorkflowCheckpoint) -> None:
        with self._lock:
            self._checkpoints[run_id] = checkpoint.model_copy(deep=True)
            self.save_count += 1

    async def load_checkpoint(self, run_id: str) -> WorkflowCheckpoint | None:
        with self._lock:
            checkpoint = self._checkpoints.get(run_id)
        return checkpoint.model_copy(deep=True) if checkpoint else None

    async def delete_checkpoint(self, run_id: str) -> bool:
        with self._lock:
            return self._checkpoints.pop(run_id, None) is not None

    def run_ids(self) -> list[str]:
        with self._lock:
            return list(self._checkpoints)

    def __len__(self) -> int:
        return len(self._checkpoints)


class CheckpointMiddleware(Middleware):
    """Saves a checkpoint after every leaf that completes without error."""

    def __init__(self, store: CheckpointStore, workflow_name: str = ""):
        self.store = store
        self.workflow_name = workflow_name

    async def invoke(self, context: WorkflowContext, step: Step, call_next: NextDelegate) -> None:
        await call_next(context)
        completed_index = context.current_step_index if context.depth == 0 else context.current_step_index - 1
        checkpoint = WorkflowCheckpoint(
            run_id=context.run_id,
            workflow_name=self.workflow_name,
            correlation_id=context.correlation_id,
            step_index=max(completed_index, -1),
            step_name=step.name,
            status=WorkflowStatus.RUNNING,
            properties=context.snapshot_properties(),
        )
        await self.store.save_checkpoint(context.run_id, checkpoint)
        logger.debug("checkpoint.saved", step=step.name, step_index=checkpoint.step_index)


class WorkflowResumeEngine:
    """Runs workflows with checkpointing and resumes them after a failure."""

    def __init__(self, store: CheckpointStore, runner: WorkflowRunner | None = None):
        self.store = store
        self.runner = runner or WorkflowRunner()

    def _with_checkpointing(self, workflow: Workflow) -> Workflow:
        if any(isinstance(m, CheckpointMiddleware) for m in workflow.middleware):
            return workflow
        middleware = (CheckpointMiddleware(self.store, workflow.name), *workflow.middleware)
        return dataclasses.replace(workflow, middleware=middleware)

    async def execute(self, workflow: Workflow, context: WorkflowContext | None = None) -> WorkflowResult:
        """Run from the start, checkpointing as leaves complete."""
        context = context or workflow.create_context()
        result = await self.runner.execute(self._with_checkpointing(workflow), context)
        await self._settle(workflow, result)
        return result

    async def resume(
        self,
        workflow: Workflow,
        run_id: str,
        context: WorkflowContext | None = None,
        *,
        require_checkpoint: bool = False,
    ) -> WorkflowResult:
        """Continue ``run_id`` after its last completed top-level step.

        The context's properties are replaced by the saved ones. When nothing
        was saved for ``run_id`` the workflow runs from its first step under
        that run id, unless ``require_checkpoint`` is set.

        Raises:
            CheckpointNotFoundError: nothing was saved for ``run_id`` and
                ``require_checkpoint`` is set
        """
        checkpoint = await self.store.load_checkpoint(run_id)
        if checkpoint is None and require_checkpoint:
            raise CheckpointNotFoundError(run_id)

        if context is None:
            context = WorkflowContext(run_id=run_id)
        context.run_id = run_id

        if checkpoint is None:
            logger.info("workflow.resume_from_start", workflow=workflow.name, run_id=run_id)
            result = await self.runner.execute(self._with_checkpointing(workflow), context)
            await self._settle(workflow, result)
            return result

        if checkpoint.correlation_id:
            context.correlation_id = checkpoint.correlation_id
        context.properties.clear()
        context.properties.update(checkpoint.properties)

        start_at = min(checkpoint.step_index + 1, len(workflow.steps))
        logger.info(
            "workflow.resume",
            workflow=workflow.name,
            run_id=run_id,
            start_at=start_at,
            last_step=checkpoint.step_name,
        )
        result = await self.runner.execute(self._with_checkpointing(workflow), context, start_at=start_at)
        await self._settle(workflow, result)
        return result

    async def _settle(self, workflow: Workflow, result: WorkflowResult) -> None:
        run_id = result.run_id
        if result.status is WorkflowStatus.COMPLETED:
            await self.store.delete_checkpoint(run_id)
            return
        previous = await self.store.load_checkpoint(run_id)
        failed = result.errors[0].step_name if result.errors else None
        await self.store.save_checkpoint(
            run_id,
            WorkflowCheckpoint(
                run_id=run_id,
                workflow_name=workflow.name,
                correlation_id=result.context.correlation_id,
                step_index=previous.step_index if previous else -1,
                step_name=failed or (previous.step_name if previous else None),
                status=result.status,
                properties=result.context.snapshot_properties(),
            ),
        )
