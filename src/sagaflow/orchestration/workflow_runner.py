"""Workflow Runner - the execution engine.

Manifesto:
    A run either finishes every step, stops on request, or fails. When it
fails and the workflow opted into saga mode, everything that can be undone
is undone, newest first. Whatever happens, ``execute`` hands back a
``WorkflowResult``; step failures never escape as exceptions.

ARCHITECTURE
────────────
::

    execute(workflow, context)
      │  NOT_STARTED → RUNNING
      ├── for each top-level node:
      │     ├── cancelled / aborted? ──────────────► ABORTED (no rollback)
      │     ├── LEAF         middleware chain → step.execute
      │     │                push onto undo stack when compensable
      │     ├── CONDITIONAL  predicate once → chosen branch, spliced in
      │     ├── PARALLEL     all members at once → join barrier
      │     ├── SUB_WORKFLOW steps, spliced in
      │     ├── FOR_EACH     selector once → body per item
      │     ├── WHILE        condition → body, until false
      │     ├── RETRY        body again after a failure, up to max_attempts
      │     └── TRY          body → matching handler → finally body
      │
      ├── failure, no saga ───────────────────────► FAULTED
      ├── failure, saga → undo stack in reverse ──► COMPENSATED
      └── otherwise ──────────────────────────────► COMPLETED

Concurrency:
    Top-level nodes run strictly one after another. Only parallel groups
    fan out, and all members share the run's context. Member failures are
    recorded in the order they were observed. A step that raises
    ``asyncio.CancelledError`` on its own cancels the run; cancelling the
    task that awaits ``execute`` still propagates.

Tags:
    sagaflow, orchestration, engine, saga, compensation, parallel, asyncio

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sagaflow.core.errors import WorkflowError
from sagaflow.core.logging import LogContext, get_logger
from sagaflow.orchestration.exceptions import OperationCancelledError, StepFailedError
from sagaflow.orchestration.middleware import build_chain
from sagaflow.orchestration.step_types import (
    FOREACH_CURRENT,
    FOREACH_INDEX,
    RETRY_ATTEMPT,
    CompensatingStep,
    ConditionalStep,
    ForEachStep,
    ParallelStep,
    RetryStep,
    Step,
    StepKind,
    TryStep,
    WhileStep,
    is_compensating,
    maybe_await,
)
from sagaflow.orchestration.workflow import TypedWorkflow, Workflow
from sagaflow.orchestration.workflow_context import (
    ErrorKind,
    StepError,
    WorkflowContext,
    WorkflowStatus,
)

logger = get_logger(__name__)


def _cancelled_by_step(context: WorkflowContext, step_name: str) -> OperationCancelledError | None:
    """Turn a ``CancelledError`` raised by step code into a run cancellation.

    Returns ``None`` when the task running the workflow is itself being
    cancelled; that ``CancelledError`` has to keep propagating.
    """
    task = asyncio.current_task()
    if task is not None and task.cancelling():
        return None
    context.cancellation.cancel(f"Step '{step_name}' was cancelled")
    logger.info("step.cancelled", step=step_name)
    return OperationCancelledError(context.cancellation.reason or "Operation was cancelled")


@dataclass
class WorkflowResult:
    """Outcome of one run."""

    workflow_name: str
    status: WorkflowStatus
    context: WorkflowContext
    started_at: datetime
    completed_at: datetime | None = None
    compensated_steps: list[str] = field(default_factory=list)

    @property
    def run_id(self) -> str:
        return self.context.run_id

    @property
    def errors(self) -> list[StepError]:
        return self.context.errors

    @property
    def error_messages(self) -> list[str]:
        return [e.message for e in self.context.errors]

    @property
    def succeeded(self) -> bool:
        return self.status is WorkflowStatus.COMPLETED

    @property
    def duration_seconds(self) -> float | None:
        if self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize for logging/storage."""
        return {
            "workflow_name": self.workflow_name,
            "run_id": self.run_id,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
            "current_step_index": self.context.current_step_index,
            "compensated_steps": self.compensated_steps,
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass
class _Run:
    """Bookkeeping private to one ``execute`` call."""

    workflow: Workflow
    context: WorkflowContext
    compensables: list[CompensatingStep] = field(default_factory=list)
    compensated: list[str] = field(default_factory=list)
    start_at: int = 0


class WorkflowRunner:
    """Executes workflows against a context.

    A runner holds no per-run state, so one instance (and one workflow)
    may serve many concurrent runs as long as each gets its own context.
    """

    async def execute(
        self,
        workflow: Workflow,
        context: WorkflowContext | None = None,
        *,
        start_at: int = 0,
    ) -> WorkflowResult:
        """Run ``workflow`` to a terminal status.

        ``start_at`` skips the first top-level nodes; the resume engine uses it
        to continue a checkpointed run with stable step indexes.

        Raises:
            WorkflowError: ``context`` was already used for a run
            TypeError: a typed workflow received a context without matching data
            ValueError: ``start_at`` is outside the workflow
        """
        if not 0 <= start_at <= len(workflow.steps):
            raise ValueError(f"start_at={start_at} is outside 0..{len(workflow.steps)}")
        if context is None:
            context = workflow.create_context()
        if isinstance(workflow, TypedWorkflow):
            workflow.check_context(context)
        if context.status is not WorkflowStatus.NOT_STARTED:
            raise WorkflowError(
                f"Context {context.run_id} is {context.status.value}; create a new context per run"
            ).with_context(workflow=workflow.name, run_id=context.run_id)

        run = _Run(workflow=workflow, context=context, start_at=start_at)
        context.status = WorkflowStatus.RUNNING
        context.started_at = datetime.now(UTC)

        async with LogContext(workflow=workflow.name, run_id=context.run_id):
            logger.info(
                "workflow.start",
                steps=len(workflow.steps),
                compensation=workflow.compensation_enabled,
            )
            await self._emit(workflow, "on_workflow_started", workflow, context)

            status = await self._run(run)
            context.status = status
            result = WorkflowResult(
                workflow_name=workflow.name,
                status=status,
                context=context,
                started_at=context.started_at,
                completed_at=datetime.now(UTC),
                compensated_steps=list(run.compensated),
            )

            logger.info(
                "workflow.complete",
                status=status.value,
                duration_seconds=result.duration_seconds,
                errors=len(context.errors),
            )
            if status is WorkflowStatus.COMPLETED:
                await self._emit(workflow, "on_workflow_completed", workflow, result)
            elif status is WorkflowStatus.ABORTED:
                await self._emit(workflow, "on_workflow_aborted", workflow, result)
            else:
                await self._emit(workflow, "on_workflow_failed", workflow, result)
        return result

    # =========================================================================
    # Top-level loop
    # =========================================================================

    async def _run(self, run: _Run) -> WorkflowStatus:
        workflow, context = run.workflow, run.context
        try:
            for index in range(run.start_at, len(workflow.steps)):
                node = workflow.steps[index]
                if context.cancellation.is_cancelled or context.aborted:
                    return self._abort(context)
                context.current_step_index = index
                context.current_step_name = node.name
                await self._emit(workflow, "on_step_started", context, node)
                try:
                    await self._run_node(run, node)
                except StepFailedError as failure:
                    await self._emit(workflow, "on_step_failed", context, node, failure.cause or failure)
                    raise
                await self._emit(workflow, "on_step_completed", context, node)
        except OperationCancelledError:
            return self._abort(context)
        except StepFailedError as failure:
            return await self._fail(run, failure)
        return WorkflowStatus.COMPLETED

    def _abort(self, context: WorkflowContext) -> WorkflowStatus:
        context.aborted = True
        logger.info(
            "workflow.aborted",
            step_index=context.current_step_index,
            reason=context.cancellation.reason,
        )
        return WorkflowStatus.ABORTED

    async def _fail(self, run: _Run, failure: StepFailedError) -> WorkflowStatus:
        context = run.context
        errors = [
            StepError.from_exception(f.step_name, f.cause or f)
            for f in (failure, *failure.siblings)
        ]
        logger.warning(
            "workflow.step_failed",
            step=failure.step_name,
            error=failure.message,
            failed_members=len(errors),
        )
        if not run.workflow.compensation_enabled:
            context.errors.extend(errors)
            return WorkflowStatus.FAULTED

        undo_errors = await self._compensate(run)
        context.errors.extend(errors)
        context.errors.extend(undo_errors)
        return WorkflowStatus.COMPENSATED

    # =========================================================================
    # Node dispatch
    # =========================================================================

    async def _run_node(self, run: _Run, node: Step) -> None:
        if node.kind is StepKind.LEAF:
            await self._run_leaf(run, node)
            return

        context = run.context
        context.depth += 1
        try:
            if node.kind is StepKind.CONDITIONAL:
                await self._run_conditional(run, node)  # type: ignore[arg-type]
            elif node.kind is StepKind.PARALLEL:
                await self._run_parallel(run, node)  # type: ignore[arg-type]
            elif node.kind is StepKind.SUB_WORKFLOW:
                await self._run_sequence(run, node.workflow.steps)  # type: ignore[attr-defined]
            elif node.kind is StepKind.FOR_EACH:
                await self._run_for_each(run, node)  # type: ignore[arg-type]
            elif node.kind is StepKind.WHILE:
                await self._run_while(run, node)  # type: ignore[arg-type]
            elif node.kind is StepKind.RETRY:
                await self._run_retry(run, node)  # type: ignore[arg-type]
            elif node.kind is StepKind.TRY:
                await self._run_try(run, node)  # type: ignore[arg-type]
            else:
                raise WorkflowError(f"Unsupported step kind: {node.kind!r}")
        finally:
            context.depth -= 1

    async def _run_sequence(self, run: _Run, steps: Sequence[Step]) -> None:
        for step in steps:
            run.context.cancellation.raise_if_cancelled()
            await self._run_node(run, step)

    async def _run_leaf(self, run: _Run, step: Step) -> None:
        context = run.context
        context.current_step_name = step.name
        chain = build_chain(run.workflow.middleware, step)
        try:
            await chain(context)
        except (OperationCancelledError, StepFailedError):
            raise
        except asyncio.CancelledError as exc:
            cancelled = _cancelled_by_step(context, step.name)
            if cancelled is None:
                raise
            raise cancelled from exc
        except Exception as exc:
            logger.debug("step.exception", step=step.name, error=str(exc), exc_info=True)
            raise StepFailedError(step.name, exc) from exc

        if run.workflow.compensation_enabled and is_compensating(step):
            run.compensables.append(step)  # type: ignore[arg-type]

    async def _call(self, run: _Run, node: Step, call: Callable[[], Awaitable[Any]]) -> Any:
        """Run a composite's own callable (predicate, selector, handler).

        Errors fail the node under its own name.
        """
        try:
            return await call()
        except OperationCancelledError:
            raise
        except asyncio.CancelledError as exc:
            cancelled = _cancelled_by_step(run.context, node.name)
            if cancelled is None:
                raise
            raise cancelled from exc
        except Exception as exc:
            raise StepFailedError(node.name, exc) from exc

    async def _run_conditional(self, run: _Run, node: ConditionalStep) -> None:
        chosen = await self._call(run, node, lambda: node.evaluate(run.context))
        logger.debug("step.branch", step=node.name, branch="then" if chosen else "else")
        await self._run_sequence(run, node.then_steps if chosen else node.else_steps)

    async def _run_for_each(self, run: _Run, node: ForEachStep) -> None:
        context = run.context
        items = await self._call(run, node, lambda: node.select(context))
        logger.debug("step.for_each", step=node.name, items=len(items))
        for index, item in enumerate(items):
            context.cancellation.raise_if_cancelled()
            context.properties[FOREACH_CURRENT] = item
            context.properties[FOREACH_INDEX] = index
            await self._run_sequence(run, node.steps)

    async def _run_while(self, run: _Run, node: WhileStep) -> None:
        context = run.context
        iterations = 0
        if not node.check_first:
            await self._run_sequence(run, node.steps)
            iterations += 1
        while await self._call(run, node, lambda: node.evaluate(context)):
            context.cancellation.raise_if_cancelled()
            await self._run_sequence(run, node.steps)
            iterations += 1
        logger.debug("step.loop_finished", step=node.name, iterations=iterations)

    async def _run_retry(self, run: _Run, node: RetryStep) -> None:
        context = run.context
        for attempt in range(1, node.max_attempts + 1):
            context.properties[RETRY_ATTEMPT] = attempt
            try:
                await self._run_sequence(run, node.steps)
                return
            except StepFailedError as failure:
                if attempt >= node.max_attempts:
                    raise
                logger.warning(
                    "step.retrying",
                    step=node.name,
                    attempt=attempt,
                    max_attempts=node.max_attempts,
                    error=failure.message,
                )

    async def _run_try(self, run: _Run, node: TryStep) -> None:
        context = run.context
        try:
            await self._run_sequence(run, node.steps)
        except StepFailedError as failure:
            cause = failure.cause or failure
            handler = node.handler_for(cause)
            if handler is None:
                raise
            logger.info("step.caught", step=node.name, failed_step=failure.step_name, error=failure.message)
            await self._call(run, node, lambda: maybe_await(handler(context, cause)))
        finally:
            for step in node.finally_steps:
                await self._run_node(run, step)

    async def _run_parallel(self, run: _Run, node: ParallelStep) -> None:
        failures: list[StepFailedError] = []
        cancelled: list[OperationCancelledError] = []

        async def member(step: Step) -> None:
            try:
                await self._run_node(run, step)
            except StepFailedError as exc:
                failures.append(exc)
                failures.extend(exc.siblings)
            except OperationCancelledError as exc:
                cancelled.append(exc)
            except asyncio.CancelledError:
                stopped = _cancelled_by_step(run.context, step.name)
                if stopped is None:
                    raise
                cancelled.append(stopped)

        await asyncio.gather(*(member(step) for step in node.members))

        if failures:
            first, rest = failures[0], failures[1:]
            first.siblings = rest
            raise first
        if cancelled:
            raise cancelled[0]

    # =========================================================================
    # Compensation
    # =========================================================================

    async def _compensate(self, run: _Run) -> list[StepError]:
        context = run.context
        undo_errors: list[StepError] = []
        logger.info("workflow.compensating", steps=len(run.compensables))
        while run.compensables:
            step = run.compensables.pop()
            try:
                await step.compensate(context)
            except Exception as exc:
                logger.warning("step.compensation_failed", step=step.name, error=str(exc))
                undo_errors.append(StepError.from_exception(step.name, exc, ErrorKind.COMPENSATION))
                await self._emit(run.workflow, "on_compensation", context, step, exc)
            else:
                run.compensated.append(step.name)
                await self._emit(run.workflow, "on_compensation", context, step, None)
        return undo_errors

    async def _emit(self, workflow: Workflow, hook: str, *args: Any) -> None:
        for handler in workflow.events:
            try:
                await getattr(handler, hook)(*args)
            except Exception:
                logger.exception("workflow.event_hook_failed", hook=hook, handler=type(handler).__name__)


__all__ = ["WorkflowResult", "WorkflowRunner", "WorkflowStatus"]
