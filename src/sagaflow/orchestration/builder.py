"""Workflow Builder - fluent assembly of immutable workflows.

ARCHITECTURE
────────────
::

    WorkflowBuilder("orders")
      .step(ValidateOrder())                      ── leaf instance
      .step("charge", charge, compensate=refund)  ── delegate leaf (+ undo)
      .if_(is_vip)                                ── ConditionalBuilder
          .then(UpgradeShipping())                ── ElseBuilder
          .else_(StandardShipping())              ── back to WorkflowBuilder
      .parallel(lambda p: p.step(EmailReceipt()).step(NotifyWarehouse()))
      .sub_workflow(fulfilment)                   ── splices fulfilment.steps
      .for_each(lines, lambda b: b.step(Reserve()))  ── body per item
      .retry(lambda b: b.step(CallCarrier()), max_attempts=3)
      .try_(lambda b: b.step(Charge()))           ── TryBuilder
          .catch(CardDeclined, notify_customer)
          .finally_(lambda b: b.step(ReleaseLock()))
          .end_try()                              ── back to WorkflowBuilder
      .delay(timedelta(seconds=5))
      .use(TimingMiddleware())
      .with_compensation()
      .build()                                    ── Workflow (frozen)

The builder owns node construction. ``build()`` snapshots the current state
into tuples, so building twice yields two independent workflows with the
same structure, and later builder calls never reach a built workflow.
A builder with zero steps builds fine; emptiness is a validator concern.

Tags:
    sagaflow, orchestration, builder, fluent-api

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import timedelta
from typing import Any, Generic, Self, TypeVar

from sagaflow.orchestration.events import WorkflowEvents
from sagaflow.orchestration.middleware import Middleware, MiddlewareFunction, as_middleware
from sagaflow.orchestration.step_types import (
    CatchHandler,
    CompensatingDelegateStep,
    ConditionalStep,
    DelayStep,
    DelegateStep,
    ForEachStep,
    ItemsSelector,
    ParallelStep,
    Predicate,
    RetryStep,
    Step,
    StepFunction,
    SubWorkflowStep,
    TryStep,
    WhileStep,
)
from sagaflow.orchestration.workflow import DEFAULT_WORKFLOW_NAME, TypedWorkflow, Workflow

TData = TypeVar("TData")

BranchItem = Step | Workflow


def make_step(
    step_or_name: Step | str | StepFunction,
    fn: StepFunction | None = None,
    *,
    compensate: StepFunction | None = None,
) -> Step:
    """Normalize the arguments accepted by ``step(...)`` into a leaf."""
    if isinstance(step_or_name, Step):
        if fn is not None or compensate is not None:
            raise TypeError("fn/compensate are only accepted together with a step name")
        return step_or_name
    if isinstance(step_or_name, str):
        if not callable(fn):
            raise TypeError(f"step '{step_or_name}' needs a callable, got {type(fn).__name__}")
        if compensate is not None:
            if not callable(compensate):
                raise TypeError(f"compensate for step '{step_or_name}' must be callable")
            return CompensatingDelegateStep(name=step_or_name, fn=fn, undo=compensate)
        return DelegateStep(name=step_or_name, fn=fn)
    if callable(step_or_name) and fn is None:
        if compensate is not None:
            return CompensatingDelegateStep(
                name=getattr(step_or_name, "__name__", "step"), fn=step_or_name, undo=compensate
            )
        return DelegateStep.from_function(step_or_name)
    raise TypeError(f"cannot build a step from {type(step_or_name).__name__}")


def _branch_step(item: BranchItem) -> Step:
    if isinstance(item, Workflow):
        return SubWorkflowStep(workflow=item)
    if isinstance(item, Step):
        return item
    raise TypeError(f"branch entries must be steps or workflows, got {type(item).__name__}")


class ParallelBuilder:
    """Collects the members of one parallel group."""

    def __init__(self) -> None:
        self._members: list[Step] = []

    def step(
        self,
        step_or_name: Step | str | StepFunction,
        fn: StepFunction | None = None,
        *,
        compensate: StepFunction | None = None,
    ) -> ParallelBuilder:
        self._members.append(make_step(step_or_name, fn, compensate=compensate))
        return self

    def sub_workflow(self, workflow: Workflow) -> ParallelBuilder:
        """Add a whole workflow as one member; its steps run in order."""
        self._members.append(_branch_step(workflow))
        return self

    @property
    def members(self) -> tuple[Step, ...]:
        return tuple(self._members)


class ConditionalBuilder:
    """Returned by ``if_``; call :meth:`then` next."""

    def __init__(self, parent: WorkflowBuilder, predicate: Predicate):
        self._parent = parent
        self._predicate = predicate

    def then(self, *steps: BranchItem) -> ElseBuilder:
        return ElseBuilder(self._parent, self._predicate, tuple(_branch_step(s) for s in steps))


class ElseBuilder:
    """Returned by ``then``; finish with :meth:`else_` or :meth:`end_if`."""

    def __init__(self, parent: WorkflowBuilder, predicate: Predicate, then_steps: tuple[Step, ...]):
        self._parent = parent
        self._predicate = predicate
        self._then = then_steps

    def else_(self, *steps: BranchItem) -> WorkflowBuilder:
        node = ConditionalStep(
            name="If(then/else)",
            predicate=self._predicate,
            then_steps=self._then,
            else_steps=tuple(_branch_step(s) for s in steps),
        )
        return self._parent._append(node)

    def end_if(self) -> WorkflowBuilder:
        node = ConditionalStep(name="If(then)", predicate=self._predicate, then_steps=self._then)
        return self._parent._append(node)


def _body(configure: Callable[[WorkflowBuilder], Any], method: str) -> tuple[Step, ...]:
    """Collect the steps ``configure`` adds to a scratch builder.

    Only steps are taken; middleware and events belong to the outer workflow.
    """
    if not callable(configure):
        raise TypeError(f"{method}() expects a function that configures the body")
    body = WorkflowBuilder()
    configure(body)
    return tuple(body._steps)


class TryBuilder:
    """Returned by ``try_``; add handlers, then close with :meth:`end_try`."""

    def __init__(self, parent: WorkflowBuilder, name: str, steps: tuple[Step, ...]):
        self._parent = parent
        self._name = name
        self._steps = steps
        self._handlers: list[tuple[type[BaseException], CatchHandler]] = []
        self._finally: tuple[Step, ...] = ()

    def catch(self, exc_type: type[BaseException], handler: CatchHandler) -> TryBuilder:
        """Handle failures of ``exc_type`` (or a subclass) with ``handler(ctx, exc)``."""
        if not (isinstance(exc_type, type) and issubclass(exc_type, BaseException)):
            raise TypeError(f"catch() expects an exception type, got {exc_type!r}")
        if not callable(handler):
            raise TypeError("catch() handler must be callable")
        self._handlers.append((exc_type, handler))
        return self

    def finally_(self, configure: Callable[[WorkflowBuilder], Any]) -> TryBuilder:
        self._finally = _body(configure, "finally_")
        return self

    def end_try(self) -> WorkflowBuilder:
        node = TryStep(
            name=self._name,
            steps=self._steps,
            handlers=tuple(self._handlers),
            finally_steps=self._finally,
        )
        return self._parent._append(node)


class WorkflowBuilder:
    """Fluent builder for :class:`Workflow`."""

    def __init__(self, name: str = DEFAULT_WORKFLOW_NAME):
        self._name = name
        self._description = ""
        self._steps: list[Step] = []
        self._middleware: list[Middleware] = []
        self._events: list[WorkflowEvents] = []
        self._compensation = False

    def _append(self, step: Step) -> Self:
        self._steps.append(step)
        return self

    # =========================================================================
    # Steps
    # =========================================================================

    def step(
        self,
        step_or_name: Step | str | StepFunction,
        fn: StepFunction | None = None,
        *,
        compensate: StepFunction | None = None,
    ) -> Self:
        """Append a leaf.

        Accepts a :class:`Step` instance, a ``(name, fn)`` pair, or a bare
        function named after itself. ``compensate`` turns a delegate into a
        compensating step.
        """
        return self._append(make_step(step_or_name, fn, compensate=compensate))

    def if_(self, predicate: Predicate) -> ConditionalBuilder:
        if not callable(predicate):
            raise TypeError("predicate must be callable")
        return ConditionalBuilder(self, predicate)

    def parallel(self, configure: Callable[[ParallelBuilder], Any], *, name: str = "Parallel") -> Self:
        if not callable(configure):
            raise TypeError("parallel() expects a function that configures the group")
        group = ParallelBuilder()
        configure(group)
        return self._append(ParallelStep(name=name, members=group.members))

    def sub_workflow(self, workflow: Workflow) -> Self:
        """Splice ``workflow``'s top-level steps in at this position."""
        if not isinstance(workflow, Workflow):
            raise TypeError(f"sub_workflow() expects a Workflow, got {type(workflow).__name__}")
        self._steps.extend(workflow.steps)
        return self

    def for_each(
        self, items: ItemsSelector, configure: Callable[[WorkflowBuilder], Any], *, name: str = "ForEach"
    ) -> Self:
        """Run the configured body once per item of ``items(ctx)``."""
        if not callable(items):
            raise TypeError("for_each() expects a callable returning the items")
        return self._append(ForEachStep(name=name, items=items, steps=_body(configure, "for_each")))

    def while_(self, condition: Predicate, configure: Callable[[WorkflowBuilder], Any], *, name: str = "While") -> Self:
        if not callable(condition):
            raise TypeError("condition must be callable")
        return self._append(WhileStep(name=name, condition=condition, steps=_body(configure, "while_")))

    def do_while(
        self, configure: Callable[[WorkflowBuilder], Any], condition: Predicate, *, name: str = "DoWhile"
    ) -> Self:
        """Like :meth:`while_`, but the body runs once before the first check."""
        if not callable(condition):
            raise TypeError("condition must be callable")
        node = WhileStep(name=name, condition=condition, steps=_body(configure, "do_while"), check_first=False)
        return self._append(node)

    def retry(self, configure: Callable[[WorkflowBuilder], Any], *, max_attempts: int = 3, name: str = "Retry") -> Self:
        """Re-run the configured block as a whole when any of its steps fails."""
        return self._append(RetryStep(name=name, steps=_body(configure, "retry"), max_attempts=max_attempts))

    def try_(self, configure: Callable[[WorkflowBuilder], Any], *, name: str = "Try") -> TryBuilder:
        return TryBuilder(self, name, _body(configure, "try_"))

    def delay(self, duration: float | timedelta, *, name: str | None = None) -> Self:
        seconds = duration.total_seconds() if isinstance(duration, timedelta) else float(duration)
        return self._append(DelayStep(seconds=seconds, name=name or ""))

    # =========================================================================
    # Configuration
    # =========================================================================

    def use(self, middleware: Middleware | MiddlewareFunction) -> Self:
        self._middleware.append(as_middleware(middleware))
        return self

    def with_name(self, name: str) -> Self:
        self._name = name
        return self

    def with_description(self, description: str) -> Self:
        self._description = description
        return self

    def with_events(self, events: WorkflowEvents) -> Self:
        if not isinstance(events, WorkflowEvents):
            raise TypeError(f"with_events() expects WorkflowEvents, got {type(events).__name__}")
        self._events.append(events)
        return self

    def with_compensation(self, enabled: bool = True) -> Self:
        self._compensation = enabled
        return self

    def _fields(self) -> dict[str, Any]:
        return {
            "name": self._name,
            "description": self._description,
            "steps": tuple(self._steps),
            "middleware": tuple(self._middleware),
            "events": tuple(self._events),
            "compensation_enabled": self._compensation,
        }

    def build(self) -> Workflow:
        return Workflow(**self._fields())


class TypedWorkflowBuilder(WorkflowBuilder, Generic[TData]):
    """Builder for workflows whose runs carry a ``data_type`` payload."""

    def __init__(self, name: str, data_type: type[TData]):
        super().__init__(name)
        self.data_type = data_type

    def build(self) -> TypedWorkflow[TData]:
        return TypedWorkflow(data_type=self.data_type, **self._fields())
