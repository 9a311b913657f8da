"""Step Types - the closed set of nodes a workflow is made of.

Manifesto:
A workflow is an ordered list of steps. A step is either a leaf that does
work, or a composite that arranges other steps: a conditional branch, a
parallel group, an embedded sub-workflow, a loop, a retried block or a
try/catch/finally block. The engine dispatches on
``StepKind`` rather than on open-ended subclassing, so the set of control
flow shapes stays small and every collaborator (runner, validator,
visualizer) can walk the tree the same way.

ARCHITECTURE
────────────
::

    Step (ABC)                      kind = LEAF
      ├── CompensatingStep          + compensate(ctx)
      ├── DelegateStep              wraps fn(ctx)
      │     └── CompensatingDelegateStep   + undo(ctx)
      ├── ConditionalStep           kind = CONDITIONAL
      ├── ParallelStep              kind = PARALLEL
      ├── SubWorkflowStep           kind = SUB_WORKFLOW
      ├── ForEachStep               kind = FOR_EACH
      ├── WhileStep                 kind = WHILE  (check_first=False: do-while)
      ├── RetryStep                 kind = RETRY
      ├── TryStep                   kind = TRY
      └── DelayStep                 leaf, wakes early on cancellation

Example::

    class ChargePayment(CompensatingStep):
        name = "ChargePayment"

        async def execute(self, ctx):
            ctx.set("charge_id", await gateway.charge(ctx.get("amount")))

        async def compensate(self, ctx):
            await gateway.refund(ctx.get("charge_id"))

Tags:
    sagaflow, orchestration, step-types, saga, conditional, parallel, loops

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import inspect
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar, Union

from sagaflow.orchestration.exceptions import OperationCancelledError

if TYPE_CHECKING:
    from sagaflow.orchestration.workflow import Workflow
    from sagaflow.orchestration.workflow_context import WorkflowContext


StepFunction = Callable[["WorkflowContext"], Union[Awaitable[Any], Any]]
Predicate = Callable[["WorkflowContext"], Union[Awaitable[bool], bool]]
ItemsSelector = Callable[["WorkflowContext"], Union[Awaitable[Iterable[Any]], Iterable[Any]]]
CatchHandler = Callable[["WorkflowContext", BaseException], Union[Awaitable[Any], Any]]

FOREACH_CURRENT = "foreach.current"
FOREACH_INDEX = "foreach.index"
RETRY_ATTEMPT = "retry.attempt"


def _callable_ref(fn: Callable[..., Any] | None) -> str | None:
    """Return ``'module:qualname'`` for a named function, else ``None``."""
    if fn is None:
        return None
    module = getattr(fn, "__module__", None)
    qualname = getattr(fn, "__qualname__", None)
    if not module or not qualname:
        return None
    if "<lambda>" in qualname or "<locals>" in qualname:
        return None
    return f"{module}:{qualname}"


async def maybe_await(value: Any) -> Any:
    """Await ``value`` if it is awaitable, else return it."""
    if inspect.isawaitable(value):
        return await value
    return value


class StepKind(str, Enum):
    """Control-flow shape of a node."""

    LEAF = "leaf"
    CONDITIONAL = "conditional"
    PARALLEL = "parallel"
    SUB_WORKFLOW = "sub_workflow"
    FOR_EACH = "for_each"
    WHILE = "while"
    RETRY = "retry"
    TRY = "try"


class Step(ABC):
    """Unit of work.

    Subclasses set ``name`` (as a class attribute or in ``__init__``); a
    subclass that sets nothing is named after the class.
    """

    kind: ClassVar[StepKind] = StepKind.LEAF
    name: str = ""

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        if "name" not in cls.__dict__ and "name" not in inspect.get_annotations(cls):
            cls.name = cls.__name__

    @abstractmethod
    async def execute(self, context: WorkflowContext) -> None:
        """Do the work against the shared context."""

    @property
    def is_composite(self) -> bool:
        return self.kind is not StepKind.LEAF

    def children(self) -> tuple[Step, ...]:
        """Directly nested steps (empty for leaves)."""
        return ()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class CompensatingStep(Step):
    """A leaf that can undo its own effects during saga rollback."""

    @abstractmethod
    async def compensate(self, context: WorkflowContext) -> None:
        """Reverse what :meth:`execute` did."""


def is_compensating(step: Step) -> bool:
    return isinstance(step, CompensatingStep)


# =============================================================================
# Delegate leaves
# =============================================================================


@dataclass(frozen=True, eq=False, repr=False, kw_only=True)
class DelegateStep(Step):
    """Leaf wrapping an arbitrary sync or async callable ``fn(ctx)``."""

    name: str
    fn: StepFunction

    async def execute(self, context: WorkflowContext) -> None:
        await maybe_await(self.fn(context))

    @classmethod
    def from_function(cls, fn: StepFunction, name: str | None = None) -> DelegateStep:
        return cls(name=name or getattr(fn, "__name__", "step"), fn=fn)

    @property
    def handler_ref(self) -> str | None:
        return _callable_ref(self.fn)


@dataclass(frozen=True, eq=False, repr=False, kw_only=True)
class CompensatingDelegateStep(CompensatingStep):
    """Delegate leaf with an undo callable."""

    name: str
    fn: StepFunction
    undo: StepFunction

    async def execute(self, context: WorkflowContext) -> None:
        await maybe_await(self.fn(context))

    async def compensate(self, context: WorkflowContext) -> None:
        await maybe_await(self.undo(context))

    @property
    def handler_ref(self) -> str | None:
        return _callable_ref(self.fn)


# =============================================================================
# Composite nodes
# =============================================================================


async def _run_sequence(steps: tuple[Step, ...], context: WorkflowContext) -> None:
    for step in steps:
        context.cancellation.raise_if_cancelled()
        await step.execute(context)


@dataclass(frozen=True, eq=False, repr=False, kw_only=True)
class ConditionalStep(Step):
    """Runs ``then_steps`` or ``else_steps`` depending on ``predicate``.

    Executing it directly (outside a runner) skips middleware; the runner
    splices the chosen branch into the run instead.
    """

    predicate: Predicate
    then_steps: tuple[Step, ...] = ()
    else_steps: tuple[Step, ...] = ()
    name: str = "If(then)"
    kind: ClassVar[StepKind] = StepKind.CONDITIONAL

    async def evaluate(self, context: WorkflowContext) -> bool:
        return bool(await maybe_await(self.predicate(context)))

    async def execute(self, context: WorkflowContext) -> None:
        branch = self.then_steps if await self.evaluate(context) else self.else_steps
        await _run_sequence(branch, context)

    def children(self) -> tuple[Step, ...]:
        return self.then_steps + self.else_steps


@dataclass(frozen=True, eq=False, repr=False, kw_only=True)
class ParallelStep(Step):
    """Starts every member together and waits for all of them."""

    members: tuple[Step, ...] = ()
    name: str = "Parallel"
    kind: ClassVar[StepKind] = StepKind.PARALLEL

    async def execute(self, context: WorkflowContext) -> None:
        results = await asyncio.gather(
            *(member.execute(context) for member in self.members),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result

    def children(self) -> tuple[Step, ...]:
        return self.members


@dataclass(frozen=True, eq=False, repr=False, kw_only=True)
class SubWorkflowStep(Step):
    """Embeds another workflow; its steps run as if spliced in."""

    workflow: Workflow
    name: str = ""
    kind: ClassVar[StepKind] = StepKind.SUB_WORKFLOW

    def __post_init__(self) -> None:
        if not self.name:
            object.__setattr__(self, "name", self.workflow.name)

    async def execute(self, context: WorkflowContext) -> None:
        await _run_sequence(self.workflow.steps, context)

    def children(self) -> tuple[Step, ...]:
        return tuple(self.workflow.steps)


# =============================================================================
# Loops, retried blocks and try/catch/finally
# =============================================================================


@dataclass(frozen=True, eq=False, repr=False, kw_only=True)
class ForEachStep(Step):
    """Runs ``steps`` once per item returned by ``items(ctx)``.

    Before each pass the item and its position are stored under
    ``foreach.current`` and ``foreach.index``. The selector is evaluated
    once, when the node starts.
    """

    items: ItemsSelector
    steps: tuple[Step, ...] = ()
    name: str = "ForEach"
    kind: ClassVar[StepKind] = StepKind.FOR_EACH

    async def select(self, context: WorkflowContext) -> list[Any]:
        return list(await maybe_await(self.items(context)))

    async def execute(self, context: WorkflowContext) -> None:
        for index, item in enumerate(await self.select(context)):
            context.properties[FOREACH_CURRENT] = item
            context.properties[FOREACH_INDEX] = index
            await _run_sequence(self.steps, context)

    def children(self) -> tuple[Step, ...]:
        return self.steps


@dataclass(frozen=True, eq=False, repr=False, kw_only=True)
class WhileStep(Step):
    """Repeats ``steps`` while ``condition`` holds.

    With ``check_first=False`` the body runs once before the first check
    (do-while).
    """

    condition: Predicate
    steps: tuple[Step, ...] = ()
    check_first: bool = True
    name: str = "While"
    kind: ClassVar[StepKind] = StepKind.WHILE

    async def evaluate(self, context: WorkflowContext) -> bool:
        return bool(await maybe_await(self.condition(context)))

    async def execute(self, context: WorkflowContext) -> None:
        if not self.check_first:
            await _run_sequence(self.steps, context)
        while await self.evaluate(context):
            context.cancellation.raise_if_cancelled()
            await _run_sequence(self.steps, context)

    def children(self) -> tuple[Step, ...]:
        return self.steps


@dataclass(frozen=True, eq=False, repr=False, kw_only=True)
class RetryStep(Step):
    """Re-runs the whole block until it succeeds or ``max_attempts`` is used up.

    The current attempt (1-based) is stored under ``retry.attempt``.
    Cancellation is never retried.
    """

    steps: tuple[Step, ...] = ()
    max_attempts: int = 3
    name: str = "Retry"
    kind: ClassVar[StepKind] = StepKind.RETRY

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {self.max_attempts}")

    async def execute(self, context: WorkflowContext) -> None:
        for attempt in range(1, self.max_attempts + 1):
            context.properties[RETRY_ATTEMPT] = attempt
            try:
                await _run_sequence(self.steps, context)
                return
            except OperationCancelledError:
                raise
            except Exception:
                if attempt >= self.max_attempts:
                    raise

    def children(self) -> tuple[Step, ...]:
        return self.steps


@dataclass(frozen=True, eq=False, repr=False, kw_only=True)
class TryStep(Step):
    """Runs ``steps``, routes a failure to a matching handler, then ``finally_steps``.

    A handler registered for an exception type also catches its subclasses;
    the most specific registration wins. A handled failure does not fail the
    run. ``finally_steps`` run whatever the outcome, cancellation included.
    """

    steps: tuple[Step, ...] = ()
    handlers: tuple[tuple[type[BaseException], CatchHandler], ...] = ()
    finally_steps: tuple[Step, ...] = ()
    name: str = "Try"
    kind: ClassVar[StepKind] = StepKind.TRY

    def handler_for(self, exc: BaseException) -> CatchHandler | None:
        registered = dict(self.handlers)
        for klass in type(exc).__mro__:
            if klass in registered:
                return registered[klass]
        return None

    async def execute(self, context: WorkflowContext) -> None:
        try:
            await _run_sequence(self.steps, context)
        except OperationCancelledError:
            raise
        except Exception as exc:
            handler = self.handler_for(exc)
            if handler is None:
                raise
            await maybe_await(handler(context, exc))
        finally:
            for step in self.finally_steps:
                await step.execute(context)

    def children(self) -> tuple[Step, ...]:
        return self.steps + self.finally_steps


@dataclass(frozen=True, eq=False, repr=False, kw_only=True)
class DelayStep(Step):
    """Leaf that waits ``seconds``; cancelling the run cuts the wait short."""

    seconds: float
    name: str = ""

    def __post_init__(self) -> None:
        if self.seconds < 0:
            raise ValueError(f"delay must not be negative, got {self.seconds}")
        if not self.name:
            object.__setattr__(self, "name", f"Delay({self.seconds:g}s)")

    async def execute(self, context: WorkflowContext) -> None:
        try:
            await asyncio.wait_for(context.cancellation.wait(), timeout=self.seconds)
        except TimeoutError:
            return
        context.cancellation.raise_if_cancelled()


def iter_steps(steps: tuple[Step, ...] | list[Step]) -> Iterator[Step]:
    """Depth-first walk over ``steps`` and everything nested in them."""
    for step in steps:
        yield step
        yield from iter_steps(step.children())


def iter_leaves(steps: tuple[Step, ...] | list[Step]) -> Iterator[Step]:
    for step in iter_steps(steps):
        if step.kind is StepKind.LEAF:
            yield step
