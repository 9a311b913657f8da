"""Workflow - immutable, named sequence of steps.

Manifesto:
    The Workflow is the blueprint: it declares **what** runs, in which
order, wrapped by which middleware, and whether failures roll back. It
never declares **how** a run proceeds (that's WorkflowRunner's job) and it
never changes once built, so one instance can serve any number of
concurrent runs, each with its own WorkflowContext.

ARCHITECTURE
────────────
::

    WorkflowBuilder.build()  →  Workflow (frozen)
                                  ├── steps        tuple[Step]
                                  ├── middleware   tuple[Middleware]
                                  ├── events       tuple[WorkflowEvents]
                                  └── compensation_enabled

    WorkflowRunner.execute(workflow, context)  → WorkflowResult

Example::

    workflow = (
        Workflow.create("orders.checkout")
        .step(ValidateOrder())
        .step(ChargePayment())
        .step("send_confirmation", send_confirmation)
        .with_compensation()
        .build()
    )
    result = await workflow.execute()

Tags:
    sagaflow, orchestration, workflow, immutable, saga

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from sagaflow.orchestration.step_types import Step, StepKind, iter_leaves, iter_steps

if TYPE_CHECKING:
    from sagaflow.orchestration.builder import TypedWorkflowBuilder, WorkflowBuilder
    from sagaflow.orchestration.events import WorkflowEvents
    from sagaflow.orchestration.middleware import Middleware
    from sagaflow.orchestration.workflow_context import TypedWorkflowContext, WorkflowContext
    from sagaflow.orchestration.workflow_runner import WorkflowResult

TData = TypeVar("TData")

DEFAULT_WORKFLOW_NAME = "Workflow"


@dataclass(frozen=True, eq=False)
class Workflow:
    """
    Immutable workflow definition.

    Attributes:
        name: Workflow name, used by the registry and in logs
        steps: Top-level nodes, in execution order
        middleware: Wrappers around every leaf, first is outermost
        compensation_enabled: Roll back completed compensating steps on failure
        events: Lifecycle hooks notified by the runner
        description: Free-form text for humans and diagrams
    """

    name: str = DEFAULT_WORKFLOW_NAME
    steps: tuple[Step, ...] = ()
    middleware: tuple[Middleware, ...] = ()
    compensation_enabled: bool = False
    events: tuple[WorkflowEvents, ...] = ()
    description: str = ""

    def __post_init__(self) -> None:
        # Accept lists from hand-written definitions but never keep them.
        for attr in ("steps", "middleware", "events"):
            value = getattr(self, attr)
            if not isinstance(value, tuple):
                object.__setattr__(self, attr, tuple(value))

    @staticmethod
    def create(name: str = DEFAULT_WORKFLOW_NAME) -> WorkflowBuilder:
        """Start a fluent builder."""
        from sagaflow.orchestration.builder import WorkflowBuilder

        return WorkflowBuilder(name)

    @staticmethod
    def create_typed(name: str, data_type: type[TData]) -> TypedWorkflowBuilder[TData]:
        from sagaflow.orchestration.builder import TypedWorkflowBuilder

        return TypedWorkflowBuilder(name, data_type)

    # =========================================================================
    # Inspection
    # =========================================================================

    def step_names(self) -> list[str]:
        """Names of the top-level nodes."""
        return [s.name for s in self.steps]

    def get_step(self, name: str) -> Step | None:
        for step in self.steps:
            if step.name == name:
                return step
        return None

    def walk(self) -> Iterator[Step]:
        """Every node, depth-first."""
        return iter_steps(self.steps)

    @property
    def leaf_count(self) -> int:
        return sum(1 for _ in iter_leaves(self.steps))

    @property
    def has_parallel(self) -> bool:
        return any(s.kind is StepKind.PARALLEL for s in self.walk())

    @property
    def has_conditionals(self) -> bool:
        return any(s.kind is StepKind.CONDITIONAL for s in self.walk())

    # =========================================================================
    # Execution
    # =========================================================================

    def create_context(self, properties: dict[str, Any] | None = None) -> WorkflowContext:
        from sagaflow.orchestration.workflow_context import WorkflowContext

        return WorkflowContext.create(properties)

    async def execute(self, context: WorkflowContext | None = None) -> WorkflowResult:
        """Run once with the default runner."""
        from sagaflow.orchestration.workflow_runner import WorkflowRunner

        return await WorkflowRunner().execute(self, context)

    def to_dict(self) -> dict[str, Any]:
        def node(step: Step) -> dict[str, Any]:
            data: dict[str, Any] = {"name": step.name, "kind": step.kind.value}
            if step.is_composite:
                data["children"] = [node(c) for c in step.children()]
            return data

        return {
            "name": self.name,
            "description": self.description,
            "compensation_enabled": self.compensation_enabled,
            "middleware": [type(m).__name__ for m in self.middleware],
            "steps": [node(s) for s in self.steps],
        }

    def __repr__(self) -> str:
        return f"Workflow(name={self.name!r}, steps={len(self.steps)})"


@dataclass(frozen=True, eq=False, repr=False)
class TypedWorkflow(Workflow, Generic[TData]):
    """Workflow whose runs carry a payload of ``data_type``."""

    data_type: type | None = None

    def create_context(
        self, properties: dict[str, Any] | None = None, data: TData | None = None
    ) -> TypedWorkflowContext[TData]:
        from sagaflow.orchestration.workflow_context import TypedWorkflowContext

        return TypedWorkflowContext(data=data, properties=dict(properties or {}))

    def check_context(self, context: WorkflowContext) -> None:
        """Raise ``TypeError`` unless ``context`` carries a payload of ``data_type``."""
        from sagaflow.orchestration.workflow_context import TypedWorkflowContext

        if not isinstance(context, TypedWorkflowContext):
            raise TypeError(f"Workflow '{self.name}' requires a TypedWorkflowContext")
        if self.data_type is not None and not isinstance(context.data, self.data_type):
            raise TypeError(
                f"Workflow '{self.name}' expects data of type {self.data_type.__name__}, "
                f"got {type(context.data).__name__}"
            )

    async def execute(self, context: WorkflowContext | None = None) -> WorkflowResult:
        if context is None:
            raise TypeError(f"Workflow '{self.name}' needs a context carrying {self.data_type!r} data")
        return await super().execute(context)
