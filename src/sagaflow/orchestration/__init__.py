"""
Sagaflow Orchestration - workflow execution engine.

WHY
───
A single async function runs one unit of work. Orchestration composes many
units into a workflow with a shared context, conditional branching,
fan-out/join, cross-cutting middleware, saga-style compensation and
cooperative cancellation.

ARCHITECTURE
────────────
::

    WorkflowBuilder  ─ fluent construction, build() freezes the result
      ├── .step(...)              ─ leaf (Step instance, name+fn, or fn)
      ├── .if_(pred).then().else_()  ─ conditional branch
      ├── .parallel(configure)    ─ fan-out / join barrier
      ├── .sub_workflow(wf)       ─ splice another workflow's steps
      ├── .for_each / .while_ / .do_while  ─ loops
      ├── .retry(configure)       ─ re-run a block on failure
      ├── .try_(configure).catch().finally_().end_try()
      ├── .delay(seconds)         ─ cancellable wait
      ├── .use(middleware)        ─ wrap every leaf
      └── .with_compensation()    ─ saga undo on failure

    Workflow          ─ immutable, reusable across runs
    WorkflowRunner    ─ executes a workflow against a WorkflowContext
    WorkflowContext   ─ property bag, errors, status, cancellation token
    WorkflowResult    ─ terminal status + context

    Supporting:
      middleware.py        ─ timing, logging, retry, timeout, idempotency
      events.py            ─ lifecycle hooks
      pipeline.py          ─ typed value → value stage chains
      workflow_registry.py ─ name → workflow factory lookup
      checkpointing.py     ─ checkpoint store + resume engine
      validator.py         ─ static checks of workflow graphs
      visualizer.py        ─ Mermaid, DOT and ASCII renderers

MODULE MAP (recommended reading order)
──────────────────────────────────────
1. exceptions.py         ─ error hierarchy
2. workflow_context.py   ─ context, status, errors, cancellation
3. step_types.py         ─ leaf and composite step nodes
4. middleware.py         ─ middleware chain + built-ins
5. workflow.py           ─ Workflow / TypedWorkflow
6. builder.py            ─ fluent builders
7. workflow_runner.py    ─ execution engine
8. workflow_registry.py  ─ global name → Workflow lookup
9. checkpointing.py      ─ persistence hooks and resume

Example:
    from sagaflow.orchestration import Workflow, WorkflowContext

    workflow = (
        Workflow.create("orders")
        .step("Validate", validate)
        .step(ChargePayment())
        .step("SendConfirmation", send_confirmation)
        .with_compensation()
        .build()
    )
    result = await workflow.execute(WorkflowContext.create({"order_id": 42}))
    assert result.status is WorkflowStatus.COMPLETED
"""

from sagaflow.orchestration.builder import (
    ConditionalBuilder,
    ElseBuilder,
    ParallelBuilder,
    TryBuilder,
    TypedWorkflowBuilder,
    WorkflowBuilder,
    make_step,
)
from sagaflow.orchestration.checkpointing import (
    CheckpointMiddleware,
    CheckpointStore,
    InMemoryCheckpointStore,
    WorkflowCheckpoint,
    WorkflowResumeEngine,
)
from sagaflow.orchestration.events import RecordedEvent, RecordingEvents, WorkflowEvents
from sagaflow.orchestration.exceptions import (
    CheckpointNotFoundError,
    OperationCancelledError,
    PipelineTypeError,
    StepFailedError,
    WorkflowNotFoundError,
)
from sagaflow.orchestration.middleware import (
    FunctionMiddleware,
    IdempotencyMiddleware,
    LoggingMiddleware,
    Middleware,
    RetryMiddleware,
    TimeoutMiddleware,
    TimingMiddleware,
    as_middleware,
)
from sagaflow.orchestration.pipeline import Pipeline, PipelineBuilder
from sagaflow.orchestration.step_types import (
    CompensatingDelegateStep,
    CompensatingStep,
    ConditionalStep,
    DelayStep,
    DelegateStep,
    ForEachStep,
    ParallelStep,
    RetryStep,
    Step,
    StepKind,
    SubWorkflowStep,
    TryStep,
    WhileStep,
    iter_leaves,
    iter_steps,
)
from sagaflow.orchestration.validator import (
    LintDiagnostic,
    LintResult,
    Severity,
    ValidationIssue,
    ValidationResult,
    WorkflowValidator,
    lint_workflow,
    register_lint_rule,
)
from sagaflow.orchestration.visualizer import to_ascii, to_dot, to_mermaid
from sagaflow.orchestration.workflow import TypedWorkflow, Workflow
from sagaflow.orchestration.workflow_context import (
    CancellationToken,
    ErrorKind,
    StepError,
    TypedWorkflowContext,
    WorkflowContext,
    WorkflowStatus,
)
from sagaflow.orchestration.workflow_registry import (
    WorkflowRegistry,
    clear_workflow_registry,
    get_workflow,
    list_workflows,
    register_workflow,
    workflow_exists,
)
from sagaflow.orchestration.workflow_runner import WorkflowResult, WorkflowRunner

__all__ = [
    # Building
    "ConditionalBuilder",
    "ElseBuilder",
    "ParallelBuilder",
    "TryBuilder",
    "TypedWorkflowBuilder",
    "WorkflowBuilder",
    "make_step",
    # Workflow
    "TypedWorkflow",
    "Workflow",
    # Steps
    "CompensatingDelegateStep",
    "CompensatingStep",
    "ConditionalStep",
    "DelayStep",
    "DelegateStep",
    "ForEachStep",
    "ParallelStep",
    "RetryStep",
    "Step",
    "StepKind",
    "SubWorkflowStep",
    "TryStep",
    "WhileStep",
    "iter_leaves",
    "iter_steps",
    # Context
    "CancellationToken",
    "ErrorKind",
    "StepError",
    "TypedWorkflowContext",
    "WorkflowContext",
    "WorkflowStatus",
    # Execution
    "WorkflowResult",
    "WorkflowRunner",
    # Middleware
    "FunctionMiddleware",
    "IdempotencyMiddleware",
    "LoggingMiddleware",
    "Middleware",
    "RetryMiddleware",
    "TimeoutMiddleware",
    "TimingMiddleware",
    "as_middleware",
    # Events
    "RecordedEvent",
    "RecordingEvents",
    "WorkflowEvents",
    # Pipeline
    "Pipeline",
    "PipelineBuilder",
    # Registry
    "WorkflowRegistry",
    "clear_workflow_registry",
    "get_workflow",
    "list_workflows",
    "register_workflow",
    "workflow_exists",
    # Checkpointing
    "CheckpointMiddleware",
    "CheckpointStore",
    "InMemoryCheckpointStore",
    "WorkflowCheckpoint",
    "WorkflowResumeEngine",
    # Validation / visualization
    "LintDiagnostic",
    "LintResult",
    "Severity",
    "ValidationIssue",
    "ValidationResult",
    "WorkflowValidator",
    "lint_workflow",
    "register_lint_rule",
    "to_ascii",
    "to_dot",
    "to_mermaid",
    # Exceptions
    "CheckpointNotFoundError",
    "OperationCancelledError",
    "PipelineTypeError",
    "StepFailedError",
    "WorkflowNotFoundError",
]
