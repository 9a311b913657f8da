"""
Sagaflow - embeddable async workflow orchestration.

Build immutable workflows with a fluent builder, run them with saga
compensation, middleware and cancellation, and fire them on a schedule.

Packages:
- sagaflow.core: errors, logging, settings, scheduling
- sagaflow.execution: retry strategies
- sagaflow.orchestration: builder, engine, registry, checkpoints, tooling
"""

__version__ = "0.1.0"

from sagaflow.core.errors import (
    CronFormatError,
    OrchestrationError,
    SagaflowError,
    ScheduleError,
    WorkflowError,
)
from sagaflow.core.scheduling import CronExpression, WorkflowScheduler, get_next_occurrence
from sagaflow.orchestration import (
    CancellationToken,
    Pipeline,
    Step,
    Workflow,
    WorkflowBuilder,
    WorkflowContext,
    WorkflowResult,
    WorkflowRunner,
    WorkflowStatus,
    register_workflow,
)

__all__ = [
    "CancellationToken",
    "CronExpression",
    "CronFormatError",
    "OrchestrationError",
    "Pipeline",
    "SagaflowError",
    "ScheduleError",
    "Step",
    "Workflow",
    "WorkflowBuilder",
    "WorkflowContext",
    "WorkflowError",
    "WorkflowResult",
    "WorkflowRunner",
    "WorkflowScheduler",
    "WorkflowStatus",
    "__version__",
    "get_next_occurrence",
    "register_workflow",
]
