"""Orchestration exceptions.

All orchestration exceptions inherit from ``sagaflow.core.errors`` types
so callers can catch the whole family with a single ``except`` clause.

Hierarchy::

    OrchestrationError  (from sagaflow.core.errors)
      ├── WorkflowNotFoundError     ── name not in the registry
      ├── StepFailedError           ── a step raised; carries the step name
      ├── CheckpointNotFoundError   ── nothing saved for a run id
      └── OperationCancelledError   ── cooperative cancellation observed
    PipelineTypeError (TypeError)   ── pipeline stages do not chain
"""

from __future__ import annotations

from sagaflow.core.errors import ErrorCategory, OrchestrationError


class WorkflowNotFoundError(OrchestrationError):
    """Raised when a requested workflow is not registered."""

    def __init__(self, name: str, available: list[str] | None = None):
        self.workflow_name = name
        self.available = available or []
        message = f"Workflow not found: {name}"
        if self.available:
            message += f". Available: {', '.join(self.available)}"
        super().__init__(message)


class StepFailedError(OrchestrationError):
    """A step raised while executing.

    ``cause`` is the original exception. For a parallel group the first
    observed failure is the error itself and the rest are in ``siblings``.
    """

    def __init__(self, step_name: str, cause: BaseException, siblings: list[StepFailedError] | None = None):
        self.step_name = step_name
        self.siblings = siblings or []
        super().__init__(str(cause) or type(cause).__name__, cause=cause)
        self.context.step = step_name


class OperationCancelledError(OrchestrationError):
    """Raised by a step (or the token) when cancellation was requested."""

    default_category = ErrorCategory.CANCELLED

    def __init__(self, message: str = "Operation was cancelled"):
        super().__init__(message)


class CheckpointNotFoundError(OrchestrationError):
    """Raised when resuming a run that has no saved checkpoint."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"No checkpoint saved for run: {run_id}")


class PipelineTypeError(TypeError):
    """Raised when a pipeline stage's input does not accept the previous output."""

    def __init__(self, stage: str, expected: object, actual: object):
        self.stage = stage
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Pipeline stage '{stage}' expects {_type_name(expected)} "
            f"but the previous stage produces {_type_name(actual)}"
        )


def _type_name(tp: object) -> str:
    return getattr(tp, "__name__", repr(tp))
