"""
Sagaflow error hierarchy.

Manifesto:
    Every failure the engine, scheduler or configuration layer raises on
    purpose is a :class:`SagaflowError`. Each error knows its category and
    whether retrying the same operation could succeed, so middleware such
    as :class:`~sagaflow.orchestration.middleware.RetryMiddleware` can make
    decisions without string matching.

Architecture:
    ::

        SagaflowError
        ├── TransientError            (retryable)
        │   └── StepTimeoutError
        ├── ValidationError
        ├── ConfigError
        └── OrchestrationError
            ├── WorkflowError
            └── ScheduleError
                └── CronFormatError   (also a ValueError)

Examples:
    >>> err = TransientError("broker unavailable").with_context(step="publish")
    >>> err.retryable
    True
    >>> err.to_dict()["context"]
    {'step': 'publish'}

Tags:
    errors, exception-hierarchy, retry-semantics, sagaflow-core

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Error categories used for routing and retry decisions."""

    STEP = "STEP"
    TIMEOUT = "TIMEOUT"
    VALIDATION = "VALIDATION"
    CONFIG = "CONFIG"
    ORCHESTRATION = "ORCHESTRATION"
    SCHEDULE = "SCHEDULE"
    CANCELLED = "CANCELLED"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error."""

    workflow: str | None = None
    step: str | None = None
    run_id: str | None = None
    schedule_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ("workflow", "step", "run_id", "schedule_id"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class SagaflowError(Exception):
    """
    Base exception for all sagaflow errors.

    Carries a category, a retryable flag, an optional ``retry_after`` hint,
    structured :class:`ErrorContext` and the underlying cause. Subclasses
    override ``default_category`` and ``default_retryable``.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: float | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> SagaflowError:
        """
        Add context to this error (fluent API).

        Usage:
            raise WorkflowError("context reused").with_context(run_id=ctx.run_id)
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# TRANSIENT ERRORS (Usually Retryable)
# =============================================================================


class TransientError(SagaflowError):
    """Temporary error that may succeed on retry."""

    default_category = ErrorCategory.STEP
    default_retryable = True


class StepTimeoutError(TransientError):
    """A step did not finish within its deadline."""

    default_category = ErrorCategory.TIMEOUT

    def __init__(self, message: str, *, step_name: str | None = None, timeout: float | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.step_name = step_name
        self.timeout = timeout
        if step_name is not None:
            self.context.step = step_name


# =============================================================================
# VALIDATION / CONFIG
# =============================================================================


class ValidationError(SagaflowError):
    """
    Structural or data validation error.

    Never retryable.
    """

    default_category = ErrorCategory.VALIDATION
    default_retryable = False

    def __init__(self, message: str, *, field: str | None = None, value: Any = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        if self.value is not None:
            result["value"] = repr(self.value)
        return result


class ConfigError(SagaflowError):
    """Invalid or missing configuration."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


# =============================================================================
# ORCHESTRATION
# =============================================================================


class OrchestrationError(SagaflowError):
    """Workflow or scheduler error."""

    default_category = ErrorCategory.ORCHESTRATION
    default_retryable = False


class WorkflowError(OrchestrationError):
    """Workflow definition or execution misuse."""

    pass


class ScheduleError(OrchestrationError):
    """Schedule configuration or execution error."""

    default_category = ErrorCategory.SCHEDULE


class CronFormatError(ScheduleError, ValueError):
    """A cron expression could not be parsed."""

    def __init__(self, message: str, *, expression: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.expression = expression


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, SagaflowError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError))


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, SagaflowError):
        return error.category
    if isinstance(error, TimeoutError):
        return ErrorCategory.TIMEOUT
    if isinstance(error, (ValueError, TypeError)):
        return ErrorCategory.VALIDATION
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "SagaflowError",
    "TransientError",
    "StepTimeoutError",
    "ValidationError",
    "ConfigError",
    "OrchestrationError",
    "WorkflowError",
    "ScheduleError",
    "CronFormatError",
    "is_retryable",
    "categorize_error",
]
