"""
Workflow Context - mutable per-run state shared by every step.

One context is created per run. Steps and middleware read and write the
``properties`` bag, the runner moves the cursor (``current_step_index``,
``current_step_name``), appends :class:`StepError` records and flips the
``aborted`` flag. The cancellation token travels with the context so any
step may observe it.

Example:
    from sagaflow.orchestration import WorkflowContext

    ctx = WorkflowContext.create(properties={"order_id": 42})
    result = await workflow.execute(ctx)
    result.context.properties["receipt"]

Manifesto:
    A workflow is immutable and shareable; everything that changes during a
    run lives here. Keeping the two apart is what lets one workflow serve
    many concurrent runs.

Tags:
    sagaflow, orchestration, context, shared-state, cancellation

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import copy
import threading
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Generic, TypeVar

from sagaflow.orchestration.exceptions import OperationCancelledError

TData = TypeVar("TData")


class WorkflowStatus(str, Enum):
    """Lifecycle of a single run."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    FAULTED = "faulted"
    ABORTED = "aborted"
    COMPENSATED = "compensated"

    @property
    def is_terminal(self) -> bool:
        return self not in (WorkflowStatus.NOT_STARTED, WorkflowStatus.RUNNING)


class ErrorKind(str, Enum):
    STEP = "step"
    COMPENSATION = "compensation"


@dataclass(frozen=True)
class StepError:
    """A failure recorded against a run."""

    step_name: str
    message: str
    exception: BaseException | None = field(default=None, compare=False, repr=False)
    kind: ErrorKind = ErrorKind.STEP
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC), compare=False)

    @classmethod
    def from_exception(cls, step_name: str, exc: BaseException, kind: ErrorKind = ErrorKind.STEP) -> StepError:
        return cls(step_name=step_name, message=str(exc) or type(exc).__name__, exception=exc, kind=kind)

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_name": self.step_name,
            "message": self.message,
            "kind": self.kind.value,
            "error_type": type(self.exception).__name__ if self.exception else None,
            "timestamp": self.timestamp.isoformat(),
        }


class CancellationToken:
    """Cooperative cancellation signal.

    Thread-safe: the scheduler's backend thread, an event loop, or a plain
    caller may request cancellation. Steps observe it with
    :meth:`raise_if_cancelled` or :attr:`is_cancelled`.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError(self._reason or "Operation was cancelled")

    async def wait(self, poll_interval: float = 0.05) -> None:
        """Suspend until cancellation is requested."""
        while not self._event.is_set():
            await asyncio.sleep(poll_interval)

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.is_cancelled})"


@dataclass
class WorkflowContext:
    """
    Mutable state for one workflow run.

    Attributes:
        run_id: Unique identifier for this run
        correlation_id: Identifier shared with related runs or requests
        properties: Shared scratch bag read and written by steps
        current_step_index: Index of the top-level node being executed
        current_step_name: Name of the leaf (or node) being executed
        errors: Step and compensation failures, in recording order
        aborted: Set when the run stops through cancellation
        cancellation: Cooperative cancellation token
        status: Lifecycle state, driven by the runner
    """

    run_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    correlation_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    properties: dict[str, Any] = field(default_factory=dict)
    current_step_index: int = -1
    current_step_name: str | None = None
    errors: list[StepError] = field(default_factory=list)
    aborted: bool = False
    cancellation: CancellationToken = field(default_factory=CancellationToken, repr=False)
    status: WorkflowStatus = WorkflowStatus.NOT_STARTED
    started_at: datetime | None = None
    depth: int = field(default=0, repr=False)

    @classmethod
    def create(
        cls,
        properties: dict[str, Any] | None = None,
        *,
        correlation_id: str | None = None,
        cancellation: CancellationToken | None = None,
    ) -> WorkflowContext:
        """Create a fresh context for a run."""
        kwargs: dict[str, Any] = {"properties": dict(properties or {})}
        if correlation_id:
            kwargs["correlation_id"] = correlation_id
        if cancellation is not None:
            kwargs["cancellation"] = cancellation
        return cls(**kwargs)

    # =========================================================================
    # Property access
    # =========================================================================

    def get(self, key: str, default: Any = None) -> Any:
        return self.properties.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.properties[key] = value

    def __contains__(self, key: str) -> bool:
        return key in self.properties

    @property
    def is_cancelled(self) -> bool:
        return self.cancellation.is_cancelled

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def snapshot_properties(self) -> dict[str, Any]:
        """Deep copy of the property bag, for checkpoints."""
        return copy.deepcopy(self.properties)

    # =========================================================================
    # Serialization
    # =========================================================================

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "correlation_id": self.correlation_id,
            "properties": self.properties,
            "current_step_index": self.current_step_index,
            "current_step_name": self.current_step_name,
            "errors": [e.to_dict() for e in self.errors],
            "aborted": self.aborted,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkflowContext:
        """Rebuild a not-yet-started context from serialized identity and properties."""
        return cls(
            run_id=data.get("run_id") or uuid.uuid4().hex,
            correlation_id=data.get("correlation_id") or uuid.uuid4().hex,
            properties=dict(data.get("properties", {})),
        )

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(run_id={self.run_id[:8]}..., "
            f"status={self.status.value}, step={self.current_step_name!r}, "
            f"properties={list(self.properties.keys())})"
        )


@dataclass(repr=False)
class TypedWorkflowContext(WorkflowContext, Generic[TData]):
    """Context that also owns a strongly-typed payload."""

    data: TData | None = None

    @classmethod
    def for_data(
        cls,
        data: TData,
        properties: dict[str, Any] | None = None,
        *,
        correlation_id: str | None = None,
        cancellation: CancellationToken | None = None,
    ) -> TypedWorkflowContext[TData]:
        ctx = cls(data=data, properties=dict(properties or {}))
        if correlation_id:
            ctx.correlation_id = correlation_id
        if cancellation is not None:
            ctx.cancellation = cancellation
        return ctx
