"""Tests for run context, cancellation tokens and orchestration exceptions."""

import asyncio

import pytest

from sagaflow.core.errors import ErrorCategory, OrchestrationError
from sagaflow.orchestration import (
    CancellationToken,
    CheckpointNotFoundError,
    OperationCancelledError,
    StepFailedError,
    TypedWorkflowContext,
    WorkflowContext,
    WorkflowNotFoundError,
)
from sagaflow.orchestration.workflow_context import ErrorKind, StepError, WorkflowStatus


class TestWorkflowContext:
    def test_create_defaults(self):
        ctx = WorkflowContext.create()

        assert len(ctx.run_id) == 32
        assert ctx.run_id != ctx.correlation_id
        assert ctx.properties == {}
        assert ctx.current_step_index == -1
        assert ctx.current_step_name is None
        assert ctx.status is WorkflowStatus.NOT_STARTED
        assert not ctx.aborted
        assert not ctx.has_errors
        assert not ctx.is_cancelled

    def test_create_copies_properties(self):
        seed = {"order_id": 7}
        ctx = WorkflowContext.create(seed, correlation_id="req-1")
        ctx.set("total", 10)

        assert seed == {"order_id": 7}
        assert ctx.correlation_id == "req-1"
        assert ctx.get("order_id") == 7
        assert ctx.get("missing", "fallback") == "fallback"
        assert "total" in ctx

    def test_shared_cancellation_token(self):
        token = CancellationToken()
        ctx = WorkflowContext.create(cancellation=token)
        token.cancel()
        assert ctx.is_cancelled

    def test_snapshot_is_deep_copy(self):
        ctx = WorkflowContext.create({"items": [1, 2]})
        snap = ctx.snapshot_properties()
        ctx.properties["items"].append(3)
        assert snap == {"items": [1, 2]}

    def test_dict_round_trip_keeps_identity_and_properties(self):
        ctx = WorkflowContext.create({"a": 1}, correlation_id="corr")
        ctx.errors.append(StepError(step_name="A", message="boom"))
        ctx.status = WorkflowStatus.FAULTED

        data = ctx.to_dict()
        assert data["status"] == "faulted"
        assert data["errors"][0]["step_name"] == "A"
        assert data["started_at"] is None

        restored = WorkflowContext.from_dict(data)
        assert restored.run_id == ctx.run_id
        assert restored.correlation_id == "corr"
        assert restored.properties == {"a": 1}
        assert restored.status is WorkflowStatus.NOT_STARTED
        assert restored.errors == []

    def test_from_dict_generates_missing_ids(self):
        restored = WorkflowContext.from_dict({})
        assert restored.run_id
        assert restored.properties == {}

    def test_typed_context(self):
        ctx = TypedWorkflowContext.for_data({"sku": "X"}, {"k": 1}, correlation_id="c")
        assert ctx.data == {"sku": "X"}
        assert ctx.get("k") == 1
        assert ctx.correlation_id == "c"


class TestWorkflowStatus:
    @pytest.mark.parametrize(
        "status,terminal",
        [
            (WorkflowStatus.NOT_STARTED, False),
            (WorkflowStatus.RUNNING, False),
            (WorkflowStatus.COMPLETED, True),
            (WorkflowStatus.FAULTED, True),
            (WorkflowStatus.ABORTED, True),
            (WorkflowStatus.COMPENSATED, True),
        ],
    )
    def test_is_terminal(self, status, terminal):
        assert status.is_terminal is terminal


class TestStepError:
    def test_from_exception(self):
        exc = ValueError("bad input")
        err = StepError.from_exception("Parse", exc)

        assert err.message == "bad input"
        assert err.exception is exc
        assert err.kind is ErrorKind.STEP
        assert err.to_dict()["error_type"] == "ValueError"

    def test_empty_message_falls_back_to_type(self):
        err = StepError.from_exception("Undo", KeyError(), ErrorKind.COMPENSATION)
        assert err.message == "KeyError"
        assert err.to_dict()["kind"] == "compensation"


class TestCancellationToken:
    def test_cancel_is_sticky_and_keeps_first_reason(self):
        token = CancellationToken()
        assert not token.is_cancelled
        token.raise_if_cancelled()

        token.cancel("first")
        token.cancel("second")

        assert token.is_cancelled
        assert token.reason == "first"
        with pytest.raises(OperationCancelledError, match="first"):
            token.raise_if_cancelled()

    def test_default_message(self):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(OperationCancelledError, match="Operation was cancelled"):
            token.raise_if_cancelled()

    @pytest.mark.asyncio
    async def test_wait_returns_after_cancel(self):
        token = CancellationToken()
        waiter = asyncio.create_task(token.wait(poll_interval=0.01))
        await asyncio.sleep(0.02)
        assert not waiter.done()

        token.cancel()
        await asyncio.wait_for(waiter, timeout=1.0)

    def test_repr(self):
        assert repr(CancellationToken()) == "CancellationToken(cancelled=False)"


class TestOrchestrationExceptions:
    def test_workflow_not_found_lists_available(self):
        err = WorkflowNotFoundError("missing", ["a", "b"])
        assert str(err) == "Workflow not found: missing. Available: a, b"
        assert err.workflow_name == "missing"
        assert isinstance(err, OrchestrationError)

    def test_workflow_not_found_without_available(self):
        assert str(WorkflowNotFoundError("x")) == "Workflow not found: x"

    def test_step_failed_wraps_cause(self):
        cause = RuntimeError("card declined")
        err = StepFailedError("Charge", cause)

        assert err.step_name == "Charge"
        assert err.cause is cause
        assert err.__cause__ is cause
        assert str(err) == "card declined"
        assert err.context.step == "Charge"
        assert err.siblings == []

    def test_cancelled_category(self):
        err = OperationCancelledError()
        assert err.category is ErrorCategory.CANCELLED
        assert str(err) == "Operation was cancelled"

    def test_checkpoint_not_found(self):
        err = CheckpointNotFoundError("run-1")
        assert err.run_id == "run-1"
        assert "run-1" in str(err)
