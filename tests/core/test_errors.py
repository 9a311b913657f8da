"""Tests for the sagaflow error hierarchy.

Covers:
- Default categories and retryable flags per error class
- with_context() fluent API and to_dict() serialization
- Cause chaining
- is_retryable / categorize_error helpers
"""

import pytest

from sagaflow.core.errors import (
    ConfigError,
    CronFormatError,
    ErrorCategory,
    ErrorContext,
    OrchestrationError,
    SagaflowError,
    ScheduleError,
    StepTimeoutError,
    TransientError,
    ValidationError,
    WorkflowError,
    categorize_error,
    is_retryable,
)


class TestErrorDefaults:
    def test_base_error_is_internal_and_not_retryable(self):
        err = SagaflowError("boom")
        assert err.category == ErrorCategory.INTERNAL
        assert err.retryable is False
        assert str(err) == "boom"

    def test_transient_is_retryable(self):
        err = TransientError("broker down")
        assert err.retryable is True
        assert err.category == ErrorCategory.STEP

    def test_step_timeout_carries_step_and_limit(self):
        err = StepTimeoutError("too slow", step_name="Charge", timeout=2.5)
        assert err.retryable is True
        assert err.category == ErrorCategory.TIMEOUT
        assert err.step_name == "Charge"
        assert err.timeout == 2.5
        assert err.context.step == "Charge"

    def test_validation_and_config_never_retry(self):
        assert ValidationError("bad").retryable is False
        assert ConfigError("bad").category == ErrorCategory.CONFIG

    def test_schedule_category(self):
        assert ScheduleError("x").category == ErrorCategory.SCHEDULE
        assert WorkflowError("x").category == ErrorCategory.ORCHESTRATION

    def test_cron_format_error_is_value_error(self):
        err = CronFormatError("bad cron", expression="* *")
        assert isinstance(err, ValueError)
        assert isinstance(err, ScheduleError)
        assert isinstance(err, OrchestrationError)
        assert err.expression == "* *"

    def test_explicit_overrides(self):
        err = SagaflowError("x", category=ErrorCategory.STEP, retryable=True, retry_after=3.0)
        assert err.category == ErrorCategory.STEP
        assert err.retryable is True
        assert err.retry_after == 3.0


class TestErrorContext:
    def test_with_context_sets_known_fields(self):
        err = WorkflowError("reused").with_context(workflow="orders", run_id="r1")
        assert err.context.workflow == "orders"
        assert err.context.run_id == "r1"

    def test_with_context_unknown_keys_go_to_metadata(self):
        err = SagaflowError("x").with_context(tenant="acme")
        assert err.context.metadata == {"tenant": "acme"}

    def test_context_to_dict_skips_none(self):
        ctx = ErrorContext(step="A", metadata={"attempt": 2})
        assert ctx.to_dict() == {"step": "A", "attempt": 2}


class TestErrorSerialization:
    def test_to_dict(self):
        err = TransientError("down", retry_after=1.5).with_context(step="publish")
        data = err.to_dict()
        assert data["error_type"] == "TransientError"
        assert data["message"] == "down"
        assert data["category"] == "STEP"
        assert data["retryable"] is True
        assert data["retry_after"] == 1.5
        assert data["context"] == {"step": "publish"}

    def test_cause_is_chained(self):
        root = KeyError("missing")
        err = SagaflowError("wrapped", cause=root)
        assert err.__cause__ is root
        assert err.to_dict()["cause"] == str(root)

    def test_validation_to_dict_includes_field(self):
        data = ValidationError("bad", field="steps", value=[]).to_dict()
        assert data["field"] == "steps"
        assert data["value"] == "[]"

    def test_repr(self):
        assert repr(ConfigError("nope")) == "ConfigError('nope', category=CONFIG)"


class TestHelpers:
    @pytest.mark.parametrize(
        "error, expected",
        [
            (TransientError("x"), True),
            (ValidationError("x"), False),
            (ConnectionError("x"), True),
            (TimeoutError("x"), True),
            (ValueError("x"), False),
        ],
    )
    def test_is_retryable(self, error, expected):
        assert is_retryable(error) is expected

    def test_categorize_error(self):
        assert categorize_error(StepTimeoutError("x")) == ErrorCategory.TIMEOUT
        assert categorize_error(TimeoutError()) == ErrorCategory.TIMEOUT
