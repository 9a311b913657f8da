"""Middleware - cross-cutting wrappers around every leaf step.

Manifesto:
    Timing, retries, deadlines, idempotency and persistence apply to many
steps but belong to none of them. A middleware receives the context, the
leaf being run and a ``call_next`` delegate; it may act before and after
``call_next``, catch what it raises, or not call it at all to short-circuit
the rest of the chain and the step itself.

ARCHITECTURE
────────────
::

    use(A).use(B).use(C)

    A.invoke ─► B.invoke ─► C.invoke ─► step.execute
       ◄─────────◄────────────◄──────────┘   (exceptions unwind outward)

    Composite nodes (conditional, parallel, sub-workflow) are never
    wrapped; the leaves inside them are.

Example::

    workflow = (
        Workflow.create("orders")
        .use(LoggingMiddleware())
        .use(RetryMiddleware(ExponentialBackoff(max_retries=2, jitter=False)))
        .use(TimeoutMiddleware(5.0, per_step={"ChargePayment": 30.0}))
        .step(ChargePayment())
        .build()
    )

Tags:
    sagaflow, orchestration, middleware, chain-of-responsibility, retry, timeout

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Sequence
from typing import TYPE_CHECKING, Any

from sagaflow.core.errors import StepTimeoutError
from sagaflow.core.logging import get_logger
from sagaflow.execution.retry import ExponentialBackoff, RetryStrategy, SleepFn, retry_async
from sagaflow.orchestration.exceptions import OperationCancelledError

if TYPE_CHECKING:
    from sagaflow.orchestration.step_types import Step
    from sagaflow.orchestration.workflow_context import WorkflowContext

logger = get_logger(__name__)

NextDelegate = Callable[["WorkflowContext"], Awaitable[None]]
MiddlewareFunction = Callable[["WorkflowContext", "Step", NextDelegate], Awaitable[None]]


class Middleware(ABC):
    """Wraps the execution of a leaf step."""

    @abstractmethod
    async def invoke(self, context: WorkflowContext, step: Step, call_next: NextDelegate) -> None:
        """Run around ``call_next``; skip calling it to short-circuit."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class FunctionMiddleware(Middleware):
    """Adapts a bare ``async fn(context, step, call_next)``."""

    def __init__(self, fn: MiddlewareFunction, name: str | None = None):
        if not callable(fn):
            raise TypeError(f"middleware must be callable, got {type(fn).__name__}")
        self.fn = fn
        self.name = name or getattr(fn, "__name__", "middleware")

    async def invoke(self, context: WorkflowContext, step: Step, call_next: NextDelegate) -> None:
        await self.fn(context, step, call_next)

    def __repr__(self) -> str:
        return f"FunctionMiddleware({self.name})"


def as_middleware(candidate: Middleware | MiddlewareFunction) -> Middleware:
    """Return ``candidate`` as a :class:`Middleware` instance."""
    if isinstance(candidate, Middleware):
        return candidate
    return FunctionMiddleware(candidate)


def build_chain(middleware: Sequence[Middleware], step: Step) -> NextDelegate:
    """Nest ``middleware`` around ``step.execute``; the first entry is outermost."""

    async def terminal(context: WorkflowContext) -> None:
        await step.execute(context)

    chain: NextDelegate = terminal
    for mw in reversed(middleware):
        chain = _link(mw, step, chain)
    return chain


def _link(mw: Middleware, step: Step, call_next: NextDelegate) -> NextDelegate:
    async def invoke(context: WorkflowContext) -> None:
        await mw.invoke(context, step, call_next)

    return invoke


# =============================================================================
# Built-in middleware
# =============================================================================


class TimingMiddleware(Middleware):
    """Records each leaf's wall-clock duration in ``properties``."""

    def __init__(self, key_prefix: str = "timing."):
        self.key_prefix = key_prefix

    async def invoke(self, context: WorkflowContext, step: Step, call_next: NextDelegate) -> None:
        started = time.perf_counter()
        try:
            await call_next(context)
        finally:
            context.properties[f"{self.key_prefix}{step.name}"] = time.perf_counter() - started


class LoggingMiddleware(Middleware):
    """Emits ``step.start`` / ``step.complete`` / ``step.failed`` events."""

    def __init__(self, log: Any | None = None):
        self.log = log or logger

    async def invoke(self, context: WorkflowContext, step: Step, call_next: NextDelegate) -> None:
        self.log.debug("step.start", step=step.name, run_id=context.run_id)
        started = time.perf_counter()
        try:
            await call_next(context)
        except OperationCancelledError:
            self.log.info("step.cancelled", step=step.name, run_id=context.run_id)
            raise
        except Exception as exc:
            self.log.warning(
                "step.failed",
                step=step.name,
                run_id=context.run_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise
        self.log.debug(
            "step.complete",
            step=step.name,
            run_id=context.run_id,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )


class RetryMiddleware(Middleware):
    """Re-invokes the rest of the chain until it succeeds or the strategy gives up.

    The attempt count is stored in ``properties["retry.<step>.attempts"]``.
    Cancellation is never retried.
    """

    def __init__(
        self,
        strategy: RetryStrategy | None = None,
        *,
        per_step: dict[str, RetryStrategy] | None = None,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.strategy = strategy or ExponentialBackoff()
        self.per_step = dict(per_step or {})
        self._sleep = sleep

    async def invoke(self, context: WorkflowContext, step: Step, call_next: NextDelegate) -> None:
        key = f"retry.{step.name}.attempts"
        strategy = self.per_step.get(step.name, self.strategy)

        def on_retry(attempt: int, error: BaseException, delay: float) -> None:
            context.properties[key] = attempt
            logger.warning(
                "step.retry",
                step=step.name,
                run_id=context.run_id,
                attempt=attempt,
                delay=round(delay, 3),
                error=str(error),
            )

        context.properties.pop(key, None)
        try:
            _, attempts = await retry_async(
                lambda: call_next(context),
                strategy,
                on_retry=on_retry,
                sleep=self._sleep,
                never_retry=(OperationCancelledError,),
            )
        except Exception:
            context.properties[key] = context.properties.get(key, 0) + 1
            raise
        context.properties[key] = attempts


class TimeoutMiddleware(Middleware):
    """Fails a leaf with :class:`StepTimeoutError` when it overruns its deadline.

    ``timeout`` applies to every leaf; ``per_step`` overrides it by step
    name. A ``None`` timeout falls back to ``SAGAFLOW_STEP_TIMEOUT_SECONDS``;
    when that is unset too, steps run unbounded.
    """

    def __init__(self, timeout: float | None = None, *, per_step: dict[str, float] | None = None):
        if timeout is None:
            from sagaflow.core.config import get_settings

            timeout = get_settings().step_timeout_seconds
        if timeout is not None and timeout <= 0:
            raise ValueError("timeout must be positive")
        self.timeout = timeout
        self.per_step = dict(per_step or {})

    def timeout_for(self, step: Step) -> float | None:
        return self.per_step.get(step.name, self.timeout)

    async def invoke(self, context: WorkflowContext, step: Step, call_next: NextDelegate) -> None:
        limit = self.timeout_for(step)
        if limit is None:
            await call_next(context)
            return
        try:
            await asyncio.wait_for(call_next(context), timeout=limit)
        except TimeoutError as exc:
            raise StepTimeoutError(
                f"Step '{step.name}' timed out after {limit}s",
                step_name=step.name,
                timeout=limit,
                cause=exc,
            ) from exc


class IdempotencyMiddleware(Middleware):
    """Skips a leaf whose idempotency key already completed.

    The key defaults to ``"<correlation_id>:<step name>"``, so a retried
    request sharing a correlation id does not repeat side effects. Pass
    ``key_fn`` to derive keys from the context instead. Completed keys are
    kept in memory on this instance, at most ``max_keys`` of them; the least
    recently seen key is forgotten first. ``max_keys=None`` keeps them all.
    """

    def __init__(
        self,
        key_fn: Callable[[WorkflowContext, Step], str] | None = None,
        max_keys: int | None = 10_000,
    ):
        if max_keys is not None and max_keys <= 0:
            raise ValueError(f"max_keys must be positive, got {max_keys}")
        self.key_fn = key_fn or (lambda ctx, step: f"{ctx.correlation_id}:{step.name}")
        self.max_keys = max_keys
        self._completed: OrderedDict[str, None] = OrderedDict()

    async def invoke(self, context: WorkflowContext, step: Step, call_next: NextDelegate) -> None:
        key = self.key_fn(context, step)
        if key in self._completed:
            self._completed.move_to_end(key)
            logger.info("step.skipped", step=step.name, run_id=context.run_id, reason="duplicate")
            context.properties[f"idempotency.{step.name}.skipped"] = True
            return
        await call_next(context)
        self._completed[key] = None
        if self.max_keys is not None and len(self._completed) > self.max_keys:
            evicted, _ = self._completed.popitem(last=False)
            logger.debug("idempotency.key_evicted", key=evicted)

    def has_completed(self, key: str) -> bool:
        return key in self._completed

    def reset(self) -> None:
        self._completed.clear()
