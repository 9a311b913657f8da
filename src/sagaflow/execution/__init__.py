"""Execution helpers shared by the orchestration layer."""

from sagaflow.execution.retry import (
    ConstantBackoff,
    ExponentialBackoff,
    LinearBackoff,
    NoRetry,
    RetryStrategy,
    TransientOnly,
    retry_async,
)

__all__ = [
    "ConstantBackoff",
    "ExponentialBackoff",
    "LinearBackoff",
    "NoRetry",
    "RetryStrategy",
    "TransientOnly",
    "retry_async",
]
