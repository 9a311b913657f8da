"""Typed Pipeline - sequential, type-chained transformation stages.

A pipeline is plain function composition: each stage's output feeds the
next stage's input. Stage types are checked while the pipeline is being
composed, from explicit ``output_type`` arguments and from annotations, so
a mismatch fails at ``pipe(...)`` rather than halfway through a run.

There is no middleware, branching, parallelism or compensation here; use a
:class:`~sagaflow.orchestration.workflow.Workflow` for those.

Example::

    def parse(raw: str) -> int:
        return int(raw)

    async def double(n: int, cancellation: CancellationToken) -> int:
        return n * 2

    pipeline = Pipeline.create(str).pipe(parse).pipe(double).pipe(str).build()
    assert await pipeline("21") == "42"
"""

from __future__ import annotations

import inspect
import types
import typing
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

from sagaflow.orchestration.exceptions import PipelineTypeError
from sagaflow.orchestration.step_types import maybe_await
from sagaflow.orchestration.workflow_context import CancellationToken

TIn = TypeVar("TIn")
TOut = TypeVar("TOut")

_UNKNOWN: Any = Any


def _is_union(tp: Any) -> bool:
    return typing.get_origin(tp) in (Union, types.UnionType)


def _compatible(actual: Any, expected: Any) -> bool:
    """Whether a value of type ``actual`` may be passed where ``expected`` is declared."""
    if expected in (Any, object, inspect.Parameter.empty) or actual is Any:
        return True
    if _is_union(actual):
        return all(_compatible(member, expected) for member in typing.get_args(actual))
    if _is_union(expected):
        return any(_compatible(actual, member) for member in typing.get_args(expected))
    expected_origin = typing.get_origin(expected) or expected
    actual_origin = typing.get_origin(actual) or actual
    if isinstance(expected_origin, type) and isinstance(actual_origin, type):
        return issubclass(actual_origin, expected_origin)
    return actual == expected


def _signature(fn: Callable[..., Any]) -> tuple[Any, Any, bool]:
    """Return ``(input_type, output_type, wants_token)`` for a transform.

    A class used as a transform (``str``, ``int``, a model) is treated as a
    constructor: any input, output of that class.
    """
    if isinstance(fn, type):
        return _UNKNOWN, fn, False
    try:
        params = [
            p
            for p in inspect.signature(fn).parameters.values()
            if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD)
        ]
    except (TypeError, ValueError):
        return _UNKNOWN, _UNKNOWN, False

    hints: dict[str, Any] = {}
    if inspect.isfunction(fn) or inspect.ismethod(fn):
        try:
            hints = typing.get_type_hints(fn)
        except (NameError, TypeError):
            hints = {}

    input_type = hints.get(params[0].name, _UNKNOWN) if params else _UNKNOWN
    wants_token = len(params) >= 2 and (
        params[1].default is inspect.Parameter.empty or params[1].name in ("cancellation", "token")
    )
    return input_type, hints.get("return", _UNKNOWN), wants_token


@dataclass(frozen=True)
class _Stage:
    name: str
    fn: Callable[..., Any]
    input_type: Any
    output_type: Any
    wants_token: bool

    async def run(self, value: Any, token: CancellationToken) -> Any:
        if self.wants_token:
            return await maybe_await(self.fn(value, token))
        return await maybe_await(self.fn(value))


class Pipeline(Generic[TIn, TOut]):
    """A composed, callable pipeline."""

    def __init__(self, stages: tuple[_Stage, ...], input_type: Any, output_type: Any):
        self._stages = stages
        self.input_type = input_type
        self.output_type = output_type

    @staticmethod
    def create(input_type: type[TIn] | Any = Any) -> PipelineBuilder[TIn, TIn]:
        """Start a pipeline that accepts ``input_type``."""
        return PipelineBuilder((), input_type, input_type)

    @property
    def stage_names(self) -> list[str]:
        return [s.name for s in self._stages]

    async def __call__(self, value: TIn, cancellation: CancellationToken | None = None) -> TOut:
        token = cancellation or CancellationToken()
        result: Any = value
        for stage in self._stages:
            token.raise_if_cancelled()
            result = await stage.run(result, token)
        return result

    run = __call__

    def __len__(self) -> int:
        return len(self._stages)


class PipelineBuilder(Generic[TIn, TOut]):
    """Immutable builder; every ``pipe`` returns a new builder."""

    def __init__(self, stages: tuple[_Stage, ...], input_type: Any, current_type: Any):
        self._stages = stages
        self._input_type = input_type
        self._current_type = current_type

    @property
    def output_type(self) -> Any:
        return self._current_type

    def pipe(
        self,
        transform: Callable[..., Any],
        output_type: Any = None,
        *,
        name: str | None = None,
    ) -> PipelineBuilder[TIn, Any]:
        """Append a stage.

        Raises:
            TypeError: ``transform`` is not callable
            PipelineTypeError: ``transform`` does not accept the previous output
        """
        if not callable(transform):
            raise TypeError(f"pipeline stages must be callable, got {type(transform).__name__}")
        declared_in, declared_out, wants_token = _signature(transform)
        stage_name = name or getattr(transform, "__name__", f"stage{len(self._stages)}")
        if not _compatible(self._current_type, declared_in):
            raise PipelineTypeError(stage_name, declared_in, self._current_type)
        stage = _Stage(
            name=stage_name,
            fn=transform,
            input_type=declared_in,
            output_type=output_type if output_type is not None else declared_out,
            wants_token=wants_token,
        )
        return PipelineBuilder(self._stages + (stage,), self._input_type, stage.output_type)

    def build(self) -> Pipeline[TIn, TOut]:
        return Pipeline(self._stages, self._input_type, self._current_type)
