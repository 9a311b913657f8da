"""Tests for the typed pipeline."""

import pytest

from sagaflow.orchestration import CancellationToken, OperationCancelledError, Pipeline, PipelineTypeError


def parse(raw: str) -> int:
    return int(raw)


async def double(n: int, cancellation: CancellationToken) -> int:
    return n * 2


def shout(text: str) -> str:
    return text.upper()


def describe(n: int | None) -> str:
    return "none" if n is None else f"n={n}"


class TestComposition:
    @pytest.mark.asyncio
    async def test_stages_chain_in_order(self):
        pipeline = Pipeline.create(str).pipe(parse).pipe(double).pipe(str).build()

        assert await pipeline("21") == "42"
        assert pipeline.stage_names == ["parse", "double", "str"]
        assert len(pipeline) == 3
        assert pipeline.input_type is str
        assert pipeline.output_type is str

    @pytest.mark.asyncio
    async def test_empty_pipeline_is_identity(self):
        pipeline = Pipeline.create(int).build()
        assert await pipeline(7) == 7
        assert len(pipeline) == 0

    def test_builder_is_immutable(self):
        base = Pipeline.create(str)
        base.pipe(parse)
        assert len(base.build()) == 0

    def test_custom_stage_name(self):
        pipeline = Pipeline.create(str).pipe(parse, name="to_int").build()
        assert pipeline.stage_names == ["to_int"]

    @pytest.mark.asyncio
    async def test_unannotated_stages_accept_anything(self):
        pipeline = Pipeline.create(int).pipe(lambda n: n + 1).pipe(lambda n: n * 10).build()
        assert await pipeline(1) == 20

    @pytest.mark.asyncio
    async def test_run_alias(self):
        pipeline = Pipeline.create(str).pipe(shout).build()
        assert await pipeline.run("hi") == "HI"


class TestTypeChecking:
    def test_mismatch_fails_at_pipe(self):
        with pytest.raises(PipelineTypeError) as exc_info:
            Pipeline.create(str).pipe(double)

        err = exc_info.value
        assert err.stage == "double"
        assert err.expected is int
        assert err.actual is str
        assert "expects int" in str(err)
        assert isinstance(err, TypeError)

    def test_mismatch_detected_mid_chain(self):
        with pytest.raises(PipelineTypeError):
            Pipeline.create(str).pipe(parse).pipe(shout)

    def test_explicit_output_type_is_checked(self):
        with pytest.raises(PipelineTypeError):
            Pipeline.create(str).pipe(lambda s: len(s), int).pipe(shout)

    def test_optional_input_accepts_plain_type(self):
        builder = Pipeline.create(str).pipe(parse).pipe(describe)
        assert builder.output_type is str

    def test_subclass_is_accepted(self):
        def takes_number(x: int) -> int:
            return x

        Pipeline.create(bool).pipe(lambda b: b, bool).pipe(takes_number)

    def test_non_callable_rejected(self):
        with pytest.raises(TypeError, match="callable"):
            Pipeline.create(str).pipe("not a function")


class TestCancellation:
    @pytest.mark.asyncio
    async def test_token_passed_to_stages_that_ask(self):
        seen = []

        def capture(value, token):
            seen.append(token)
            return value

        token = CancellationToken()
        await Pipeline.create(int).pipe(capture).build()(1, token)
        assert seen == [token]

    @pytest.mark.asyncio
    async def test_optional_second_parameter_not_treated_as_token(self):
        def scale(value, factor=3):
            return value * factor

        assert await Pipeline.create(int).pipe(scale).build()(2) == 6

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self):
        calls = []
        pipeline = Pipeline.create(int).pipe(lambda n: calls.append(n)).build()
        token = CancellationToken()
        token.cancel("stop")

        with pytest.raises(OperationCancelledError, match="stop"):
            await pipeline(1, token)
        assert calls == []

    @pytest.mark.asyncio
    async def test_cancellation_checked_between_stages(self):
        calls = []

        def first(value, token):
            calls.append("first")
            token.cancel()
            return value

        def second(value):
            calls.append("second")
            return value

        pipeline = Pipeline.create(int).pipe(first).pipe(second).build()
        with pytest.raises(OperationCancelledError):
            await pipeline(1, CancellationToken())
        assert calls == ["first"]
