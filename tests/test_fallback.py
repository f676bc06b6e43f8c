"""Tests for the ordered fallback-stage combinator."""

import asyncio

import pytest

from scrapeplan.llm.fallback import Err, FallbackExhaustedError, FallbackStage, Ok, run_fallback_chain


def stage(name, result):
    async def run():
        if isinstance(result, BaseException):
            raise result
        return result

    return FallbackStage(name, run)


class TestRunFallbackChain:
    async def test_first_ok_wins(self):
        calls = []

        async def second():
            calls.append("second")
            return Ok("never")

        outcome = await run_fallback_chain([stage("first", Ok(1)), FallbackStage("second", second)])
        assert outcome.value == 1
        assert outcome.stage == "first"
        assert outcome.failures == ()
        assert calls == []

    async def test_err_falls_through(self):
        outcome = await run_fallback_chain([stage("a", Err("broken")), stage("b", Ok("fine"))])
        assert outcome.stage == "b"
        assert [(f.stage, f.error) for f in outcome.failures] == [("a", "broken")]

    async def test_exception_counts_as_err(self):
        boom = RuntimeError("boom")
        outcome = await run_fallback_chain([stage("a", boom), stage("b", Ok(2))])
        assert outcome.failures[0].exception is boom
        assert outcome.failures[0].error == "boom"

    async def test_exception_without_message_uses_type(self):
        outcome = await run_fallback_chain([stage("a", KeyError()), stage("b", Ok(2))])
        assert outcome.failures[0].error in ("KeyError", "")
        assert outcome.failures[0].error

    async def test_exhausted(self):
        with pytest.raises(FallbackExhaustedError, match="a: x; b: y") as info:
            await run_fallback_chain([stage("a", Err("x")), stage("b", Err("y"))])
        assert len(info.value.failures) == 2

    async def test_no_stages(self):
        with pytest.raises(FallbackExhaustedError, match="no stages"):
            await run_fallback_chain([])

    async def test_cancellation_propagates(self):
        with pytest.raises(asyncio.CancelledError):
            await run_fallback_chain([stage("a", asyncio.CancelledError()), stage("b", Ok(1))])
