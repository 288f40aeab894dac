"""Tests for retry and fallback wrappers."""

import asyncio

import pytest

from rag_composer.exceptions import (
    InvalidInputError,
    NotFoundError,
    PipelineCancelledError,
    RateLimitedError,
    UpstreamError,
)
from rag_composer.models.schemas import RetryPolicy
from rag_composer.runnables.base import Runnable, RunnableLambda
from rag_composer.runtime.context import ExecutionContext

FAST = RetryPolicy(max_retries=3, initial_delay_s=0.0, jitter=0.0)


class Flaky(Runnable[str, str]):
    """Raises the given errors in order, then succeeds."""

    def __init__(self, *errors: Exception) -> None:
        self.errors = list(errors)
        self.calls = 0

    async def _call(self, input: str, ctx: ExecutionContext) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return f"ok:{input}"


class AlwaysFails(Runnable[str, str]):
    def __init__(self, error_cls=UpstreamError) -> None:
        self.error_cls = error_cls
        self.calls = 0

    async def _call(self, input: str, ctx: ExecutionContext) -> str:
        self.calls += 1
        raise self.error_cls(f"attempt {self.calls}")


async def test_transient_failures_retried_until_success():
    flaky = Flaky(UpstreamError("a"), RateLimitedError("b"))
    assert await flaky.with_retry(FAST).invoke("x") == "ok:x"
    assert flaky.calls == 3


@pytest.mark.parametrize("retries", [0, 1, 3])
async def test_retry_budget_is_n_plus_one_calls(retries):
    runnable = AlwaysFails()
    policy = RetryPolicy(max_retries=retries, initial_delay_s=0.0, jitter=0.0)
    with pytest.raises(UpstreamError, match=f"attempt {retries + 1}"):
        await runnable.with_retry(policy).invoke("x")
    assert runnable.calls == retries + 1


async def test_invalid_input_is_not_retried():
    runnable = AlwaysFails(InvalidInputError)
    with pytest.raises(InvalidInputError):
        await runnable.with_retry(FAST).invoke("x")
    assert runnable.calls == 1


async def test_retry_with_keyword_policy():
    flaky = Flaky(UpstreamError("a"))
    assert await flaky.with_retry(max_retries=1, initial_delay_s=0.0).invoke("y") == "ok:y"


async def test_cancellation_during_backoff():
    ctx = ExecutionContext()
    runnable = AlwaysFails()
    slow = RetryPolicy(max_retries=5, initial_delay_s=10.0, jitter=0.0)
    asyncio.get_running_loop().call_later(0.02, ctx.cancel, "stop")
    with pytest.raises(PipelineCancelledError):
        await runnable.with_retry(slow).invoke("x", ctx)
    assert runnable.calls == 1


async def test_retry_after_hint_is_used(monkeypatch):
    delays = []

    async def fake_sleep(self, delay):
        delays.append(delay)

    monkeypatch.setattr(ExecutionContext, "sleep", fake_sleep)
    flaky = Flaky(RateLimitedError("slow", retry_after=1.5))
    await flaky.with_retry(RetryPolicy(initial_delay_s=0.1, jitter=0.0)).invoke("x")
    assert delays == [1.5]


async def test_stream_retry_only_before_first_item():
    attempts = 0

    class BreaksMidStream(Runnable[str, str]):
        async def _call(self, input, ctx):
            return input

        async def _stream(self, input, ctx):
            nonlocal attempts
            attempts += 1
            yield "first"
            raise UpstreamError("dropped")

    received = []
    with pytest.raises(UpstreamError):
        async for item in BreaksMidStream().with_retry(FAST).stream("x"):
            received.append(item)
    assert received == ["first"]
    assert attempts == 1


async def test_stream_retry_before_first_item():
    flaky = Flaky(UpstreamError("cold start"))
    assert [x async for x in flaky.with_retry(FAST).stream("s")] == ["ok:s"]
    assert flaky.calls == 2


async def test_fallback_used_on_primary_error():
    primary = AlwaysFails(NotFoundError)
    chain = primary.with_fallback(RunnableLambda(lambda x: f"backup:{x}"))
    assert await chain.invoke("q") == "backup:q"
    assert primary.calls == 1


async def test_fallback_error_from_alternate_surfaces():
    chain = AlwaysFails(UpstreamError).with_fallback(AlwaysFails(InvalidInputError))
    with pytest.raises(InvalidInputError):
        await chain.invoke("q")


async def test_fallback_chain_of_several():
    chain = AlwaysFails().with_fallback(AlwaysFails(), lambda x: "third")
    assert await chain.invoke("q") == "third"


async def test_fallback_does_not_absorb_cancellation():
    ctx = ExecutionContext()
    backup_calls = 0

    async def slow(x, ctx):
        await ctx.sleep(5)
        return x

    def backup(x):
        nonlocal backup_calls
        backup_calls += 1
        return x

    asyncio.get_running_loop().call_later(0.02, ctx.cancel)
    with pytest.raises(PipelineCancelledError):
        await RunnableLambda(slow).with_fallback(backup).invoke("q", ctx)
    assert backup_calls == 0


async def test_fallback_stream_switches_before_first_item():
    chain = AlwaysFails().with_fallback(lambda x: x.upper())
    assert [x async for x in chain.stream("abc")] == ["ABC"]


def test_fallback_needs_alternate():
    with pytest.raises(ValueError):
        AlwaysFails().with_fallback()
