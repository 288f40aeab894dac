"""Tests for tracing spans, correlation binding and metric logging."""

import pytest
import structlog
from structlog.testing import capture_logs

from rag_composer.exceptions import NotFoundError
from rag_composer.observability.logger import setup_logging
from rag_composer.pipeline.sequence import RunnableSequence
from rag_composer.runnables.base import RunnableLambda
from rag_composer.runtime.context import ExecutionContext


def fail(x):
    raise NotFoundError("gone")


async def test_spans_recorded_per_stage(ctx):
    seq = RunnableSequence(
        RunnableLambda(lambda x: x + 1, name="inc"),
        RunnableLambda(lambda x: x * 2, name="double"),
        name="math",
    )
    assert await seq.invoke(1, ctx) == 4
    names = [s.name for s in ctx.trace.spans]
    assert names == ["inc", "double", "math"]
    assert all(s.status == "ok" for s in ctx.trace.spans)


async def test_failed_span_records_error_kind(ctx):
    with pytest.raises(NotFoundError):
        await RunnableLambda(fail, name="lookup").invoke(None, ctx)
    assert ctx.trace.spans[-1].status == "not_found"
    assert ctx.trace.to_dict()["spans"][0]["name"] == "lookup"


async def test_correlation_id_bound_during_invoke():
    seen = []

    def record(x):
        seen.append(structlog.contextvars.get_contextvars().get("correlation_id"))
        return x

    ctx = ExecutionContext(correlation_id="req-123")
    await RunnableLambda(record).invoke(1, ctx)
    assert seen == ["req-123"]
    assert "correlation_id" not in structlog.contextvars.get_contextvars()


async def test_batch_logs_metrics():
    with capture_logs() as logs:
        await RunnableLambda(lambda x: x, name="identity").batch([1, 2, 3])
    batch = [entry for entry in logs if entry["event"] == "batch_metrics"]
    assert batch[0]["size"] == 3
    assert batch[0]["failures"] == 0


async def test_stream_termination_logged():
    with capture_logs() as logs:
        items = [i async for i in RunnableLambda(lambda x: x, name="one").stream(7)]
    assert items == [7]
    ended = [entry for entry in logs if entry["event"] == "stream_terminated"]
    assert ended[0]["termination"] == "completed"
    assert ended[0]["delivered"] == 1


def test_setup_logging_accepts_console_output():
    setup_logging(level="debug", json_output=False)
    setup_logging()
    structlog.reset_defaults()
