"""Tests for sequence, fan-out, branch and graph composition."""

import asyncio
import gc

import pytest

from rag_composer.exceptions import (
    CompositionError,
    InvalidInputError,
    NotFoundError,
    PipelineCancelledError,
    UpstreamError,
)
from rag_composer.pipeline.branch import RunnableBranch
from rag_composer.pipeline.graph import PipelineGraph
from rag_composer.pipeline.parallel import MergePolicy, RunnableParallel
from rag_composer.pipeline.sequence import RunnableSequence
from rag_composer.runnables.base import Runnable, RunnableLambda
from rag_composer.runtime.context import ExecutionContext


def fails_with(error):
    def run(x):
        raise error

    return run


class Slow(Runnable[int, int]):
    def __init__(self, delay: float) -> None:
        self.delay = delay
        self.finished = False
        self.cancelled = False

    async def _call(self, input: int, ctx: ExecutionContext) -> int:
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        self.finished = True
        return input


# ---- sequence -------------------------------------------------------------


async def test_sequence_aborts_on_first_failure():
    ran = []
    seq = RunnableSequence(
        lambda x: x + 1,
        fails_with(NotFoundError("missing")),
        lambda x: ran.append(x),
    )
    with pytest.raises(NotFoundError):
        await seq.invoke(1)
    assert ran == []


async def test_sequence_streams_last_step():
    class Tokens(Runnable[str, str]):
        async def _call(self, input, ctx):
            return input

        async def _stream(self, input, ctx):
            for word in input.split():
                yield word

    seq = RunnableSequence(lambda x: x.lower(), Tokens())
    assert [t async for t in seq.stream("The Sky Is Blue")] == ["the", "sky", "is", "blue"]


def test_empty_sequence_rejected():
    with pytest.raises(CompositionError):
        RunnableSequence()


def test_named_sequence_is_not_flattened():
    inner = RunnableSequence(lambda x: x, lambda x: x, name="inner")
    outer = RunnableSequence(inner, lambda x: x)
    assert len(outer.steps) == 2


# ---- fan-out ----------------------------------------------------------------


async def test_parallel_merges_in_branch_order():
    par = RunnableParallel(
        {"a": lambda x: x + 1, "b": lambda x: x * 2},
        merge=lambda outs: list(outs.items()),
        policy=MergePolicy.FAIL_ALL,
    )
    assert await par.invoke(5) == [("a", 6), ("b", 10)]


async def test_parallel_fail_all_cancels_siblings():
    slow = Slow(5.0)
    par = RunnableParallel(
        {"slow": slow, "bad": fails_with(UpstreamError("down"))},
        merge=lambda outs: outs,
        policy=MergePolicy.FAIL_ALL,
    )
    with pytest.raises(UpstreamError, match="down"):
        await par.invoke(1)
    assert slow.cancelled
    assert not slow.finished


async def test_parallel_proceed_with_successes():
    par = RunnableParallel(
        {"a": lambda x: "A", "bad": fails_with(UpstreamError("down")), "c": lambda x: "C"},
        merge=lambda outs: outs,
        policy=MergePolicy.PROCEED_WITH_SUCCESSES,
    )
    assert await par.invoke(0) == {"a": "A", "c": "C"}


async def test_parallel_proceed_waits_for_every_branch():
    slow = Slow(0.03)
    par = RunnableParallel(
        [slow, RunnableLambda(fails_with(UpstreamError("x")), name="bad")],
        merge=lambda outs: outs,
        policy=MergePolicy.PROCEED_WITH_SUCCESSES,
    )
    assert await par.invoke(9) == {"Slow": 9}
    assert slow.finished


async def test_parallel_all_failed_raises_first_in_branch_order():
    par = RunnableParallel(
        {"first": fails_with(NotFoundError("one")), "second": fails_with(UpstreamError("two"))},
        merge=lambda outs: outs,
        policy=MergePolicy.PROCEED_WITH_SUCCESSES,
    )
    with pytest.raises(NotFoundError, match="one"):
        await par.invoke(0)


async def test_parallel_async_merge():
    async def merge(outs):
        return sum(outs.values())

    par = RunnableParallel([lambda x: 1, RunnableLambda(lambda x: 2, name="two")], merge=merge, policy=MergePolicy.FAIL_ALL)
    assert await par.invoke(None) == 3


def test_parallel_requires_explicit_policy():
    with pytest.raises(TypeError):
        RunnableParallel({"a": lambda x: x}, merge=dict)
    with pytest.raises(CompositionError):
        RunnableParallel({"a": lambda x: x}, merge=dict, policy="fail_all")


def test_parallel_duplicate_branch_names():
    with pytest.raises(CompositionError):
        RunnableParallel([lambda x: x, lambda x: x], merge=dict, policy=MergePolicy.FAIL_ALL)


async def test_parallel_cancelled_context():
    ctx = ExecutionContext()
    slow_a, slow_b = Slow(5.0), Slow(5.0)
    par = RunnableParallel({"a": slow_a, "b": slow_b}, merge=dict, policy=MergePolicy.PROCEED_WITH_SUCCESSES)
    asyncio.get_running_loop().call_later(0.02, ctx.cancel)
    with pytest.raises(PipelineCancelledError):
        await par.invoke(1, ctx)
    assert slow_a.cancelled and slow_b.cancelled


# ---- branch -----------------------------------------------------------------


async def test_branch_runs_exactly_one_route():
    calls = []

    def route(name):
        def run(x):
            calls.append(name)
            return name

        return run

    branch = RunnableBranch(
        (lambda x: x < 0, route("negative")),
        (lambda x: x < 10, route("small")),
        default=route("large"),
    )
    assert await branch.invoke(-1) == "negative"
    assert await branch.invoke(5) == "small"
    assert await branch.invoke(50) == "large"
    assert calls == ["negative", "small", "large"]


async def test_branch_async_predicate():
    async def is_question(x):
        return x.endswith("?")

    branch = RunnableBranch((is_question, lambda x: "answer"), default=lambda x: "echo")
    assert await branch.invoke("why?") == "answer"


async def test_branch_without_match_or_default():
    branch = RunnableBranch((lambda x: False, lambda x: x))
    with pytest.raises(InvalidInputError):
        await branch.invoke(1)


def test_branch_needs_routes():
    with pytest.raises(CompositionError):
        RunnableBranch()
    with pytest.raises(CompositionError):
        RunnableBranch(lambda x: True)


# ---- graph ------------------------------------------------------------------


def test_graph_rejects_cycles_at_composition_time():
    graph = PipelineGraph()
    for name in "abc":
        graph.add_node(name, lambda x: x)
    graph.add_edge("a", "b").add_edge("b", "c")
    with pytest.raises(CompositionError, match="cycle"):
        graph.add_edge("c", "a")
    with pytest.raises(CompositionError, match="self-loop"):
        graph.add_edge("b", "b")
    assert graph.edges == [("a", "b"), ("b", "c")]


def test_graph_rejects_unknown_and_duplicate_nodes():
    graph = PipelineGraph().add_node("a", lambda x: x)
    with pytest.raises(CompositionError):
        graph.add_node("a", lambda x: x)
    with pytest.raises(CompositionError):
        graph.add_edge("a", "missing")


def test_graph_compile_needs_single_sink_or_output():
    graph = PipelineGraph().add_node("a", lambda x: x).add_node("b", lambda x: x)
    with pytest.raises(CompositionError):
        graph.compile()
    assert graph.compile(output="b").output == "b"
    with pytest.raises(CompositionError):
        PipelineGraph().compile()


async def test_graph_diamond_routes_inputs():
    graph = PipelineGraph()
    graph.add_node("start", lambda x: x + 1)
    graph.add_node("left", lambda x: x * 2)
    graph.add_node("right", lambda x: x * 3)
    graph.add_node("join", lambda outs: outs["left"] + outs["right"])
    graph.add_edge("start", "left").add_edge("start", "right")
    graph.add_edge("left", "join").add_edge("right", "join")

    compiled = graph.compile()
    assert await compiled.invoke(1) == 2 * 2 + 2 * 3


async def test_graph_runs_independent_nodes_concurrently():
    graph = PipelineGraph()
    graph.add_node("a", Slow(0.1)).add_node("b", Slow(0.1))
    graph.add_node("join", lambda outs: outs)
    graph.add_edge("a", "join").add_edge("b", "join")
    loop = asyncio.get_running_loop()
    start = loop.time()
    assert await graph.compile().invoke(3) == {"a": 3, "b": 3}
    assert loop.time() - start < 0.18


async def test_graph_node_failure_cancels_others():
    slow = Slow(5.0)
    graph = PipelineGraph()
    graph.add_node("slow", slow).add_node("bad", fails_with(UpstreamError("boom")))
    graph.add_node("join", lambda outs: outs)
    graph.add_edge("slow", "join").add_edge("bad", "join")
    with pytest.raises(UpstreamError, match="boom"):
        await graph.compile().invoke(0)
    assert slow.cancelled


async def test_compiled_graph_composes_like_any_runnable():
    graph = PipelineGraph().add_node("only", lambda x: x * 2)
    pipeline = graph.compile() | (lambda x: x + 1)
    assert await pipeline.batch([1, 2, 3]) == [3, 5, 7]


@pytest.fixture
async def loop_reports():
    """Exception contexts the event loop reports while the test runs."""
    reported = []
    loop = asyncio.get_running_loop()
    loop.set_exception_handler(lambda loop, context: reported.append(context))
    yield reported
    loop.set_exception_handler(None)


def unretrieved(reported):
    gc.collect()
    return [c for c in reported if "never retrieved" in c.get("message", "")]


async def test_graph_reads_every_failed_node(loop_reports):
    graph = PipelineGraph()
    graph.add_node("a", fails_with(UpstreamError("a down")))
    graph.add_node("b", fails_with(UpstreamError("b down")))
    graph.add_node("c", Slow(5.0))
    graph.add_node("join", lambda outs: outs)
    for root in "abc":
        graph.add_edge(root, "join")
    with pytest.raises(UpstreamError):
        await graph.compile().invoke(0)
    await asyncio.sleep(0)
    assert unretrieved(loop_reports) == []


async def test_parallel_reads_every_failed_branch(loop_reports):
    par = RunnableParallel(
        {
            "a": fails_with(UpstreamError("a down")),
            "b": fails_with(UpstreamError("b down")),
            "slow": Slow(5.0),
        },
        merge=lambda outs: outs,
        policy=MergePolicy.FAIL_ALL,
    )
    with pytest.raises(UpstreamError):
        await par.invoke(0)
    await asyncio.sleep(0)
    assert unretrieved(loop_reports) == []
