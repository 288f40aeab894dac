"""Tests for the tool registry and the retriever tool."""

import asyncio

import pytest
from pydantic import BaseModel

from rag_composer.exceptions import (
    ConflictError,
    InvalidInputError,
    NotFoundError,
    PipelineCancelledError,
    UpstreamError,
)
from rag_composer.models.domain import Chunk, Message, Role, ScoredResult, ToolCall
from rag_composer.runtime.context import ExecutionContext
from rag_composer.tools.registry import RetrieverTool, ToolRegistry


class AddArgs(BaseModel):
    a: int
    b: int


class AddTool:
    name = "add"
    description = "Add two integers"
    arguments_model = AddArgs

    async def execute(self, arguments, ctx):
        return {"sum": arguments.a + arguments.b}


class BrokenTool:
    name = "broken"
    description = "Always fails"
    arguments_model = AddArgs

    async def execute(self, arguments, ctx):
        raise ConnectionError("backend unreachable")


class SlowTool:
    name = "slow"
    description = "Takes a while"
    arguments_model = AddArgs

    async def execute(self, arguments, ctx):
        await asyncio.sleep(5)
        return "done"


class FakeRetriever:
    def __init__(self):
        self.seen_k = []

    async def retrieve(self, query, k, ctx):
        self.seen_k.append(k)
        return [
            ScoredResult(item=Chunk(content=f"{query} passage {i}", doc_id="d", index=i), score=1.0 - i / 10)
            for i in range(k)
        ]


async def test_execute_validates_and_runs(ctx):
    registry = ToolRegistry([AddTool()])
    assert await registry.execute("add", {"a": 2, "b": 3}, ctx) == {"sum": 5}
    with pytest.raises(InvalidInputError, match="add"):
        await registry.execute("add", {"a": "two"}, ctx)


async def test_unknown_tool(ctx):
    with pytest.raises(NotFoundError, match="Tool not found: nope"):
        await ToolRegistry().execute("nope", {}, ctx)


def test_register_conflict_and_replace():
    registry = ToolRegistry([AddTool()])
    with pytest.raises(ConflictError):
        registry.register(AddTool())
    registry.register(AddTool(), replace=True)
    assert len(registry) == 1
    assert "add" in registry


async def test_foreign_errors_are_classified(ctx):
    registry = ToolRegistry([BrokenTool()])
    with pytest.raises(UpstreamError, match="tool:broken"):
        await registry.execute("broken", {"a": 1, "b": 1}, ctx)


async def test_run_tool_calls_answers_every_call(ctx):
    registry = ToolRegistry([AddTool(), BrokenTool()])
    calls = [
        ToolCall(name="add", arguments={"a": 1, "b": 2}, call_id="c1"),
        ToolCall(name="broken", arguments={"a": 1, "b": 2}, call_id="c2"),
        ToolCall(name="missing", arguments={}, call_id="c3"),
    ]
    replies = await registry.run_tool_calls(Message.assistant("", tool_calls=calls), ctx)

    assert [r.tool_call_id for r in replies] == ["c1", "c2", "c3"]
    assert all(r.role is Role.TOOL for r in replies)
    assert replies[0].content == '{"sum": 3}'
    assert replies[1].metadata["error_kind"] == "upstream"
    assert replies[2].metadata["error_kind"] == "not_found"


async def test_run_tool_calls_propagates_cancellation():
    ctx = ExecutionContext()
    registry = ToolRegistry([SlowTool()])
    message = Message.assistant("", tool_calls=[ToolCall(name="slow", arguments={"a": 1, "b": 1})])
    asyncio.get_running_loop().call_later(0.02, ctx.cancel)
    with pytest.raises(PipelineCancelledError):
        await registry.run_tool_calls(message, ctx)


async def test_registry_as_runnable():
    registry = ToolRegistry([AddTool()])
    message = Message.assistant("", tool_calls=[ToolCall(name="add", arguments={"a": 4, "b": 4})])
    replies = await registry.as_runnable().invoke(message)
    assert replies[0].content == '{"sum": 8}'


def test_describe_exposes_json_schema():
    registry = ToolRegistry([AddTool(), RetrieverTool(FakeRetriever())])
    described = {d.name: d for d in registry.describe()}
    assert set(described) == {"add", "search"}
    assert set(described["add"].input_schema["properties"]) == {"a", "b"}
    assert "query" in described["search"].input_schema["required"]


async def test_retriever_tool_formats_evidence(ctx):
    retriever = FakeRetriever()
    registry = ToolRegistry([RetrieverTool(retriever, k=2)])
    block = await registry.execute("search", {"query": "sky"}, ctx)
    assert block == "[1] sky passage 0\n\n[2] sky passage 1"

    await registry.execute("search", {"query": "sky", "k": 3}, ctx)
    assert retriever.seen_k == [2, 3]

    with pytest.raises(InvalidInputError):
        await registry.execute("search", {"query": ""}, ctx)
