"""Tool registry and the built-in retriever tool."""

from __future__ import annotations

import asyncio
import json
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from rag_composer.exceptions import (
    ConflictError,
    ErrorKind,
    InvalidInputError,
    NotFoundError,
    RAGComposerError,
    wrap_exception,
)
from rag_composer.generation.context import format_context_block
from rag_composer.models.domain import Message
from rag_composer.models.schemas import ToolDescriptor
from rag_composer.observability.logger import get_logger
from rag_composer.protocols.retriever import Retriever
from rag_composer.protocols.tool import Tool
from rag_composer.retrieval.ranking import rank_results
from rag_composer.runnables.base import RunnableLambda
from rag_composer.runtime.context import ExecutionContext

logger = get_logger("tools")


def _render(result: Any) -> str:
    if isinstance(result, str):
        return result
    if isinstance(result, BaseModel):
        return result.model_dump_json()
    return json.dumps(result, default=str)


class ToolRegistry:
    """Named tools callable from a completion's tool calls."""

    def __init__(self, tools: list[Tool] | None = None) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool, *, replace: bool = False) -> None:
        if tool.name in self._tools and not replace:
            raise ConflictError(f"Tool '{tool.name}' is already registered")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool:
        tool = self._tools.get(name)
        if tool is None:
            raise NotFoundError(f"Tool not found: {name}")
        return tool

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def describe(self) -> list[ToolDescriptor]:
        """Descriptors with JSON schemas, for passing to a completion backend."""
        return [
            ToolDescriptor(
                name=tool.name,
                description=tool.description,
                input_schema=tool.arguments_model.model_json_schema(),
            )
            for tool in self._tools.values()
        ]

    async def execute(self, name: str, arguments: dict[str, Any], ctx: ExecutionContext) -> Any:
        tool = self.get(name)
        try:
            parsed = tool.arguments_model.model_validate(arguments)
        except ValidationError as e:
            raise InvalidInputError(f"Invalid arguments for tool '{name}': {e}", cause=e) from e
        ctx.raise_if_cancelled()
        try:
            return await ctx.guard(tool.execute(parsed, ctx))
        except RAGComposerError:
            raise
        except Exception as exc:
            raise wrap_exception(exc, stage=f"tool:{name}") from exc

    async def run_tool_calls(self, message: Message, ctx: ExecutionContext) -> list[Message]:
        """Execute every tool call of ``message`` concurrently.

        Returns one tool-role message per call, in call order. A failed call
        becomes a tool message carrying the error text and ``error_kind``
        metadata; cancellation is raised.
        """

        async def run_one(call) -> Message:
            try:
                result = await self.execute(call.name, call.arguments, ctx)
            except RAGComposerError as e:
                if e.kind is ErrorKind.CANCELLED:
                    raise
                logger.warning("tool_failed", tool=call.name, kind=e.kind.value, error=e.message)
                return Message(
                    role="tool",
                    content=f"Error: {e.message}",
                    tool_call_id=call.call_id,
                    name=call.name,
                    metadata={"error_kind": e.kind.value},
                )
            return Message.tool(_render(result), tool_call_id=call.call_id, name=call.name)

        return list(await asyncio.gather(*(run_one(c) for c in message.tool_calls)))

    def as_runnable(self) -> RunnableLambda:
        """Runnable mapping an assistant message to the tool messages answering it."""
        return RunnableLambda(self.run_tool_calls, name="tools")


class RetrieverToolArgs(BaseModel):
    query: str = Field(min_length=1, description="What to search for")
    k: int | None = Field(None, gt=0, description="Maximum number of passages")


class RetrieverTool:
    """Exposes a Retriever as a tool returning a numbered evidence block."""

    arguments_model = RetrieverToolArgs

    def __init__(
        self,
        retriever: Retriever,
        *,
        name: str = "search",
        description: str = "Search the knowledge base for passages relevant to a query.",
        k: int = 4,
    ) -> None:
        self._retriever = retriever
        self.name = name
        self.description = description
        self._k = k

    async def execute(self, arguments: RetrieverToolArgs, ctx: ExecutionContext) -> str:
        k = arguments.k or self._k
        results = rank_results(await self._retriever.retrieve(arguments.query, k, ctx), top_k=k)
        logger.info("retriever_tool", tool=self.name, results=len(results))
        return format_context_block(results, max_results=k)
