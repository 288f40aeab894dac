"""Protocol for tools callable from a completion's tool calls."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel

from rag_composer.runtime.context import ExecutionContext


@runtime_checkable
class Tool(Protocol):
    name: str
    description: str
    arguments_model: type[BaseModel]

    async def execute(self, arguments: BaseModel, ctx: ExecutionContext) -> Any: ...
