"""Protocol for conversation memory stores."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from rag_composer.models.domain import Message
from rag_composer.runtime.context import ExecutionContext


@runtime_checkable
class Memory(Protocol):
    async def load(self, session_key: str, ctx: ExecutionContext) -> list[Message]: ...

    async def save(self, session_key: str, messages: list[Message], ctx: ExecutionContext) -> None:
        """Append messages to the session history."""
        ...

    async def clear(self, session_key: str, ctx: ExecutionContext) -> None: ...
