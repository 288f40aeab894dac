"""Protocol for chat/completion backends."""

from __future__ import annotations

from typing import AsyncIterator, Protocol, runtime_checkable

from rag_composer.models.domain import Message
from rag_composer.models.schemas import GenerationOptions
from rag_composer.runtime.context import ExecutionContext


@runtime_checkable
class Completion(Protocol):
    async def complete(
        self,
        messages: list[Message],
        options: GenerationOptions,
        ctx: ExecutionContext,
    ) -> Message: ...


@runtime_checkable
class StreamingCompletion(Completion, Protocol):
    def stream(
        self,
        messages: list[Message],
        options: GenerationOptions,
        ctx: ExecutionContext,
    ) -> AsyncIterator[Message]:
        """Yield partial assistant messages in generation order."""
        ...
