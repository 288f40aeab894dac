"""Conversation history around a runnable that maps messages to a reply."""

from __future__ import annotations

from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from rag_composer.exceptions import InvalidInputError
from rag_composer.models.domain import Message, merge_message_chunks
from rag_composer.observability.logger import get_logger
from rag_composer.protocols.memory import Memory
from rag_composer.runnables.base import Runnable, coerce_to_runnable
from rag_composer.runtime.context import ExecutionContext

logger = get_logger("history")


@dataclass(frozen=True)
class SessionInput:
    session_key: str
    messages: tuple[Message, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if not self.session_key:
            raise InvalidInputError("session_key must be non-empty")
        if isinstance(self.messages, str):
            object.__setattr__(self, "messages", (Message.user(self.messages),))
        elif not isinstance(self.messages, tuple):
            object.__setattr__(self, "messages", tuple(self.messages))
        if not self.messages:
            raise InvalidInputError("SessionInput needs at least one message")


class RunnableWithHistory(Runnable[SessionInput, Message]):
    """Prepend stored history to the new messages, then save the completed turn.

    ``bound`` receives ``history + new messages`` and must return a Message
    (or stream partial Messages). The turn is saved only when the call
    succeeds; a failed or abandoned stream leaves memory untouched.
    """

    def __init__(self, bound: Any, memory: Memory, *, max_messages: int | None = None) -> None:
        if max_messages is not None and max_messages < 0:
            raise ValueError("max_messages must be >= 0")
        self.bound = coerce_to_runnable(bound)
        self.memory = memory
        self.max_messages = max_messages
        self.name = f"{self.bound.label}.with_history"

    async def _history(self, session: SessionInput, ctx: ExecutionContext) -> list[Message]:
        history = await self.memory.load(session.session_key, ctx)
        if self.max_messages is not None:
            history = history[-self.max_messages :] if self.max_messages else []
        return history

    async def _save(self, session: SessionInput, reply: Message, ctx: ExecutionContext) -> None:
        await self.memory.save(session.session_key, [*session.messages, reply], ctx)
        logger.debug("turn_saved", session_key=session.session_key, messages=len(session.messages) + 1)

    async def _call(self, input: SessionInput, ctx: ExecutionContext) -> Message:
        history = await self._history(input, ctx)
        reply = await self.bound._run([*history, *input.messages], ctx)
        if not isinstance(reply, Message):
            raise InvalidInputError(f"{self.bound.label} returned {type(reply).__name__}, expected Message")
        await self._save(input, reply, ctx)
        return reply

    async def _stream(self, input: SessionInput, ctx: ExecutionContext) -> AsyncIterator[Message]:
        history = await self._history(input, ctx)
        parts: list[Message] = []
        async with aclosing(self.bound._astream([*history, *input.messages], ctx)) as items:
            async for part in items:
                parts.append(part)
                yield part
        if parts:
            await self._save(input, merge_message_chunks(parts), ctx)
