"""Process-local conversation memory."""

from __future__ import annotations

import asyncio
from collections import defaultdict

from rag_composer.models.domain import Message
from rag_composer.runtime.context import ExecutionContext


class InMemoryMemory:
    def __init__(self) -> None:
        self._sessions: dict[str, list[Message]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def load(self, session_key: str, ctx: ExecutionContext) -> list[Message]:
        async with self._lock:
            return list(self._sessions.get(session_key, []))

    async def save(self, session_key: str, messages: list[Message], ctx: ExecutionContext) -> None:
        async with self._lock:
            self._sessions[session_key].extend(messages)

    async def clear(self, session_key: str, ctx: ExecutionContext) -> None:
        async with self._lock:
            self._sessions.pop(session_key, None)
