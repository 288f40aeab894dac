"""Protocol for embedding providers."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from rag_composer.runtime.context import ExecutionContext


@runtime_checkable
class Embedder(Protocol):
    async def embed_texts(self, texts: list[str], ctx: ExecutionContext) -> list[list[float]]:
        """One vector per input text, in input order."""
        ...

    async def embed_query(self, query: str, ctx: ExecutionContext) -> list[float]: ...

    @property
    def dimensions(self) -> int: ...
