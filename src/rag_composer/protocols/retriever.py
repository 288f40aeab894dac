"""Protocol for retrieval providers."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from rag_composer.models.domain import Embedding, ScoredResult
from rag_composer.runtime.context import ExecutionContext


@runtime_checkable
class Retriever(Protocol):
    async def retrieve(
        self, query: str | Embedding, k: int, ctx: ExecutionContext
    ) -> list[ScoredResult]: ...
