"""Protocol for reranking providers."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from rag_composer.models.domain import ScoredResult
from rag_composer.runtime.context import ExecutionContext


@runtime_checkable
class Reranker(Protocol):
    async def rerank(
        self,
        query: str,
        candidates: list[ScoredResult],
        top_n: int | None,
        ctx: ExecutionContext,
    ) -> list[ScoredResult]:
        """Reorder candidates. Must return a subset of them, no larger than the input."""
        ...
