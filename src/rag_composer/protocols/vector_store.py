"""Protocol for vector stores."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from rag_composer.models.domain import Chunk, Embedding, ScoredResult
from rag_composer.runtime.context import ExecutionContext


@runtime_checkable
class VectorStore(Protocol):
    @property
    def dimensions(self) -> int:
        """Dimensionality shared by every vector in the collection."""
        ...

    async def upsert(self, chunks: list[Chunk], ctx: ExecutionContext) -> list[str]:
        """Persist chunks that carry an embedding. Returns the stored ids."""
        ...

    async def query(
        self,
        vector: Embedding,
        k: int,
        filter: dict[str, Any] | None,
        ctx: ExecutionContext,
    ) -> list[ScoredResult]: ...

    async def delete(self, ids: list[str], ctx: ExecutionContext) -> None: ...

    async def get(self, ids: list[str], ctx: ExecutionContext) -> list[Chunk]: ...
