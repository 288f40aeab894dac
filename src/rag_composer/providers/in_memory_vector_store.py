"""In-process vector store using numpy cosine similarity."""

from __future__ import annotations

import asyncio
from typing import Any

import numpy as np

from rag_composer.exceptions import ConfigurationError, ConflictError, InvalidInputError
from rag_composer.models.domain import Chunk, Embedding, ScoredResult
from rag_composer.observability.logger import get_logger
from rag_composer.retrieval.ranking import rank_results
from rag_composer.runtime.context import ExecutionContext

logger = get_logger("in_memory_vector_store")


def _normalize(matrix: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=-1, keepdims=True)
    norms[norms == 0] = 1.0
    return matrix / norms


class InMemoryVectorStore:
    """Single collection with a dimensionality fixed at construction.

    Upserting an id that is already stored raises Conflict unless the store
    was built with ``overwrite=True``.
    """

    def __init__(self, dimensions: int, *, overwrite: bool = False) -> None:
        if dimensions < 1:
            raise ConfigurationError(f"dimensions must be positive, got {dimensions}")
        self._dimensions = dimensions
        self._overwrite = overwrite
        self._chunks: dict[str, Chunk] = {}
        self._ids: list[str] = []
        self._matrix = np.empty((0, dimensions), dtype=np.float32)
        self._write_lock = asyncio.Lock()

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def __len__(self) -> int:
        return len(self._ids)

    async def upsert(self, chunks: list[Chunk], ctx: ExecutionContext) -> list[str]:
        for chunk in chunks:
            if chunk.embedding is None:
                raise InvalidInputError(f"Chunk {chunk.chunk_id} has no embedding")
            if chunk.embedding.dimensions != self._dimensions:
                raise InvalidInputError(
                    f"Chunk {chunk.chunk_id} has {chunk.embedding.dimensions} dimensions, "
                    f"store holds {self._dimensions}"
                )
        incoming = [c.chunk_id for c in chunks]
        if len(set(incoming)) != len(incoming):
            raise ConflictError("Upsert batch contains duplicate chunk ids")

        async with self._write_lock:
            existing = [cid for cid in incoming if cid in self._chunks]
            if existing and not self._overwrite:
                raise ConflictError(f"Chunks already stored: {existing}")
            if existing:
                self._remove(existing)
            vectors = np.array([c.embedding.values for c in chunks], dtype=np.float32)
            self._matrix = np.vstack([self._matrix, _normalize(vectors)])
            for chunk in chunks:
                self._chunks[chunk.chunk_id] = chunk
                self._ids.append(chunk.chunk_id)

        logger.info("vectors_added", count=len(chunks), total=len(self._ids))
        return incoming

    async def query(
        self,
        vector: Embedding,
        k: int,
        filter: dict[str, Any] | None,
        ctx: ExecutionContext,
    ) -> list[ScoredResult]:
        if vector.dimensions != self._dimensions:
            raise InvalidInputError(
                f"Query vector has {vector.dimensions} dimensions, store holds {self._dimensions}"
            )
        if k < 1 or not self._ids:
            return []

        query = _normalize(np.asarray(vector.values, dtype=np.float32))
        scores = self._matrix @ query
        results = []
        for position in np.argsort(-scores, kind="stable"):
            chunk = self._chunks[self._ids[position]]
            if filter and any(chunk.metadata.get(key) != value for key, value in filter.items()):
                continue
            results.append(ScoredResult(item=chunk, score=float(scores[position])))
            if len(results) == k:
                break
        return rank_results(results, source="vector")

    async def delete(self, ids: list[str], ctx: ExecutionContext) -> None:
        async with self._write_lock:
            self._remove([i for i in ids if i in self._chunks])

    async def get(self, ids: list[str], ctx: ExecutionContext) -> list[Chunk]:
        return [self._chunks[i] for i in ids if i in self._chunks]

    def _remove(self, ids: list[str]) -> None:
        if not ids:
            return
        doomed = set(ids)
        keep = [i for i, cid in enumerate(self._ids) if cid not in doomed]
        self._matrix = self._matrix[keep]
        self._ids = [self._ids[i] for i in keep]
        for cid in doomed:
            self._chunks.pop(cid, None)
