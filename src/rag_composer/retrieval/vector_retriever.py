"""Retriever backed by an embedder and a vector store."""

from __future__ import annotations

from typing import Any

from rag_composer.exceptions import ConfigurationError, InvalidInputError, UpstreamError
from rag_composer.models.domain import Embedding, ScoredResult
from rag_composer.observability.logger import get_logger
from rag_composer.protocols.embedder import Embedder
from rag_composer.protocols.vector_store import VectorStore
from rag_composer.retrieval.ranking import rank_results
from rag_composer.runtime.context import ExecutionContext

logger = get_logger("vector_retriever")


class VectorStoreRetriever:
    """Embeds text queries and searches the store. Implements ``Retriever``."""

    def __init__(
        self,
        embedder: Embedder,
        store: VectorStore,
        *,
        filter: dict[str, Any] | None = None,
    ) -> None:
        if embedder.dimensions != store.dimensions:
            raise ConfigurationError(
                f"Embedder produces {embedder.dimensions}-dimensional vectors "
                f"but the store holds {store.dimensions}"
            )
        self._embedder = embedder
        self._store = store
        self._filter = filter

    @property
    def dimensions(self) -> int:
        return self._store.dimensions

    async def retrieve(
        self, query: str | Embedding, k: int, ctx: ExecutionContext
    ) -> list[ScoredResult]:
        if isinstance(query, Embedding):
            vector = query
        else:
            raw = await self._embedder.embed_query(query, ctx)
            if len(raw) != self._store.dimensions:
                raise UpstreamError(
                    f"Embedder returned a {len(raw)}-dimensional query vector, "
                    f"expected {self._store.dimensions}"
                )
            vector = Embedding.from_values(raw)
        if vector.dimensions != self._store.dimensions:
            raise InvalidInputError(
                f"Query vector has {vector.dimensions} dimensions, store holds {self._store.dimensions}"
            )

        results = await self._store.query(vector, k, self._filter, ctx)
        ranked = rank_results(results, top_k=k, source="vector")
        logger.info(
            "retrieval_results",
            count=len(ranked),
            top_score=round(ranked[0].score, 4) if ranked else 0.0,
        )
        return ranked
