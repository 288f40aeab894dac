"""Caching wrapper around an Embedder that stores results in SQLite."""

from __future__ import annotations

from rag_composer.embeddings.cache import EmbeddingCache
from rag_composer.observability.logger import get_logger
from rag_composer.protocols.embedder import Embedder
from rag_composer.runtime.context import ExecutionContext

logger = get_logger("cached_embedder")


class CachedEmbedder:
    """Wraps any Embedder, checks EmbeddingCache first, calls delegate for misses.

    Implements ``Embedder`` itself, so it can be used wherever the delegate is.
    """

    def __init__(self, delegate: Embedder, cache: EmbeddingCache) -> None:
        self._delegate = delegate
        self._cache = cache

    @property
    def dimensions(self) -> int:
        return self._delegate.dimensions

    async def embed_texts(self, texts: list[str], ctx: ExecutionContext) -> list[list[float]]:
        if not texts:
            return []

        cached = await self._cache.get_batch(texts, self.dimensions)
        miss_indices = [i for i in range(len(texts)) if i not in cached]

        if not miss_indices:
            logger.info("embed_texts_all_cached", count=len(texts))
            return [cached[i] for i in range(len(texts))]

        miss_texts = [texts[i] for i in miss_indices]
        miss_embeddings = await self._delegate.embed_texts(miss_texts, ctx)

        # A short answer from the delegate must not be cached under the wrong texts
        if len(miss_embeddings) == len(miss_texts):
            await self._cache.put_batch(miss_texts, miss_embeddings)
        else:
            return miss_embeddings

        result: list[list[float]] = [[] for _ in range(len(texts))]
        for i, emb in cached.items():
            result[i] = emb
        for idx, emb in zip(miss_indices, miss_embeddings):
            result[idx] = emb

        logger.info(
            "embed_texts_with_cache",
            total=len(texts),
            hits=len(texts) - len(miss_indices),
            misses=len(miss_indices),
        )
        return result

    async def embed_query(self, query: str, ctx: ExecutionContext) -> list[float]:
        cached = await self._cache.get(query, self.dimensions)
        if cached is not None:
            logger.debug("embed_query_cache_hit", query_len=len(query))
            return cached

        embedding = await self._delegate.embed_query(query, ctx)
        await self._cache.put(query, embedding)
        logger.debug("embed_query_cache_miss", query_len=len(query))
        return embedding
