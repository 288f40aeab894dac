"""Ingestion pipeline: load -> split -> embed -> upsert."""

from __future__ import annotations

from rag_composer.exceptions import ConfigurationError
from rag_composer.observability.logger import get_logger
from rag_composer.pipeline.sequence import RunnableSequence
from rag_composer.protocols.embedder import Embedder
from rag_composer.protocols.loader import Loader
from rag_composer.protocols.splitter import Splitter
from rag_composer.protocols.vector_store import VectorStore
from rag_composer.runnables.base import RunnableLambda
from rag_composer.runnables.capabilities import (
    EmbedderRunnable,
    LoaderRunnable,
    SplitterRunnable,
    VectorStoreUpsertRunnable,
)

logger = get_logger("ingestion")


def build_ingestion_pipeline(
    loader: Loader,
    splitter: Splitter,
    embedder: Embedder,
    store: VectorStore,
    *,
    name: str = "ingestion",
) -> RunnableSequence:
    """Build a Runnable taking a source descriptor and returning the stored chunk ids.

    Embedder and store dimensionality are checked here rather than on the
    first upsert.
    """
    if embedder.dimensions != store.dimensions:
        raise ConfigurationError(
            f"Embedder produces {embedder.dimensions}-dimensional vectors "
            f"but the store holds {store.dimensions}"
        )

    def report(ids: list[str]) -> list[str]:
        logger.info("ingested", pipeline=name, chunks=len(ids))
        return ids

    return RunnableSequence(
        LoaderRunnable(loader),
        SplitterRunnable(splitter),
        EmbedderRunnable(embedder),
        VectorStoreUpsertRunnable(store),
        RunnableLambda(report, name="report"),
        name=name,
    )
