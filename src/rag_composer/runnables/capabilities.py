"""Runnables wrapping each capability protocol.

The wrappers adapt a provider's native shape to the Runnable surface and check
the provider's side of the contract (1:1 embeddings, dense ranks, reranked
subsets) so violations surface at the stage that caused them.
"""

from __future__ import annotations

from contextlib import aclosing
from dataclasses import replace
from pathlib import Path
from typing import Any, AsyncIterator, Iterable, Sequence

import numpy as np
from pydantic import BaseModel

from rag_composer.config.constants import DEFAULT_RETRIEVAL_K
from rag_composer.exceptions import (
    ConfigurationError,
    InvalidInputError,
    RAGComposerError,
    UpstreamError,
)
from rag_composer.models.domain import (
    Chunk,
    Document,
    Edge,
    Embedding,
    GraphDocument,
    Message,
    Node,
    RerankRequest,
    ScoredResult,
)
from rag_composer.models.schemas import GenerationOptions, GraphQuery, SourceDescriptor
from rag_composer.observability.logger import get_logger
from rag_composer.protocols.completion import Completion, StreamingCompletion
from rag_composer.protocols.embedder import Embedder
from rag_composer.protocols.graph_store import GraphStore
from rag_composer.protocols.graph_transformer import GraphTransformer
from rag_composer.protocols.loader import Loader
from rag_composer.protocols.memory import Memory
from rag_composer.protocols.reranker import Reranker
from rag_composer.protocols.retriever import Retriever
from rag_composer.protocols.splitter import Splitter
from rag_composer.protocols.tool import Tool
from rag_composer.protocols.vector_store import VectorStore
from rag_composer.retrieval.ranking import rank_results
from rag_composer.runnables.base import Runnable
from rag_composer.runtime.context import ExecutionContext

logger = get_logger("capabilities")


class LoaderRunnable(Runnable[Any, list[Document]]):
    """Source descriptor (or path / URI string) -> documents."""

    def __init__(self, loader: Loader, *, name: str | None = None) -> None:
        self.loader = loader
        self.name = name or type(loader).__name__

    async def _call(self, input: SourceDescriptor | str | Path, ctx: ExecutionContext) -> list[Document]:
        return list(await self.loader.load(SourceDescriptor.coerce(input), ctx))


class SplitterRunnable(Runnable[Any, list[Chunk]]):
    """Document (or list of documents) -> chunks in document order.

    Chunk indexes are renumbered densely per document and every chunk
    inherits its document's metadata under its own.
    """

    def __init__(self, splitter: Splitter, *, name: str | None = None) -> None:
        self.splitter = splitter
        self.name = name or type(splitter).__name__

    async def _split_one(self, document: Document, ctx: ExecutionContext) -> list[Chunk]:
        if not isinstance(document, Document):
            raise InvalidInputError(f"Splitter expects a Document, got {type(document).__name__}")
        raw = await self.splitter.split(document, ctx)
        return [
            replace(
                chunk,
                doc_id=document.doc_id,
                index=i,
                metadata={**document.metadata, **chunk.metadata},
            )
            for i, chunk in enumerate(raw)
        ]

    async def _call(self, input: Document | Sequence[Document], ctx: ExecutionContext) -> list[Chunk]:
        documents = [input] if isinstance(input, Document) else list(input)
        chunks: list[Chunk] = []
        for document in documents:
            ctx.raise_if_cancelled()
            chunks.extend(await self._split_one(document, ctx))
        return chunks


def _text_of(item: Any) -> str:
    if isinstance(item, Chunk):
        return item.content
    if isinstance(item, str):
        return item
    raise InvalidInputError(f"Embedder input must be str or Chunk, got {type(item).__name__}")


def _document_group(item: Any) -> list[Any]:
    """The texts or chunks one non-query input contributes to a native call."""
    if isinstance(item, Chunk):
        return [item]
    if not isinstance(item, Iterable):
        raise InvalidInputError(
            f"Embedder input must be str, Chunk or a list of them, got {type(item).__name__}"
        )
    group = list(item)
    for part in group:
        _text_of(part)
    return group


class EmbedderRunnable(Runnable[Any, Any]):
    """Embed texts or chunks in one native provider call.

    * ``str`` -> ``Embedding`` (query embedding)
    * ``list[str]`` -> ``list[Embedding]``
    * ``list[Chunk]`` -> ``list[Chunk]`` with embeddings attached

    ``batch`` folds the list and chunk inputs into a single provider call.
    Bare strings stay queries and go through ``embed_query`` one by one.
    """

    def __init__(self, embedder: Embedder, *, name: str | None = None) -> None:
        self.embedder = embedder
        self.name = name or type(embedder).__name__

    @property
    def dimensions(self) -> int:
        return self.embedder.dimensions

    def _check(self, vectors: Sequence[Sequence[float]], expected: int) -> list[Embedding]:
        if len(vectors) != expected:
            raise UpstreamError(
                f"{self.label} returned {len(vectors)} vectors for {expected} inputs"
            )
        dims = self.embedder.dimensions
        embeddings = []
        for vector in vectors:
            if len(vector) != dims:
                raise UpstreamError(
                    f"{self.label} returned a {len(vector)}-dimensional vector, expected {dims}"
                )
            embeddings.append(Embedding.from_values(vector))
        return embeddings

    async def _embed_flat(self, items: list[Any], ctx: ExecutionContext) -> list[Embedding]:
        texts = [_text_of(item) for item in items]
        if not texts:
            return []
        vectors = await self.embedder.embed_texts(texts, ctx)
        return self._check(vectors, len(texts))

    @staticmethod
    def _attach(items: list[Any], embeddings: list[Embedding]) -> list[Any]:
        return [
            item.with_embedding(emb) if isinstance(item, Chunk) else emb
            for item, emb in zip(items, embeddings)
        ]

    async def _call(self, input: Any, ctx: ExecutionContext) -> Any:
        if isinstance(input, str):
            vector = await self.embedder.embed_query(input, ctx)
            return self._check([vector], 1)[0]
        if isinstance(input, Chunk):
            return self._attach([input], await self._embed_flat([input], ctx))[0]
        items = _document_group(input)
        return self._attach(items, await self._embed_flat(items, ctx))

    async def _batch(
        self,
        inputs: list[Any],
        ctx: ExecutionContext,
        *,
        max_concurrency: int,
        fail_fast: bool,
    ) -> list[Any]:
        results: list[Any] = [None] * len(inputs)
        queries: list[int] = []
        groups: dict[int, list[Any]] = {}
        for i, item in enumerate(inputs):
            if isinstance(item, str):
                queries.append(i)
                continue
            try:
                groups[i] = _document_group(item)
            except InvalidInputError as e:
                if fail_fast:
                    raise
                results[i] = e

        # documents and chunks share one native call; queries keep embed_query
        flat = [part for group in groups.values() for part in group]
        embedded: list[Any] | RAGComposerError = []
        if flat:
            try:
                embedded = await self._run(flat, ctx)
            except RAGComposerError as e:
                if fail_fast:
                    raise
                embedded = e
        offset = 0
        for i, group in groups.items():
            if isinstance(embedded, RAGComposerError):
                results[i] = embedded
                continue
            part = embedded[offset : offset + len(group)]
            offset += len(group)
            results[i] = part[0] if isinstance(inputs[i], Chunk) else part

        if queries:
            answers = await super()._batch(
                [inputs[i] for i in queries],
                ctx,
                max_concurrency=max_concurrency,
                fail_fast=fail_fast,
            )
            for i, answer in zip(queries, answers):
                results[i] = answer

        logger.debug(
            "native_batch",
            node=self.label,
            inputs=len(inputs),
            texts=len(flat),
            queries=len(queries),
        )
        return results


def _as_query_vector(value: Any) -> Embedding:
    if isinstance(value, Embedding):
        return value
    if isinstance(value, (list, tuple, np.ndarray)):
        return Embedding.from_values([float(v) for v in value])
    raise InvalidInputError(f"Expected an embedding vector, got {type(value).__name__}")


class VectorStoreQueryRunnable(Runnable[Any, list[ScoredResult]]):
    """Query vector -> top-k ranked results."""

    def __init__(
        self,
        store: VectorStore,
        *,
        k: int = DEFAULT_RETRIEVAL_K,
        filter: dict[str, Any] | None = None,
        name: str | None = None,
    ) -> None:
        if k < 1:
            raise ConfigurationError(f"k must be at least 1, got {k}")
        self.store = store
        self.k = k
        self.filter = filter
        self.name = name or f"{type(store).__name__}.query"

    async def _call(self, input: Any, ctx: ExecutionContext) -> list[ScoredResult]:
        vector = _as_query_vector(input)
        if vector.dimensions != self.store.dimensions:
            raise InvalidInputError(
                f"Query vector has {vector.dimensions} dimensions, "
                f"store holds {self.store.dimensions}"
            )
        results = await self.store.query(vector, self.k, self.filter, ctx)
        return rank_results(results, top_k=self.k)


class VectorStoreUpsertRunnable(Runnable[list[Chunk], list[str]]):
    """Embedded chunks -> stored ids."""

    def __init__(self, store: VectorStore, *, name: str | None = None) -> None:
        self.store = store
        self.name = name or f"{type(store).__name__}.upsert"

    async def _call(self, input: Sequence[Chunk], ctx: ExecutionContext) -> list[str]:
        chunks = list(input)
        dims = self.store.dimensions
        for chunk in chunks:
            if chunk.embedding is None:
                raise InvalidInputError(f"Chunk {chunk.chunk_id} has no embedding")
            if chunk.embedding.dimensions != dims:
                raise InvalidInputError(
                    f"Chunk {chunk.chunk_id} has a {chunk.embedding.dimensions}-dimensional "
                    f"embedding, store holds {dims}"
                )
        if not chunks:
            return []
        return list(await self.store.upsert(chunks, ctx))


class RetrieverRunnable(Runnable[Any, list[ScoredResult]]):
    """Query text or vector -> ranked results."""

    def __init__(
        self, retriever: Retriever, *, k: int = DEFAULT_RETRIEVAL_K, name: str | None = None
    ) -> None:
        if k < 1:
            raise ConfigurationError(f"k must be at least 1, got {k}")
        self.retriever = retriever
        self.k = k
        self.name = name or type(retriever).__name__

    async def _call(self, input: str | Embedding, ctx: ExecutionContext) -> list[ScoredResult]:
        if isinstance(input, str) and not input.strip():
            raise InvalidInputError("Query text is empty")
        results = await self.retriever.retrieve(input, self.k, ctx)
        return rank_results(results, top_k=self.k)


class RerankerRunnable(Runnable[Any, list[ScoredResult]]):
    """``RerankRequest`` or ``(query, candidates)`` -> reranked candidates."""

    def __init__(
        self, reranker: Reranker, *, top_n: int | None = None, name: str | None = None
    ) -> None:
        self.reranker = reranker
        self.top_n = top_n
        self.name = name or type(reranker).__name__

    @staticmethod
    def _request(input: Any, top_n: int | None) -> RerankRequest:
        if isinstance(input, RerankRequest):
            return input
        if isinstance(input, dict) and "query" in input:
            return RerankRequest(
                query=input["query"], candidates=tuple(input.get("candidates", ())), top_n=top_n
            )
        if isinstance(input, tuple) and len(input) == 2:
            return RerankRequest(query=input[0], candidates=tuple(input[1]), top_n=top_n)
        raise InvalidInputError(f"Reranker input must be a RerankRequest, got {type(input).__name__}")

    async def _call(self, input: Any, ctx: ExecutionContext) -> list[ScoredResult]:
        request = self._request(input, self.top_n)
        top_n = request.top_n if request.top_n is not None else self.top_n
        candidates = list(request.candidates)
        if not candidates:
            return []

        reranked = await self.reranker.rerank(request.query, candidates, top_n, ctx)

        known = {c.key for c in candidates}
        limit = len(candidates) if top_n is None else min(top_n, len(candidates))
        if len(reranked) > limit:
            raise InvalidInputError(
                f"{self.label} returned {len(reranked)} results for {limit} allowed"
            )
        unknown = [r.key for r in reranked if r.key not in known]
        if unknown:
            raise InvalidInputError(f"{self.label} returned results not among the candidates: {unknown}")
        if len({r.key for r in reranked}) != len(reranked):
            raise InvalidInputError(f"{self.label} returned duplicate candidates")
        return rank_results(reranked)


def _as_messages(input: Any) -> list[Message]:
    if isinstance(input, str):
        return [Message.user(input)]
    if isinstance(input, Message):
        return [input]
    messages = list(input)
    for m in messages:
        if not isinstance(m, Message):
            raise InvalidInputError(f"Completion input must be messages, got {type(m).__name__}")
    if not messages:
        raise InvalidInputError("Completion needs at least one message")
    return messages


class CompletionRunnable(Runnable[Any, Message]):
    """Messages -> assistant message; streams partial messages when the backend can."""

    def __init__(
        self,
        completion: Completion,
        *,
        options: GenerationOptions | None = None,
        name: str | None = None,
    ) -> None:
        self.completion = completion
        self.options = options or GenerationOptions()
        self.name = name or type(completion).__name__

    @property
    def streams_natively(self) -> bool:
        return isinstance(self.completion, StreamingCompletion)

    async def _call(self, input: Any, ctx: ExecutionContext) -> Message:
        return await self.completion.complete(_as_messages(input), self.options, ctx)

    async def _stream(self, input: Any, ctx: ExecutionContext) -> AsyncIterator[Message]:
        if not self.streams_natively:
            yield await self._run(input, ctx)
            return
        messages = _as_messages(input)
        async with aclosing(self.completion.stream(messages, self.options, ctx)) as parts:
            async for part in parts:
                yield part


class MemoryLoadRunnable(Runnable[str, list[Message]]):
    """Session key -> stored conversation history."""

    def __init__(self, memory: Memory, *, name: str | None = None) -> None:
        self.memory = memory
        self.name = name or f"{type(memory).__name__}.load"

    async def _call(self, input: str, ctx: ExecutionContext) -> list[Message]:
        if not isinstance(input, str) or not input:
            raise InvalidInputError("Memory session key must be a non-empty string")
        return list(await self.memory.load(input, ctx))


class GraphQueryRunnable(Runnable[Any, list[Node | Edge]]):
    """``GraphQuery`` (or its dict form) -> graph entities."""

    def __init__(self, store: GraphStore, *, name: str | None = None) -> None:
        self.store = store
        self.name = name or f"{type(store).__name__}.query"

    async def _call(self, input: Any, ctx: ExecutionContext) -> list[Node | Edge]:
        spec = input if isinstance(input, GraphQuery) else GraphQuery.model_validate(input)
        return list(await self.store.query(spec, ctx))


class GraphTransformerRunnable(Runnable[Any, list[GraphDocument]]):
    """Document (or list of documents) -> graph documents."""

    def __init__(self, transformer: GraphTransformer, *, name: str | None = None) -> None:
        self.transformer = transformer
        self.name = name or type(transformer).__name__

    async def _call(
        self, input: Document | Sequence[Document], ctx: ExecutionContext
    ) -> list[GraphDocument]:
        documents = [input] if isinstance(input, Document) else list(input)
        for document in documents:
            if not isinstance(document, Document):
                raise InvalidInputError(
                    f"Graph transformer expects Documents, got {type(document).__name__}"
                )
        if not documents:
            return []
        graph_documents = list(await self.transformer.to_graph_documents(documents, ctx))
        for item in graph_documents:
            if not isinstance(item, GraphDocument):
                raise UpstreamError(
                    f"{self.label} returned {type(item).__name__}, expected GraphDocument"
                )
        return graph_documents


class GraphUpsertRunnable(Runnable[Any, list[GraphDocument]]):
    """Graph documents -> the same documents, after storing their entities.

    Every node is written before any edge so edges may point at nodes of
    another document in the same input.
    """

    def __init__(self, store: GraphStore, *, name: str | None = None) -> None:
        self.store = store
        self.name = name or f"{type(store).__name__}.upsert"

    async def _call(
        self, input: GraphDocument | Sequence[GraphDocument], ctx: ExecutionContext
    ) -> list[GraphDocument]:
        graph_documents = [input] if isinstance(input, GraphDocument) else list(input)
        for item in graph_documents:
            if not isinstance(item, GraphDocument):
                raise InvalidInputError(f"Expected GraphDocument, got {type(item).__name__}")
        nodes = [node for item in graph_documents for node in item.nodes]
        edges = [edge for item in graph_documents for edge in item.edges]
        if nodes:
            await self.store.upsert_nodes(nodes, ctx)
        if edges:
            ctx.raise_if_cancelled()
            await self.store.upsert_edges(edges, ctx)
        logger.debug("graph_upserted", node=self.label, nodes=len(nodes), edges=len(edges))
        return graph_documents


class ToolRunnable(Runnable[Any, Any]):
    """Tool arguments (dict or the tool's model) -> tool result."""

    def __init__(self, tool: Tool) -> None:
        self.tool = tool
        self.name = tool.name

    async def _call(self, input: Any, ctx: ExecutionContext) -> Any:
        model = self.tool.arguments_model
        arguments = input if isinstance(input, model) else model.model_validate(input or {})
        return await self.tool.execute(arguments, ctx)


# Protocol checks only look at attribute names, so the more specific shapes go
# first (a Memory also has ``load``; a VectorStore also has ``query``).
_DISPATCH: list[tuple[type, type[Runnable]]] = [
    (GraphStore, GraphQueryRunnable),
    (GraphTransformer, GraphTransformerRunnable),
    (VectorStore, VectorStoreQueryRunnable),
    (Memory, MemoryLoadRunnable),
    (Completion, CompletionRunnable),
    (Reranker, RerankerRunnable),
    (Retriever, RetrieverRunnable),
    (Embedder, EmbedderRunnable),
    (Splitter, SplitterRunnable),
    (Loader, LoaderRunnable),
]


def as_runnable(capability: Any, *, strict: bool = True) -> Runnable | None:
    """Wrap a capability provider in the Runnable for its protocol."""
    if isinstance(capability, Runnable):
        return capability
    for protocol, runnable_cls in _DISPATCH:
        if isinstance(capability, protocol):
            return runnable_cls(capability)
    if _is_tool(capability):
        return ToolRunnable(capability)
    if strict:
        raise ConfigurationError(
            f"{type(capability).__name__} does not implement any capability protocol"
        )
    return None


def _is_tool(value: Any) -> bool:
    model = getattr(value, "arguments_model", None)
    return (
        isinstance(value, Tool)
        and isinstance(model, type)
        and issubclass(model, BaseModel)
    )
