"""Retrieval-augmented generation assembled from composer primitives."""

from __future__ import annotations

from typing import Any

from rag_composer.config.constants import DEFAULT_RETRIEVAL_K
from rag_composer.exceptions import InvalidInputError
from rag_composer.generation.context import augment_messages
from rag_composer.generation.prompt_templates import RAG_SYSTEM
from rag_composer.models.domain import Message, RerankRequest, Role
from rag_composer.models.schemas import GenerationOptions
from rag_composer.pipeline.sequence import RunnableSequence
from rag_composer.protocols.completion import Completion
from rag_composer.protocols.reranker import Reranker
from rag_composer.protocols.retriever import Retriever
from rag_composer.runnables.base import Runnable, RunnableLambda
from rag_composer.runnables.capabilities import (
    CompletionRunnable,
    RerankerRunnable,
    RetrieverRunnable,
)
from rag_composer.runtime.context import ExecutionContext


def _prepare(input: Any) -> dict[str, Any]:
    """Split the input into the question and the conversation before it."""
    if isinstance(input, str):
        return {"question": input, "history": []}
    if isinstance(input, Message):
        return {"question": input.content, "history": []}
    messages = list(input)
    if not messages or messages[-1].role is not Role.USER:
        raise InvalidInputError("RAG input must be a question or end with a user message")
    return {"question": messages[-1].content, "history": messages[:-1]}


def build_rag_pipeline(
    retriever: Retriever | Runnable,
    completion: Completion | Runnable,
    *,
    reranker: Reranker | Runnable | None = None,
    k: int = DEFAULT_RETRIEVAL_K,
    rerank_top_n: int | None = None,
    options: GenerationOptions | None = None,
    system_prompt: str | None = RAG_SYSTEM,
    name: str = "rag",
) -> RunnableSequence:
    """question (or message list) -> retrieve -> [rerank] -> prompt -> completion.

    The result is an ordinary sequence: ``invoke`` returns the assistant
    Message, ``stream`` yields the completion's partial Messages.
    """
    retrieve = retriever if isinstance(retriever, Runnable) else RetrieverRunnable(retriever, k=k)
    generate = (
        completion
        if isinstance(completion, Runnable)
        else CompletionRunnable(completion, options=options)
    )

    async def attach_results(state: dict[str, Any], ctx: ExecutionContext) -> dict[str, Any]:
        return {**state, "results": await retrieve.invoke(state["question"], ctx)}

    steps: list[Any] = [
        RunnableLambda(_prepare, name="prepare"),
        RunnableLambda(attach_results, name="retrieve"),
    ]

    if reranker is not None:
        rerank = (
            reranker
            if isinstance(reranker, Runnable)
            else RerankerRunnable(reranker, top_n=rerank_top_n)
        )

        async def rerank_results(state: dict[str, Any], ctx: ExecutionContext) -> dict[str, Any]:
            request = RerankRequest(
                query=state["question"], candidates=tuple(state["results"]), top_n=rerank_top_n
            )
            return {**state, "results": await rerank.invoke(request, ctx)}

        steps.append(RunnableLambda(rerank_results, name="rerank"))

    def build_prompt(state: dict[str, Any]) -> list[Message]:
        return augment_messages(
            state["question"], state["results"], state["history"], system_prompt=system_prompt
        )

    steps.append(RunnableLambda(build_prompt, name="prompt"))
    steps.append(generate)
    return RunnableSequence(*steps, name=name)
