"""Retry wrapper for transient failures."""

from __future__ import annotations

from contextlib import aclosing
from typing import AsyncIterator

from rag_composer.exceptions import RAGComposerError
from rag_composer.models.schemas import RetryPolicy
from rag_composer.observability.metrics import log_retry
from rag_composer.runnables.base import In, Out, Runnable
from rag_composer.runtime.context import ExecutionContext


class RunnableRetry(Runnable[In, Out]):
    """Re-invoke ``bound`` on retryable error kinds with exponential backoff.

    Non-retryable kinds surface on the first failure. When the budget is spent
    the last error is raised. Backoff sleeps end early with a Cancelled error
    if the context is cancelled.
    """

    def __init__(self, bound: Runnable[In, Out], policy: RetryPolicy) -> None:
        self.bound = bound
        self.policy = policy
        self.name = f"{bound.label}.retry"

    async def _backoff(self, error: RAGComposerError, attempt: int, ctx: ExecutionContext) -> None:
        delay = self.policy.delay_for(attempt, error)
        log_retry(ctx.correlation_id, self.bound.label, attempt + 1, error.kind.value, delay)
        await ctx.sleep(delay)

    async def _call(self, input: In, ctx: ExecutionContext) -> Out:
        attempt = 0
        while True:
            try:
                return await self.bound._run(input, ctx)
            except RAGComposerError as e:
                if not self.policy.should_retry(e, attempt):
                    raise
                await self._backoff(e, attempt, ctx)
                attempt += 1

    async def _stream(self, input: In, ctx: ExecutionContext) -> AsyncIterator[Out]:
        # A partially delivered stream is never replayed.
        attempt = 0
        while True:
            yielded = False
            try:
                async with aclosing(self.bound._astream(input, ctx)) as items:
                    async for item in items:
                        yielded = True
                        yield item
                return
            except RAGComposerError as e:
                if yielded or not self.policy.should_retry(e, attempt):
                    raise
                await self._backoff(e, attempt, ctx)
                attempt += 1
