"""Fallback chain: try alternates with the same input when the primary fails."""

from __future__ import annotations

from contextlib import aclosing
from typing import AsyncIterator, Sequence

from rag_composer.exceptions import ErrorKind, RAGComposerError
from rag_composer.observability.logger import get_logger
from rag_composer.runnables.base import In, Out, Runnable
from rag_composer.runtime.context import ExecutionContext

logger = get_logger("fallback")


class RunnableWithFallbacks(Runnable[In, Out]):
    """Run ``primary``; on an error envelope run each alternate in turn.

    Every kind except Cancelled is absorbed from all but the last runnable in
    the chain. The last alternate's error surfaces unchanged.
    """

    def __init__(self, primary: Runnable[In, Out], alternates: Sequence[Runnable[In, Out]]) -> None:
        if not alternates:
            raise ValueError("with_fallback needs at least one alternate")
        self.primary = primary
        self.alternates = list(alternates)
        self.name = f"{primary.label}.with_fallback"

    @property
    def chain(self) -> list[Runnable[In, Out]]:
        return [self.primary, *self.alternates]

    def _absorbs(self, error: RAGComposerError, ctx: ExecutionContext) -> bool:
        return error.kind is not ErrorKind.CANCELLED and not ctx.cancelled

    async def _call(self, input: In, ctx: ExecutionContext) -> Out:
        chain = self.chain
        for i, runnable in enumerate(chain[:-1]):
            try:
                return await runnable._run(input, ctx)
            except RAGComposerError as e:
                if not self._absorbs(e, ctx):
                    raise
                logger.warning(
                    "fallback_triggered",
                    failed=runnable.label,
                    next=chain[i + 1].label,
                    kind=e.kind.value,
                    error=e.message,
                )
        return await chain[-1]._run(input, ctx)

    async def _stream(self, input: In, ctx: ExecutionContext) -> AsyncIterator[Out]:
        chain = self.chain
        for i, runnable in enumerate(chain):
            yielded = False
            try:
                async with aclosing(runnable._astream(input, ctx)) as items:
                    async for item in items:
                        yielded = True
                        yield item
                return
            except RAGComposerError as e:
                if yielded or i == len(chain) - 1 or not self._absorbs(e, ctx):
                    raise
                logger.warning(
                    "fallback_triggered",
                    failed=runnable.label,
                    next=chain[i + 1].label,
                    kind=e.kind.value,
                    error=e.message,
                )
