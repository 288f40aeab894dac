"""Linear chain: each step's output is the next step's input."""

from __future__ import annotations

from contextlib import aclosing
from typing import Any, AsyncIterator

from rag_composer.exceptions import CompositionError
from rag_composer.runnables.base import Runnable, coerce_to_runnable
from rag_composer.runtime.context import ExecutionContext


class RunnableSequence(Runnable[Any, Any]):
    """Run steps in order, aborting the chain on the first failure.

    Nested sequences are flattened so ``(a | b) | c`` and ``a | (b | c)``
    build the same chain. Streaming invokes every step but the last and
    streams the last one.
    """

    def __init__(self, *steps: Any, name: str | None = None) -> None:
        flat: list[Runnable] = []
        for step in steps:
            runnable = coerce_to_runnable(step)
            if isinstance(runnable, RunnableSequence) and runnable.name is None:
                flat.extend(runnable.steps)
            else:
                flat.append(runnable)
        if not flat:
            raise CompositionError("A sequence needs at least one step")
        self.steps = flat
        self.name = name

    @property
    def label(self) -> str:
        return self.name or " | ".join(step.label for step in self.steps)

    @property
    def first(self) -> Runnable:
        return self.steps[0]

    @property
    def last(self) -> Runnable:
        return self.steps[-1]

    async def _call(self, input: Any, ctx: ExecutionContext) -> Any:
        value = input
        for step in self.steps:
            value = await step._run(value, ctx)
        return value

    async def _stream(self, input: Any, ctx: ExecutionContext) -> AsyncIterator[Any]:
        value = input
        for step in self.steps[:-1]:
            value = await step._run(value, ctx)
        async with aclosing(self.last._astream(value, ctx)) as items:
            async for item in items:
                yield item
