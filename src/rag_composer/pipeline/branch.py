"""Conditional routing: exactly one route runs per input."""

from __future__ import annotations

import inspect
from contextlib import aclosing
from typing import Any, AsyncIterator, Callable

from rag_composer.exceptions import CompositionError, InvalidInputError
from rag_composer.runnables.base import Runnable, coerce_to_runnable
from rag_composer.runtime.context import ExecutionContext

Predicate = Callable[[Any], Any]


class RunnableBranch(Runnable[Any, Any]):
    """Route to the first runnable whose predicate accepts the input.

    Predicates may be sync or async. With no match the ``default`` runs; with
    no default the input is rejected.
    """

    def __init__(
        self,
        *routes: tuple[Predicate, Any],
        default: Any = None,
        name: str | None = None,
    ) -> None:
        if not routes and default is None:
            raise CompositionError("A branch needs at least one route or a default")
        parsed: list[tuple[Predicate, Runnable]] = []
        for route in routes:
            if not isinstance(route, tuple) or len(route) != 2 or not callable(route[0]):
                raise CompositionError("Each route must be a (predicate, runnable) pair")
            parsed.append((route[0], coerce_to_runnable(route[1])))
        self.routes = parsed
        self.default = coerce_to_runnable(default) if default is not None else None
        self.name = name

    async def _select(self, input: Any) -> Runnable:
        for predicate, runnable in self.routes:
            matched = predicate(input)
            if inspect.isawaitable(matched):
                matched = await matched
            if matched:
                return runnable
        if self.default is None:
            raise InvalidInputError(f"No route of {self.label} matched the input")
        return self.default

    async def _call(self, input: Any, ctx: ExecutionContext) -> Any:
        route = await self._select(input)
        return await route._run(input, ctx)

    async def _stream(self, input: Any, ctx: ExecutionContext) -> AsyncIterator[Any]:
        route = await self._select(input)
        async with aclosing(route._astream(input, ctx)) as items:
            async for item in items:
                yield item
