"""The Runnable: uniform invoke / batch / stream surface over any pipeline stage."""

from __future__ import annotations

import asyncio
import inspect
import time
from abc import ABC, abstractmethod
from contextlib import aclosing, contextmanager
from typing import (
    TYPE_CHECKING,
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Generic,
    Iterable,
    Iterator,
    TypeVar,
)

import structlog

from rag_composer.exceptions import RAGComposerError, wrap_exception
from rag_composer.observability.logger import get_logger
from rag_composer.observability.metrics import log_batch_metrics, log_node_latency
from rag_composer.runtime.channel import StreamChannel
from rag_composer.runtime.context import ExecutionContext

if TYPE_CHECKING:
    from rag_composer.models.schemas import RetryPolicy
    from rag_composer.pipeline.sequence import RunnableSequence
    from rag_composer.runnables.fallback import RunnableWithFallbacks
    from rag_composer.runnables.retry import RunnableRetry

logger = get_logger("runnable")

In = TypeVar("In")
Out = TypeVar("Out")
NewOut = TypeVar("NewOut")


@contextmanager
def _correlation_scope(ctx: ExecutionContext) -> Iterator[None]:
    """Bind the correlation id for log lines emitted by the outermost invocation."""
    if structlog.contextvars.get_contextvars().get("correlation_id") is not None:
        yield
        return
    with structlog.contextvars.bound_contextvars(correlation_id=ctx.correlation_id):
        yield


class Runnable(ABC, Generic[In, Out]):
    """A pipeline stage with single, batch and streaming invocation.

    Subclasses implement ``_call``. Streaming stages override ``_stream``;
    stages that batch natively override ``_batch``. Every failure leaving a
    Runnable is a ``RAGComposerError``.
    """

    name: str | None = None

    @property
    def label(self) -> str:
        return self.name or type(self).__name__

    # ---- hooks --------------------------------------------------------

    @abstractmethod
    async def _call(self, input: In, ctx: ExecutionContext) -> Out: ...

    async def _stream(self, input: In, ctx: ExecutionContext) -> AsyncIterator[Out]:
        yield await self._run(input, ctx)

    async def _batch(
        self,
        inputs: list[In],
        ctx: ExecutionContext,
        *,
        max_concurrency: int,
        fail_fast: bool,
    ) -> list[Out | RAGComposerError]:
        semaphore = asyncio.Semaphore(max_concurrency)
        scope = ctx.child() if fail_fast else ctx
        first_error: list[RAGComposerError] = []

        async def run_one(item: In) -> Out | RAGComposerError:
            async with semaphore:
                try:
                    return await self._run(item, scope)
                except RAGComposerError as e:
                    if fail_fast and not first_error:
                        first_error.append(e)
                        scope.cancel(f"batch item failed in {self.label}")
                    return e

        results = await asyncio.gather(*(run_one(item) for item in inputs))
        if first_error:
            raise first_error[0]
        return list(results)

    # ---- internal execution -------------------------------------------

    async def _run(self, input: In, ctx: ExecutionContext) -> Out:
        """Execute one call under the context, wrapping foreign errors."""
        ctx.raise_if_cancelled()
        start = time.monotonic()
        status = "ok"
        with ctx.trace.span(self.label):
            try:
                return await ctx.guard(self._call(input, ctx))
            except RAGComposerError as e:
                status = e.kind.value
                raise
            except Exception as exc:
                error = wrap_exception(exc, stage=self.label)
                status = error.kind.value
                raise error from exc
            finally:
                log_node_latency(
                    ctx.correlation_id, self.label, (time.monotonic() - start) * 1000, status
                )

    async def _astream(self, input: In, ctx: ExecutionContext) -> AsyncIterator[Out]:
        """``_stream`` with cancellation checks and error wrapping applied."""
        ctx.raise_if_cancelled()
        try:
            async with aclosing(self._stream(input, ctx)) as items:
                async for item in items:
                    yield item
                    ctx.raise_if_cancelled()
        except RAGComposerError:
            raise
        except Exception as exc:
            raise wrap_exception(exc, stage=self.label) from exc

    # ---- public surface -----------------------------------------------

    async def invoke(self, input: In, ctx: ExecutionContext | None = None) -> Out:
        ctx = ctx or ExecutionContext()
        with _correlation_scope(ctx):
            return await self._run(input, ctx)

    async def batch(
        self,
        inputs: Iterable[In],
        ctx: ExecutionContext | None = None,
        *,
        max_concurrency: int | None = None,
        fail_fast: bool = False,
    ) -> list[Out | RAGComposerError]:
        """Invoke on every input; results keep input order.

        A failed position holds its error envelope unless ``fail_fast`` is set,
        in which case the first failure cancels the remaining items and is raised.
        Without ``max_concurrency`` the context's ``batch_concurrency`` applies.
        """
        ctx = ctx or ExecutionContext()
        limit = ctx.batch_concurrency if max_concurrency is None else max_concurrency
        if limit < 1:
            raise ValueError("max_concurrency must be at least 1")
        items = list(inputs)
        if not items:
            return []

        with _correlation_scope(ctx):
            ctx.raise_if_cancelled()
            start = time.monotonic()
            results = await self._batch(items, ctx, max_concurrency=limit, fail_fast=fail_fast)
            ctx.raise_if_cancelled()
            log_batch_metrics(
                ctx.correlation_id,
                self.label,
                size=len(items),
                failures=sum(isinstance(r, RAGComposerError) for r in results),
                duration_ms=(time.monotonic() - start) * 1000,
            )
            return results

    async def stream(
        self,
        input: In,
        ctx: ExecutionContext | None = None,
        *,
        buffer_size: int | None = None,
    ) -> AsyncIterator[Out]:
        """Yield outputs incrementally through a backpressured channel.

        Stages without native streaming yield exactly one item. Closing the
        generator early cancels the producer.
        """
        ctx = ctx or ExecutionContext()
        channel: StreamChannel[Out] = StreamChannel(
            self._astream(input, ctx),
            ctx,
            buffer_size=ctx.stream_buffer_size if buffer_size is None else buffer_size,
            name=self.label,
        )
        try:
            async for item in channel:
                yield item
        finally:
            await channel.aclose()

    # ---- composition --------------------------------------------------

    def pipe(self, *others: Any) -> RunnableSequence:
        from rag_composer.pipeline.sequence import RunnableSequence

        return RunnableSequence(self, *others)

    def __or__(self, other: Any) -> RunnableSequence:
        return self.pipe(other)

    def __ror__(self, other: Any) -> RunnableSequence:
        from rag_composer.pipeline.sequence import RunnableSequence

        return RunnableSequence(other, self)

    def with_retry(self, policy: RetryPolicy | None = None, **kwargs: Any) -> RunnableRetry:
        from rag_composer.models.schemas import RetryPolicy
        from rag_composer.runnables.retry import RunnableRetry

        return RunnableRetry(self, policy or RetryPolicy(**kwargs))

    def with_fallback(self, *alternates: Any) -> RunnableWithFallbacks:
        from rag_composer.runnables.fallback import RunnableWithFallbacks

        return RunnableWithFallbacks(self, [coerce_to_runnable(a) for a in alternates])

    def map(self, transform: Callable[[Out], NewOut]) -> RunnableMapped[In, Out, NewOut]:
        return RunnableMapped(self, transform)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.label!r})"


class RunnableLambda(Runnable[In, Out]):
    """Wrap a plain function or coroutine function as a Runnable.

    The function takes the input, and also the context if it declares a
    ``ctx`` parameter. Blocking sync functions can run in a worker thread.
    """

    def __init__(
        self,
        func: Callable[..., Out] | Callable[..., Awaitable[Out]],
        *,
        name: str | None = None,
        run_in_thread: bool = False,
    ) -> None:
        if not callable(func):
            raise TypeError(f"RunnableLambda needs a callable, got {type(func).__name__}")
        self._func = func
        self._is_async = inspect.iscoroutinefunction(func) or inspect.iscoroutinefunction(
            getattr(func, "__call__", None)
        )
        self._run_in_thread = run_in_thread
        self._wants_ctx = _accepts_ctx(func)
        self.name = name or getattr(func, "__name__", None)

    async def _call(self, input: In, ctx: ExecutionContext) -> Out:
        kwargs = {"ctx": ctx} if self._wants_ctx else {}
        if self._is_async:
            return await self._func(input, **kwargs)
        if self._run_in_thread:
            return await asyncio.to_thread(self._func, input, **kwargs)
        result = self._func(input, **kwargs)
        if inspect.isawaitable(result):
            return await result
        return result


class RunnableMapped(Runnable[In, NewOut], Generic[In, Out, NewOut]):
    """Apply a synchronous transform to every output of ``bound``."""

    def __init__(self, bound: Runnable[In, Out], transform: Callable[[Out], NewOut]) -> None:
        self.bound = bound
        self.transform = transform
        self.name = f"{bound.label}.map"

    def _apply(self, value: Out) -> NewOut:
        try:
            return self.transform(value)
        except RAGComposerError:
            raise
        except Exception as exc:
            raise wrap_exception(exc, stage=self.label) from exc

    async def _call(self, input: In, ctx: ExecutionContext) -> NewOut:
        return self._apply(await self.bound._run(input, ctx))

    async def _stream(self, input: In, ctx: ExecutionContext) -> AsyncIterator[NewOut]:
        async with aclosing(self.bound._astream(input, ctx)) as items:
            async for item in items:
                yield self._apply(item)


def _accepts_ctx(func: Callable[..., Any]) -> bool:
    try:
        params = inspect.signature(func).parameters
    except (TypeError, ValueError):
        return False
    return "ctx" in params


def coerce_to_runnable(value: Any) -> Runnable:
    """Turn a Runnable, a capability provider or a callable into a Runnable."""
    if isinstance(value, Runnable):
        return value

    from rag_composer.runnables.capabilities import as_runnable

    runnable = as_runnable(value, strict=False)
    if runnable is not None:
        return runnable
    if callable(value):
        return RunnableLambda(value)
    raise TypeError(f"Cannot use object of type {type(value).__name__} as a pipeline step")
