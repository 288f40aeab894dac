"""Backpressured single-producer / single-consumer channel behind ``Runnable.stream``."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Generic, TypeVar

from rag_composer.config.constants import DEFAULT_STREAM_BUFFER_SIZE
from rag_composer.exceptions import PipelineCancelledError, RAGComposerError, wrap_exception
from rag_composer.observability.logger import get_logger
from rag_composer.observability.metrics import log_stream_termination
from rag_composer.runtime.context import ExecutionContext

logger = get_logger("channel")

T = TypeVar("T")


class StreamTermination(str, Enum):
    COMPLETED = "completed"
    ERRORED = "errored"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class _End:
    termination: StreamTermination
    error: RAGComposerError | None = None


class StreamChannel(Generic[T]):
    """Pulls items from ``source`` in a producer task into a bounded buffer.

    The producer suspends while the buffer is full. Items are delivered in
    emission order; an error is delivered after every item produced before it.
    Closing the channel before termination cancels the producer and closes the
    source so the upstream call is released.
    """

    def __init__(
        self,
        source: AsyncIterator[T],
        ctx: ExecutionContext,
        *,
        buffer_size: int = DEFAULT_STREAM_BUFFER_SIZE,
        name: str = "stream",
    ) -> None:
        if buffer_size < 1:
            raise ValueError("buffer_size must be at least 1")
        self._source = source
        self._ctx = ctx
        self._name = name
        self._queue: asyncio.Queue[T | _End] = asyncio.Queue(maxsize=buffer_size)
        self._producer: asyncio.Task | None = None
        self._termination: StreamTermination | None = None
        self._error: RAGComposerError | None = None
        self.produced = 0
        self.delivered = 0

    @property
    def termination(self) -> StreamTermination | None:
        return self._termination

    @property
    def error(self) -> RAGComposerError | None:
        return self._error

    # ---- producer side ------------------------------------------------

    async def _pump(self) -> None:
        try:
            async for item in self._source:
                await self._queue.put(item)
                self.produced += 1
        except PipelineCancelledError as e:
            await self._queue.put(_End(StreamTermination.CANCELLED, e))
        except RAGComposerError as e:
            await self._queue.put(_End(StreamTermination.ERRORED, e))
        except Exception as e:
            await self._queue.put(_End(StreamTermination.ERRORED, wrap_exception(e, stage=self._name)))
        else:
            await self._queue.put(_End(StreamTermination.COMPLETED))
        finally:
            aclose = getattr(self._source, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _produce(self) -> None:
        try:
            await self._ctx.guard(self._pump())
        except PipelineCancelledError:
            # the consumer observes cancellation through its own guarded get
            pass

    # ---- consumer side ------------------------------------------------

    def __aiter__(self) -> StreamChannel[T]:
        return self

    async def __anext__(self) -> T:
        if self._termination is not None:
            raise StopAsyncIteration
        if self._producer is None:
            self._producer = asyncio.ensure_future(self._produce())

        try:
            item = await self._ctx.guard(self._queue.get())
        except PipelineCancelledError as e:
            await self._stop_producer()
            self._finish(StreamTermination.CANCELLED, e)
            raise

        if isinstance(item, _End):
            await self._stop_producer()
            self._finish(item.termination, item.error)
            if item.error is not None:
                raise item.error
            raise StopAsyncIteration

        self.delivered += 1
        return item

    async def aclose(self) -> None:
        """Abandon the stream. Cancels the producer if it has not terminated."""
        if self._termination is None:
            self._finish(StreamTermination.CANCELLED, None)
        await self._stop_producer()

    async def _stop_producer(self) -> None:
        if self._producer is None:
            aclose = getattr(self._source, "aclose", None)
            if aclose is not None:
                await aclose()
            return
        if not self._producer.done():
            self._producer.cancel()
        await asyncio.wait({self._producer})

    def _finish(self, termination: StreamTermination, error: RAGComposerError | None) -> None:
        self._termination = termination
        self._error = error
        log_stream_termination(
            self._ctx.correlation_id,
            self._name,
            termination.value,
            self.delivered,
            error=str(error) if error else None,
        )

    async def __aenter__(self) -> StreamChannel[T]:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
