"""Per-invocation execution context: cancellation, deadline and correlation id."""

from __future__ import annotations

import asyncio
import inspect
import time
import weakref
from typing import Any, Awaitable, Iterable, TypeVar
from uuid import uuid4

from rag_composer.config.constants import DEFAULT_BATCH_CONCURRENCY, DEFAULT_STREAM_BUFFER_SIZE
from rag_composer.config.settings import Settings
from rag_composer.exceptions import PipelineCancelledError
from rag_composer.observability.logger import get_logger
from rag_composer.observability.tracing import TraceContext

logger = get_logger("context")

T = TypeVar("T")


class ExecutionContext:
    """Shared by every stage of one pipeline invocation.

    Stages read it; they never reassign its fields. The only structural change a
    stage makes is deriving a child via ``child()``: cancelling a child does not
    affect its parent or siblings, cancelling a parent cancels all its children.
    """

    def __init__(
        self,
        *,
        correlation_id: str | None = None,
        timeout: float | None = None,
        deadline: float | None = None,
        parent: ExecutionContext | None = None,
        trace: TraceContext | None = None,
        batch_concurrency: int | None = None,
        stream_buffer_size: int | None = None,
    ) -> None:
        if parent is not None:
            correlation_id = correlation_id or parent.correlation_id
            trace = trace or parent.trace
            if batch_concurrency is None:
                batch_concurrency = parent.batch_concurrency
            if stream_buffer_size is None:
                stream_buffer_size = parent.stream_buffer_size
        self.correlation_id = correlation_id or uuid4().hex
        self.trace = trace or TraceContext(trace_id=self.correlation_id)
        self.parent = parent
        # defaults for batch() and stream() when the call does not pass its own
        self.batch_concurrency = (
            DEFAULT_BATCH_CONCURRENCY if batch_concurrency is None else batch_concurrency
        )
        self.stream_buffer_size = (
            DEFAULT_STREAM_BUFFER_SIZE if stream_buffer_size is None else stream_buffer_size
        )
        if self.batch_concurrency < 1 or self.stream_buffer_size < 1:
            raise ValueError("batch_concurrency and stream_buffer_size must be at least 1")

        if timeout is not None:
            own = time.monotonic() + timeout
            deadline = own if deadline is None else min(deadline, own)
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self.deadline = deadline

        self._cancelled = asyncio.Event()
        self._reason: str | None = None
        self._children: weakref.WeakSet[ExecutionContext] = weakref.WeakSet()

        if parent is not None:
            parent._children.add(self)
            if parent.cancelled:
                self.cancel(parent.reason or "parent cancelled")

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> ExecutionContext:
        kwargs.setdefault("timeout", settings.default_timeout_s)
        kwargs.setdefault("batch_concurrency", settings.batch_max_concurrency)
        kwargs.setdefault("stream_buffer_size", settings.stream_buffer_size)
        return cls(**kwargs)

    # ---- cancellation -------------------------------------------------

    @property
    def cancelled(self) -> bool:
        if not self._cancelled.is_set() and self._deadline_passed():
            self.cancel("deadline exceeded")
        return self._cancelled.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        """Cancel this context and every child derived from it."""
        if self._cancelled.is_set():
            return
        self._reason = reason
        self._cancelled.set()
        logger.debug("context_cancelled", correlation_id=self.correlation_id, reason=reason)
        for child in list(self._children):
            child.cancel(reason)

    def child(self, *, timeout: float | None = None) -> ExecutionContext:
        return ExecutionContext(parent=self, timeout=timeout)

    def _deadline_passed(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def remaining(self) -> float | None:
        if self.deadline is None:
            return None
        return max(self.deadline - time.monotonic(), 0.0)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise PipelineCancelledError(f"Execution cancelled: {self._reason}")

    async def wait_cancelled(self) -> None:
        remaining = self.remaining()
        if remaining is None:
            await self._cancelled.wait()
            return
        try:
            await asyncio.wait_for(self._cancelled.wait(), timeout=remaining)
        except asyncio.TimeoutError:
            self.cancel("deadline exceeded")

    # ---- suspension points --------------------------------------------

    async def guard(self, aw: Awaitable[T]) -> T:
        """Await ``aw`` unless the context is cancelled or its deadline passes first.

        On cancellation the awaited work is cancelled and ``PipelineCancelledError``
        is raised; a result that arrives together with cancellation is discarded.
        """
        if self.cancelled:
            if inspect.iscoroutine(aw):
                aw.close()
            self.raise_if_cancelled()

        task = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(self._cancelled.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter},
                timeout=self.remaining(),
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            await asyncio.wait({task})
            raise

        if waiter in done or task not in done:
            if not self._cancelled.is_set():
                self.cancel("deadline exceeded")
            task.cancel()
            waiter.cancel()
            await asyncio.wait({task})
            if not task.cancelled() and task.exception() is not None:
                logger.debug(
                    "cancelled_work_failed",
                    correlation_id=self.correlation_id,
                    error=str(task.exception()),
                )
            self.raise_if_cancelled()

        waiter.cancel()
        return task.result()

    async def sleep(self, delay: float) -> None:
        if delay <= 0:
            self.raise_if_cancelled()
            return
        await self.guard(asyncio.sleep(delay))


async def settle(tasks: Iterable[asyncio.Future]) -> None:
    """Cancel the unfinished tasks, wait for all of them and read each outcome.

    Every exception is retrieved, so failures that lost the race to the one
    being raised are not reported again by the event loop.
    """
    tasks = list(tasks)
    for task in tasks:
        if not task.done():
            task.cancel()
    if tasks:
        await asyncio.wait(tasks)
    for task in tasks:
        if not task.cancelled():
            task.exception()
