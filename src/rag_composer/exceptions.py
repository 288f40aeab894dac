"""Error envelope: the uniform failure classification surfaced by every Runnable."""

from __future__ import annotations

import asyncio
from enum import Enum

from pydantic import ValidationError


class ErrorKind(str, Enum):
    """Classification of a failure, independent of the provider that raised it."""

    INVALID_INPUT = "invalid_input"  # caller error, not retryable
    RATE_LIMITED = "rate_limited"  # retryable with backoff
    UPSTREAM = "upstream"  # transient provider/network failure, retryable
    CONFLICT = "conflict"  # state conflict, caller must resolve
    CONTEXT_TOO_LONG = "context_too_long"  # caller must shorten input
    CANCELLED = "cancelled"  # context cancelled or deadline exceeded
    NOT_FOUND = "not_found"
    IO = "io"  # local storage / filesystem failure


RETRYABLE_KINDS: frozenset[ErrorKind] = frozenset({ErrorKind.RATE_LIMITED, ErrorKind.UPSTREAM})


class RAGComposerError(Exception):
    """Base exception for all rag_composer errors.

    Carries the classification, a human-readable message and the optional
    provider exception it was derived from.
    """

    kind: ErrorKind = ErrorKind.UPSTREAM

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, message={self.message!r})"


class InvalidInputError(RAGComposerError):
    """The caller supplied input the stage cannot accept."""

    kind = ErrorKind.INVALID_INPUT


class RateLimitedError(RAGComposerError):
    """The provider throttled the request. May carry a retry-after hint in seconds."""

    kind = ErrorKind.RATE_LIMITED

    def __init__(
        self,
        message: str,
        *,
        retry_after: float | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.retry_after = retry_after


class UpstreamError(RAGComposerError):
    """Transient provider or network failure."""

    kind = ErrorKind.UPSTREAM


class ConflictError(RAGComposerError):
    """State conflict such as a duplicate key."""

    kind = ErrorKind.CONFLICT


class ContextTooLongError(RAGComposerError):
    """Completion input exceeds the provider's context window."""

    kind = ErrorKind.CONTEXT_TOO_LONG


class PipelineCancelledError(RAGComposerError):
    """The execution context was cancelled or its deadline passed."""

    kind = ErrorKind.CANCELLED


class NotFoundError(RAGComposerError):
    """A requested source, record or tool does not exist."""

    kind = ErrorKind.NOT_FOUND


class ResourceIOError(RAGComposerError):
    """Local storage or filesystem failure."""

    kind = ErrorKind.IO


class ConfigurationError(InvalidInputError):
    """Components were wired together in an invalid way."""


class CompositionError(InvalidInputError):
    """A pipeline graph is malformed (unknown node, duplicate name, cycle)."""


_STATUS_KINDS: dict[int, type[RAGComposerError]] = {
    400: InvalidInputError,
    404: NotFoundError,
    409: ConflictError,
    413: ContextTooLongError,
    422: InvalidInputError,
    429: RateLimitedError,
}


def wrap_exception(exc: BaseException, *, stage: str | None = None) -> RAGComposerError:
    """Classify a provider-native exception into an error envelope.

    Envelopes pass through untouched. The original exception is kept as ``cause``.
    """
    if isinstance(exc, RAGComposerError):
        return exc

    prefix = f"{stage}: " if stage else ""
    message = f"{prefix}{type(exc).__name__}: {exc}"

    status = _status_code(exc)
    if status is not None:
        if status == 429:
            return RateLimitedError(message, retry_after=_retry_after(exc), cause=exc)
        error_cls = _STATUS_KINDS.get(status)
        if error_cls is not None:
            return error_cls(message, cause=exc)
        if status >= 500:
            return UpstreamError(message, cause=exc)
        return InvalidInputError(message, cause=exc)

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return UpstreamError(message, cause=exc)
    if isinstance(exc, FileNotFoundError):
        return NotFoundError(message, cause=exc)
    if isinstance(exc, OSError):
        return ResourceIOError(message, cause=exc)
    if isinstance(exc, (ValueError, TypeError, ValidationError)):
        return InvalidInputError(message, cause=exc)
    return UpstreamError(message, cause=exc)


def _status_code(exc: BaseException) -> int | None:
    status = getattr(exc, "status_code", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def _retry_after(exc: BaseException) -> float | None:
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None) or getattr(exc, "headers", None)
    if not headers:
        return None
    value = headers.get("Retry-After") or headers.get("retry-after")
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None
