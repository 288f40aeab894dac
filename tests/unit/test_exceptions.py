"""Tests for error classification."""

import asyncio

import pytest
from pydantic import BaseModel, ValidationError

from rag_composer.exceptions import (
    CompositionError,
    ConfigurationError,
    ErrorKind,
    InvalidInputError,
    NotFoundError,
    PipelineCancelledError,
    RAGComposerError,
    RateLimitedError,
    UpstreamError,
    wrap_exception,
)


class FakeResponse:
    def __init__(self, status_code: int, headers: dict | None = None) -> None:
        self.status_code = status_code
        self.headers = headers or {}


class FakeHTTPError(Exception):
    def __init__(self, status_code: int, headers: dict | None = None) -> None:
        super().__init__(f"HTTP {status_code}")
        self.response = FakeResponse(status_code, headers)


def test_eight_kinds():
    assert len(ErrorKind) == 8


def test_retryable_kinds():
    assert RateLimitedError("x").retryable
    assert UpstreamError("x").retryable
    assert not InvalidInputError("x").retryable
    assert not PipelineCancelledError("x").retryable


def test_construction_errors_are_invalid_input():
    assert ConfigurationError("x").kind is ErrorKind.INVALID_INPUT
    assert isinstance(CompositionError("x"), InvalidInputError)


def test_envelope_passes_through():
    err = NotFoundError("missing")
    assert wrap_exception(err) is err


@pytest.mark.parametrize(
    "status, kind",
    [
        (400, ErrorKind.INVALID_INPUT),
        (404, ErrorKind.NOT_FOUND),
        (409, ErrorKind.CONFLICT),
        (413, ErrorKind.CONTEXT_TOO_LONG),
        (429, ErrorKind.RATE_LIMITED),
        (503, ErrorKind.UPSTREAM),
    ],
)
def test_http_status_classification(status, kind):
    assert wrap_exception(FakeHTTPError(status)).kind is kind


def test_rate_limit_keeps_retry_after_hint():
    err = wrap_exception(FakeHTTPError(429, {"Retry-After": "2.5"}))
    assert isinstance(err, RateLimitedError)
    assert err.retry_after == 2.5


def test_cause_is_kept():
    original = ConnectionError("reset")
    err = wrap_exception(original, stage="embedder")
    assert err.kind is ErrorKind.UPSTREAM
    assert err.cause is original
    assert err.message.startswith("embedder: ")


def test_native_exception_classification():
    assert wrap_exception(asyncio.TimeoutError()).kind is ErrorKind.UPSTREAM
    assert wrap_exception(FileNotFoundError("x")).kind is ErrorKind.NOT_FOUND
    assert wrap_exception(PermissionError("x")).kind is ErrorKind.IO
    assert wrap_exception(ValueError("x")).kind is ErrorKind.INVALID_INPUT
    assert wrap_exception(RuntimeError("x")).kind is ErrorKind.UPSTREAM


def test_pydantic_validation_error_is_invalid_input():
    class Args(BaseModel):
        n: int

    with pytest.raises(ValidationError) as info:
        Args.model_validate({"n": "not a number"})
    assert wrap_exception(info.value).kind is ErrorKind.INVALID_INPUT


def test_base_error_repr():
    assert "invalid_input" in repr(InvalidInputError("bad"))
    assert isinstance(InvalidInputError("bad"), RAGComposerError)
