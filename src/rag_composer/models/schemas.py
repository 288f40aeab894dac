"""Pydantic models for options, policies and query specs passed into stages."""

from __future__ import annotations

import random
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from rag_composer.config.settings import Settings
from rag_composer.exceptions import RETRYABLE_KINDS, ErrorKind, RAGComposerError, RateLimitedError


class SourceDescriptor(BaseModel):
    """Where a Loader should read from."""

    model_config = ConfigDict(frozen=True)

    uri: str
    options: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def coerce(cls, value: SourceDescriptor | str | Path) -> SourceDescriptor:
        if isinstance(value, SourceDescriptor):
            return value
        return cls(uri=str(value))


class GenerationOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    model: str | None = None
    temperature: float = Field(0.1, ge=0.0, le=2.0)
    max_tokens: int = Field(1024, gt=0)
    stop: list[str] = Field(default_factory=list)
    extra: dict[str, Any] = Field(default_factory=dict)


class GraphQuery(BaseModel):
    """Traversal parameters for GraphStore.query."""

    model_config = ConfigDict(frozen=True)

    start_ids: list[str] = Field(min_length=1)
    edge_kinds: list[str] | None = None
    direction: Literal["out", "in", "both"] = "out"
    max_depth: int = Field(1, ge=0)
    limit: int | None = Field(None, gt=0)
    include_edges: bool = False


class ToolDescriptor(BaseModel):
    name: str
    description: str
    input_schema: dict[str, Any]


class RetryPolicy(BaseModel):
    """Retry budget and backoff for transient failures.

    ``max_retries`` counts re-invocations, so a runnable is called at most
    ``max_retries + 1`` times.
    """

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(3, ge=0)
    initial_delay_s: float = Field(0.5, ge=0.0)
    backoff_factor: float = Field(2.0, ge=1.0)
    max_delay_s: float = Field(30.0, ge=0.0)
    jitter: float = Field(0.1, ge=0.0, le=1.0)
    retry_on: frozenset[ErrorKind] = RETRYABLE_KINDS

    @field_validator("retry_on")
    @classmethod
    def _only_transient(cls, value: frozenset[ErrorKind]) -> frozenset[ErrorKind]:
        not_retryable = value - RETRYABLE_KINDS
        if not_retryable:
            names = sorted(k.value for k in not_retryable)
            raise ValueError(f"Error kinds {names} are not retryable")
        return value

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_retries=settings.retry_max_retries,
            initial_delay_s=settings.retry_initial_delay_s,
            backoff_factor=settings.retry_backoff_factor,
            max_delay_s=settings.retry_max_delay_s,
            jitter=settings.retry_jitter,
        )

    def should_retry(self, error: RAGComposerError, attempt: int) -> bool:
        return error.kind in self.retry_on and attempt < self.max_retries

    def delay_for(self, attempt: int, error: RAGComposerError | None = None) -> float:
        """Seconds to wait before retry number ``attempt + 1``."""
        if isinstance(error, RateLimitedError) and error.retry_after is not None:
            return min(max(error.retry_after, 0.0), self.max_delay_s)
        base = min(self.initial_delay_s * self.backoff_factor**attempt, self.max_delay_s)
        if self.jitter:
            base *= 1 + random.uniform(-self.jitter, self.jitter)
        return max(base, 0.0)
