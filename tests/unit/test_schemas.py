"""Tests for option and policy models."""

import pytest
from pydantic import ValidationError

from rag_composer.exceptions import ErrorKind, InvalidInputError, RateLimitedError, UpstreamError
from rag_composer.models.schemas import (
    GenerationOptions,
    GraphQuery,
    RetryPolicy,
    SourceDescriptor,
)


def test_retry_policy_defaults():
    policy = RetryPolicy()
    assert policy.max_retries == 3
    assert policy.retry_on == frozenset({ErrorKind.RATE_LIMITED, ErrorKind.UPSTREAM})


def test_retry_policy_rejects_non_transient_kinds():
    with pytest.raises(ValidationError):
        RetryPolicy(retry_on=frozenset({ErrorKind.INVALID_INPUT}))


def test_retry_policy_negative_retries():
    with pytest.raises(ValidationError):
        RetryPolicy(max_retries=-1)


def test_should_retry_respects_budget_and_kind():
    policy = RetryPolicy(max_retries=2)
    assert policy.should_retry(UpstreamError("x"), 0)
    assert policy.should_retry(UpstreamError("x"), 1)
    assert not policy.should_retry(UpstreamError("x"), 2)
    assert not policy.should_retry(InvalidInputError("x"), 0)


def test_exponential_backoff_without_jitter():
    policy = RetryPolicy(initial_delay_s=0.5, backoff_factor=2.0, max_delay_s=3.0, jitter=0.0)
    assert [policy.delay_for(i) for i in range(4)] == [0.5, 1.0, 2.0, 3.0]


def test_jitter_stays_in_bounds():
    policy = RetryPolicy(initial_delay_s=1.0, jitter=0.2)
    for _ in range(50):
        assert 0.8 <= policy.delay_for(0) <= 1.2


def test_retry_after_hint_wins_and_is_capped():
    policy = RetryPolicy(initial_delay_s=0.1, max_delay_s=5.0, jitter=0.0)
    assert policy.delay_for(0, RateLimitedError("slow down", retry_after=2.0)) == 2.0
    assert policy.delay_for(0, RateLimitedError("slow down", retry_after=60.0)) == 5.0


def test_retry_policy_from_settings(settings):
    policy = RetryPolicy.from_settings(settings)
    assert policy.max_retries == settings.retry_max_retries
    assert policy.initial_delay_s == 0.0


def test_generation_options_bounds():
    with pytest.raises(ValidationError):
        GenerationOptions(temperature=3.0)
    with pytest.raises(ValidationError):
        GenerationOptions(max_tokens=0)


def test_graph_query_needs_start():
    with pytest.raises(ValidationError):
        GraphQuery(start_ids=[])
    assert GraphQuery(start_ids=["a"]).direction == "out"


def test_source_descriptor_coerce(tmp_path):
    assert SourceDescriptor.coerce(tmp_path).uri == str(tmp_path)
    desc = SourceDescriptor(uri="x", options={"recursive": True})
    assert SourceDescriptor.coerce(desc) is desc
