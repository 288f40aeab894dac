"""Ordering helpers that establish the dense-rank invariant on result lists."""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable

from rag_composer.models.domain import ScoredResult, sort_score


def rank_results(
    results: Iterable[ScoredResult],
    top_k: int | None = None,
    source: str | None = None,
) -> list[ScoredResult]:
    """Sort by descending score and assign ranks 0..n-1.

    Ties keep their input order (``sorted`` is stable). NaN scores sort last.
    """
    ordered = sorted(results, key=lambda r: sort_score(r.score), reverse=True)
    if top_k is not None:
        ordered = ordered[: max(top_k, 0)]
    return [
        replace(r, rank=i, source=source if source is not None else r.source)
        for i, r in enumerate(ordered)
    ]


def is_ranked(results: list[ScoredResult]) -> bool:
    """True if ranks are dense, zero-based and consistent with descending score."""
    for i, r in enumerate(results):
        if r.rank != i:
            return False
        if i and sort_score(results[i - 1].score) < sort_score(r.score):
            return False
    return True
