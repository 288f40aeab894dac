"""Merging result lists from several retrieval branches."""

from __future__ import annotations

from collections import defaultdict

from rag_composer.config.constants import RRF_K
from rag_composer.models.domain import ScoredResult, sort_score
from rag_composer.retrieval.ranking import rank_results


def reciprocal_rank_fusion(
    result_lists: list[list[ScoredResult]],
    k: int = RRF_K,
    top_k: int | None = None,
) -> list[ScoredResult]:
    """Merge multiple ranked result lists using RRF.

    Args:
        result_lists: Each list is ordered best first.
        k: RRF constant (higher = more weight to lower-ranked results).
        top_k: Keep only the best ``top_k`` fused results.

    Returns:
        Results deduplicated by chunk/document id, scored by RRF and re-ranked.
    """
    scores: dict[str, float] = defaultdict(float)
    first_seen: dict[str, ScoredResult] = {}
    for result_list in result_lists:
        for position, result in enumerate(result_list):
            scores[result.key] += 1.0 / (k + position + 1)
            first_seen.setdefault(result.key, result)

    fused = [
        ScoredResult(item=first_seen[key].item, score=score, source="rrf")
        for key, score in scores.items()
    ]
    return rank_results(fused, top_k=top_k)


def concat_results(
    result_lists: list[list[ScoredResult]],
    top_k: int | None = None,
) -> list[ScoredResult]:
    """Union of the lists, keeping the best original score per id."""
    best: dict[str, ScoredResult] = {}
    for result_list in result_lists:
        for result in result_list:
            current = best.get(result.key)
            if current is None or sort_score(result.score) > sort_score(current.score):
                best[result.key] = result
    return rank_results(best.values(), top_k=top_k)
