"""Formatting retrieved results into completion messages."""

from __future__ import annotations

import re
from typing import Sequence

from rag_composer.config.constants import CONTEXT_SNIPPET_CHARS
from rag_composer.generation.prompt_templates import NO_EVIDENCE_BLOCK, RAG_SYSTEM, RAG_USER_PROMPT
from rag_composer.models.domain import Message, Role, ScoredResult


def format_context_block(
    results: Sequence[ScoredResult],
    max_results: int = 10,
    max_chars: int = CONTEXT_SNIPPET_CHARS,
) -> str:
    """Format results as a numbered evidence block for prompts."""
    lines = []
    for i, result in enumerate(results[:max_results], 1):
        text = result.content
        if len(text) > max_chars:
            text = text[:max_chars].rstrip() + "..."
        lines.append(f"[{i}] {text}")
    return "\n\n".join(lines) if lines else NO_EVIDENCE_BLOCK


def augment_messages(
    query: str,
    results: Sequence[ScoredResult],
    history: Sequence[Message] = (),
    system_prompt: str | None = RAG_SYSTEM,
) -> list[Message]:
    """Build the completion input: system prompt, prior turns, evidence-backed question.

    A system message already present in ``history`` replaces ``system_prompt``.
    """
    messages: list[Message] = []
    has_system = any(m.role is Role.SYSTEM for m in history)
    if system_prompt and not has_system:
        messages.append(Message.system(system_prompt))
    messages.extend(history)
    messages.append(
        Message.user(
            RAG_USER_PROMPT.format(query=query, evidence_block=format_context_block(results))
        )
    )
    return messages


def cited_results(answer: str, results: Sequence[ScoredResult]) -> list[ScoredResult]:
    """Results referenced by ``[n]`` markers in an answer, in citation order."""
    cited = sorted({int(m) for m in re.findall(r"\[(\d+)\]", answer)})
    return [results[i - 1] for i in cited if 1 <= i <= len(results)]
