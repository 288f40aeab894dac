"""Structure-aware splitter: headings, then paragraphs, then sentences."""

from __future__ import annotations

import re
from typing import Callable

from rag_composer.config.constants import DEFAULT_CHUNK_MAX_TOKENS, DEFAULT_CHUNK_OVERLAP_PCT
from rag_composer.exceptions import InvalidInputError
from rag_composer.models.domain import Chunk, Document
from rag_composer.runtime.context import ExecutionContext

_HEADING = re.compile(r"^(#{1,6})\s+(.+)$", re.MULTILINE)


def word_count(text: str) -> int:
    return len(text.split())


def compute_overlap_text(prev_chunk_text: str, overlap_pct: float) -> str:
    """Return the trailing portion of prev_chunk_text to prepend to the next chunk."""
    if overlap_pct <= 0 or not prev_chunk_text:
        return ""
    words = prev_chunk_text.split()
    overlap_count = max(1, int(len(words) * overlap_pct))
    return " ".join(words[-overlap_count:])


class StructureSplitter:
    """Splits a document into chunks of at most ``max_tokens`` (plus overlap).

    Sections under markdown headings are kept whole when they fit; larger
    sections fall back to paragraphs, then to sentence packing. Each chunk
    records its heading path in ``metadata["heading_path"]``.
    """

    def __init__(
        self,
        max_tokens: int = DEFAULT_CHUNK_MAX_TOKENS,
        overlap_pct: float = DEFAULT_CHUNK_OVERLAP_PCT,
        count_tokens: Callable[[str], int] = word_count,
    ) -> None:
        if max_tokens < 1:
            raise ValueError("max_tokens must be at least 1")
        if not 0.0 <= overlap_pct < 1.0:
            raise ValueError("overlap_pct must be in [0, 1)")
        self._max_tokens = max_tokens
        self._overlap_pct = overlap_pct
        self._count_tokens = count_tokens

    async def split(self, document: Document, ctx: ExecutionContext) -> list[Chunk]:
        if document.is_binary:
            raise InvalidInputError(f"Cannot split binary document {document.doc_id}")
        return self.split_text(document.text, document.doc_id)

    def split_text(self, text: str, doc_id: str) -> list[Chunk]:
        raw_chunks: list[tuple[str, str]] = []
        for heading_path, section_text in self._split_by_headings(text):
            for piece in self._fit(section_text):
                raw_chunks.append((piece, heading_path))

        chunks: list[Chunk] = []
        for i, (piece, heading_path) in enumerate(raw_chunks):
            content = piece
            if i > 0 and self._overlap_pct > 0:
                overlap = compute_overlap_text(raw_chunks[i - 1][0], self._overlap_pct)
                if overlap:
                    content = overlap + "\n" + piece
            chunks.append(
                Chunk(
                    content=content,
                    doc_id=doc_id,
                    index=len(chunks),
                    metadata={"heading_path": heading_path, "token_count": self._count_tokens(content)},
                )
            )
        return chunks

    def _fit(self, section_text: str) -> list[str]:
        if self._count_tokens(section_text) <= self._max_tokens:
            return [section_text.strip()] if section_text.strip() else []
        pieces: list[str] = []
        for para in self._split_by_paragraphs(section_text):
            if self._count_tokens(para) <= self._max_tokens:
                pieces.append(para.strip())
                continue
            buffer = ""
            for sent in self._split_by_sentences(para):
                candidate = (buffer + " " + sent).strip() if buffer else sent
                if self._count_tokens(candidate) <= self._max_tokens:
                    buffer = candidate
                else:
                    if buffer:
                        pieces.append(buffer.strip())
                    buffer = sent
            if buffer.strip():
                pieces.append(buffer.strip())
        return pieces

    @staticmethod
    def _split_by_headings(text: str) -> list[tuple[str, str]]:
        """Split text by markdown headings. Returns (heading path, section text) pairs."""
        sections: list[tuple[str, str]] = []
        heading_stack: list[str] = []
        last_end = 0

        for match in _HEADING.finditer(text):
            section_text = text[last_end : match.start()]
            if section_text.strip():
                sections.append((" > ".join(heading_stack), section_text))
            level = len(match.group(1))
            heading_stack = heading_stack[: level - 1] + [match.group(2).strip()]
            last_end = match.end()

        remaining = text[last_end:]
        if remaining.strip():
            sections.append((" > ".join(heading_stack), remaining))
        return sections

    @staticmethod
    def _split_by_paragraphs(text: str) -> list[str]:
        return [p for p in re.split(r"\n\s*\n", text) if p.strip()]

    @staticmethod
    def _split_by_sentences(text: str) -> list[str]:
        return [s for s in re.split(r"(?<=[.!?])\s+", text) if s.strip()]
