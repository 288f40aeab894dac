"""Core record types exchanged between pipeline stages.

Every record is immutable. A stage that needs a changed value builds a new one
(``dataclasses.replace`` or the ``with_*`` helpers) instead of mutating its input.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Iterable, Sequence
from uuid import uuid4

from rag_composer.exceptions import InvalidInputError

MetadataValue = str | int | float | bool


def _new_id() -> str:
    return str(uuid4())


def _check_metadata(owner: str, metadata: dict[str, Any]) -> None:
    for key, value in metadata.items():
        if not isinstance(key, str):
            raise InvalidInputError(f"{owner} metadata keys must be strings, got {key!r}")
        if not isinstance(value, (str, int, float, bool)):
            raise InvalidInputError(
                f"{owner} metadata value for '{key}' must be str, number or bool, "
                f"got {type(value).__name__}"
            )


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True)
class Document:
    content: str | bytes
    metadata: dict[str, MetadataValue] = field(default_factory=dict)
    doc_id: str = field(default_factory=_new_id)
    source: str | None = None

    def __post_init__(self) -> None:
        _check_metadata("Document", self.metadata)

    @property
    def is_binary(self) -> bool:
        return isinstance(self.content, bytes)

    @property
    def text(self) -> str:
        if isinstance(self.content, bytes):
            return self.content.decode("utf-8", errors="replace")
        return self.content


@dataclass(frozen=True)
class Embedding:
    values: tuple[float, ...]
    dimensions: int
    ref_id: str | None = None  # chunk id, or None for a query vector

    def __post_init__(self) -> None:
        if not isinstance(self.values, tuple):
            object.__setattr__(self, "values", tuple(float(v) for v in self.values))
        if self.dimensions <= 0:
            raise InvalidInputError(f"Embedding dimensions must be positive, got {self.dimensions}")
        if len(self.values) != self.dimensions:
            raise InvalidInputError(
                f"Embedding tagged with {self.dimensions} dimensions has {len(self.values)} values"
            )

    @classmethod
    def from_values(cls, values: Sequence[float], ref_id: str | None = None) -> Embedding:
        values = tuple(float(v) for v in values)
        return cls(values=values, dimensions=len(values), ref_id=ref_id)


@dataclass(frozen=True)
class Chunk:
    content: str
    doc_id: str
    index: int
    metadata: dict[str, MetadataValue] = field(default_factory=dict)
    chunk_id: str = field(default_factory=_new_id)
    embedding: Embedding | None = None

    def __post_init__(self) -> None:
        if self.index < 0:
            raise InvalidInputError(f"Chunk index must be >= 0, got {self.index}")
        _check_metadata("Chunk", self.metadata)

    def with_embedding(self, embedding: Embedding) -> Chunk:
        return replace(self, embedding=replace(embedding, ref_id=self.chunk_id))


@dataclass(frozen=True)
class ScoredResult:
    item: Chunk | Document
    score: float
    rank: int = 0
    source: str = ""  # "vector", "reranked", "rrf", ...

    @property
    def key(self) -> str:
        if isinstance(self.item, Chunk):
            return self.item.chunk_id
        return self.item.doc_id

    @property
    def content(self) -> str:
        if isinstance(self.item, Chunk):
            return self.item.content
        return self.item.text


@dataclass(frozen=True)
class ToolCall:
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    call_id: str = field(default_factory=_new_id)


@dataclass(frozen=True)
class Message:
    role: Role
    content: str = ""
    tool_calls: tuple[ToolCall, ...] = ()
    tool_call_id: str | None = None
    name: str | None = None
    partial: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.role, Role):
            try:
                object.__setattr__(self, "role", Role(self.role))
            except ValueError as e:
                raise InvalidInputError(f"Unknown message role: {self.role!r}") from e
        if not isinstance(self.tool_calls, tuple):
            object.__setattr__(self, "tool_calls", tuple(self.tool_calls))

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: Iterable[ToolCall] = ()) -> Message:
        return cls(role=Role.ASSISTANT, content=content, tool_calls=tuple(tool_calls))

    @classmethod
    def tool(cls, content: str, tool_call_id: str, name: str | None = None) -> Message:
        return cls(role=Role.TOOL, content=content, tool_call_id=tool_call_id, name=name)


@dataclass(frozen=True)
class Node:
    node_id: str
    kind: str
    properties: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Edge:
    source_id: str
    target_id: str
    kind: str
    properties: dict[str, Any] = field(default_factory=dict)

    @property
    def edge_id(self) -> str:
        return f"{self.source_id}-[{self.kind}]->{self.target_id}"


@dataclass(frozen=True)
class GraphDocument:
    """Nodes and edges extracted from one source document."""

    nodes: tuple[Node, ...]
    edges: tuple[Edge, ...] = ()
    source: Document | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.nodes, tuple):
            object.__setattr__(self, "nodes", tuple(self.nodes))
        if not isinstance(self.edges, tuple):
            object.__setattr__(self, "edges", tuple(self.edges))


@dataclass(frozen=True)
class RerankRequest:
    query: str
    candidates: tuple[ScoredResult, ...]
    top_n: int | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.candidates, tuple):
            object.__setattr__(self, "candidates", tuple(self.candidates))


def ordered_chunks(chunks: Iterable[Chunk], doc_id: str) -> list[Chunk]:
    """Return the chunks of one document in their original sequence order."""
    return sorted((c for c in chunks if c.doc_id == doc_id), key=lambda c: c.index)


def merge_message_chunks(parts: Sequence[Message]) -> Message:
    """Fold the partial messages of a completion stream into one final message."""
    if not parts:
        raise InvalidInputError("Cannot merge an empty message stream")
    first = parts[0]
    tool_calls: list[ToolCall] = []
    metadata: dict[str, Any] = {}
    for part in parts:
        tool_calls.extend(part.tool_calls)
        metadata.update(part.metadata)
    return Message(
        role=first.role,
        content="".join(p.content for p in parts),
        tool_calls=tuple(tool_calls),
        tool_call_id=first.tool_call_id,
        name=first.name,
        partial=False,
        metadata=metadata,
    )


def sort_score(score: float) -> float:
    """Key used to order scores; NaN sorts after every real score."""
    return -math.inf if math.isnan(score) else score
