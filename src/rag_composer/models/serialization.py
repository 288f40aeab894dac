"""Structural serialization of record types for persistence and cross-process use.

Records are plain dicts tagged with a ``"type"`` key. Loading ignores keys it
does not know, so persisted data stays readable when fields are added.
"""

from __future__ import annotations

import base64
import json
from typing import Any, Callable

from rag_composer.exceptions import InvalidInputError
from rag_composer.models.domain import (
    Chunk,
    Document,
    Edge,
    Embedding,
    GraphDocument,
    Message,
    Node,
    ScoredResult,
    ToolCall,
)

Record = dict[str, Any]


def _document_to_record(doc: Document) -> Record:
    record: Record = {
        "doc_id": doc.doc_id,
        "metadata": dict(doc.metadata),
        "source": doc.source,
    }
    if isinstance(doc.content, bytes):
        record["content_b64"] = base64.b64encode(doc.content).decode("ascii")
    else:
        record["content"] = doc.content
    return record


def _document_from_record(data: Record) -> Document:
    if "content_b64" in data:
        content: str | bytes = base64.b64decode(data["content_b64"])
    else:
        content = data["content"]
    return Document(
        content=content,
        metadata=dict(data.get("metadata") or {}),
        doc_id=data["doc_id"],
        source=data.get("source"),
    )


def _embedding_to_record(emb: Embedding) -> Record:
    return {"values": list(emb.values), "dimensions": emb.dimensions, "ref_id": emb.ref_id}


def _embedding_from_record(data: Record) -> Embedding:
    return Embedding(
        values=tuple(data["values"]),
        dimensions=data["dimensions"],
        ref_id=data.get("ref_id"),
    )


def _chunk_to_record(chunk: Chunk) -> Record:
    return {
        "chunk_id": chunk.chunk_id,
        "doc_id": chunk.doc_id,
        "index": chunk.index,
        "content": chunk.content,
        "metadata": dict(chunk.metadata),
        "embedding": _embedding_to_record(chunk.embedding) if chunk.embedding else None,
    }


def _chunk_from_record(data: Record) -> Chunk:
    embedding = data.get("embedding")
    return Chunk(
        content=data["content"],
        doc_id=data["doc_id"],
        index=data["index"],
        metadata=dict(data.get("metadata") or {}),
        chunk_id=data["chunk_id"],
        embedding=_embedding_from_record(embedding) if embedding else None,
    )


def _scored_to_record(result: ScoredResult) -> Record:
    return {
        "item": to_record(result.item),
        "score": result.score,
        "rank": result.rank,
        "source": result.source,
    }


def _scored_from_record(data: Record) -> ScoredResult:
    item = from_record(data["item"])
    if not isinstance(item, (Chunk, Document)):
        raise InvalidInputError(f"ScoredResult item must be a chunk or document, got {type(item).__name__}")
    return ScoredResult(
        item=item,
        score=float(data["score"]),
        rank=int(data.get("rank", 0)),
        source=data.get("source", ""),
    )


def _message_to_record(msg: Message) -> Record:
    return {
        "role": msg.role.value,
        "content": msg.content,
        "tool_calls": [
            {"call_id": tc.call_id, "name": tc.name, "arguments": tc.arguments}
            for tc in msg.tool_calls
        ],
        "tool_call_id": msg.tool_call_id,
        "name": msg.name,
        "partial": msg.partial,
        "metadata": dict(msg.metadata),
    }


def _message_from_record(data: Record) -> Message:
    return Message(
        role=data["role"],
        content=data.get("content", ""),
        tool_calls=tuple(
            ToolCall(name=tc["name"], arguments=tc.get("arguments") or {}, call_id=tc["call_id"])
            for tc in data.get("tool_calls") or []
        ),
        tool_call_id=data.get("tool_call_id"),
        name=data.get("name"),
        partial=bool(data.get("partial", False)),
        metadata=dict(data.get("metadata") or {}),
    )


def _node_to_record(node: Node) -> Record:
    return {"node_id": node.node_id, "kind": node.kind, "properties": dict(node.properties)}


def _node_from_record(data: Record) -> Node:
    return Node(node_id=data["node_id"], kind=data["kind"], properties=dict(data.get("properties") or {}))


def _edge_to_record(edge: Edge) -> Record:
    return {
        "source_id": edge.source_id,
        "target_id": edge.target_id,
        "kind": edge.kind,
        "properties": dict(edge.properties),
    }


def _edge_from_record(data: Record) -> Edge:
    return Edge(
        source_id=data["source_id"],
        target_id=data["target_id"],
        kind=data["kind"],
        properties=dict(data.get("properties") or {}),
    )


def _graph_document_to_record(graph_document: GraphDocument) -> Record:
    return {
        "nodes": [_node_to_record(n) for n in graph_document.nodes],
        "edges": [_edge_to_record(e) for e in graph_document.edges],
        "source": None if graph_document.source is None else _document_to_record(graph_document.source),
    }


def _graph_document_from_record(data: Record) -> GraphDocument:
    source = data.get("source")
    return GraphDocument(
        nodes=tuple(_node_from_record(n) for n in data.get("nodes") or []),
        edges=tuple(_edge_from_record(e) for e in data.get("edges") or []),
        source=None if source is None else _document_from_record(source),
    )


_ENCODERS: dict[type, tuple[str, Callable[[Any], Record]]] = {
    Document: ("document", _document_to_record),
    Chunk: ("chunk", _chunk_to_record),
    Embedding: ("embedding", _embedding_to_record),
    ScoredResult: ("scored_result", _scored_to_record),
    Message: ("message", _message_to_record),
    Node: ("node", _node_to_record),
    Edge: ("edge", _edge_to_record),
    GraphDocument: ("graph_document", _graph_document_to_record),
}

_DECODERS: dict[str, Callable[[Record], Any]] = {
    "document": _document_from_record,
    "chunk": _chunk_from_record,
    "embedding": _embedding_from_record,
    "scored_result": _scored_from_record,
    "message": _message_from_record,
    "node": _node_from_record,
    "edge": _edge_from_record,
    "graph_document": _graph_document_from_record,
}


def to_record(obj: Any) -> Record:
    """Serialize a record object into a tagged, JSON-compatible dict."""
    entry = _ENCODERS.get(type(obj))
    if entry is None:
        raise InvalidInputError(f"Cannot serialize object of type {type(obj).__name__}")
    tag, encode = entry
    return {"type": tag, **encode(obj)}


def from_record(data: Record) -> Any:
    """Rebuild a record object from a dict produced by ``to_record``."""
    tag = data.get("type")
    decode = _DECODERS.get(tag) if isinstance(tag, str) else None
    if decode is None:
        raise InvalidInputError(f"Unknown record type: {tag!r}")
    try:
        return decode(data)
    except KeyError as e:
        raise InvalidInputError(f"Record of type '{tag}' is missing field {e}") from e


def dumps(obj: Any) -> str:
    """JSON-encode a record object or a list of record objects."""
    if isinstance(obj, (list, tuple)):
        return json.dumps([to_record(o) for o in obj])
    return json.dumps(to_record(obj))


def loads(raw: str) -> Any:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise InvalidInputError(f"Invalid record JSON: {e}") from e
    if isinstance(data, list):
        return [from_record(d) for d in data]
    return from_record(data)
