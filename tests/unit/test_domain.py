"""Tests for the record types."""

from dataclasses import FrozenInstanceError

import pytest

from rag_composer.exceptions import InvalidInputError
from rag_composer.models.domain import (
    Chunk,
    Document,
    Embedding,
    Message,
    Role,
    ToolCall,
    merge_message_chunks,
    ordered_chunks,
)


def test_document_is_immutable(sample_document):
    with pytest.raises(FrozenInstanceError):
        sample_document.content = "changed"


def test_document_rejects_nested_metadata():
    with pytest.raises(InvalidInputError):
        Document(content="x", metadata={"tags": ["a", "b"]})


def test_binary_document():
    doc = Document(content=b"\x00\x01")
    assert doc.is_binary


def test_embedding_dimension_tag_must_match():
    with pytest.raises(InvalidInputError):
        Embedding(values=(1.0, 2.0), dimensions=3)


def test_embedding_from_values():
    emb = Embedding.from_values([1, 2, 3])
    assert emb.dimensions == 3
    assert emb.values == (1.0, 2.0, 3.0)


def test_with_embedding_returns_new_chunk(sample_chunks):
    chunk = sample_chunks[0]
    embedded = chunk.with_embedding(Embedding.from_values([0.1, 0.2]))
    assert chunk.embedding is None
    assert embedded.embedding.ref_id == chunk.chunk_id
    assert embedded.chunk_id == chunk.chunk_id


def test_negative_chunk_index_rejected():
    with pytest.raises(InvalidInputError):
        Chunk(content="x", doc_id="d", index=-1)


def test_ordered_chunks_reconstructs_order(sample_chunks):
    shuffled = [sample_chunks[3], sample_chunks[0], sample_chunks[4], sample_chunks[1], sample_chunks[2]]
    other = Chunk(content="other doc", doc_id="other", index=0)
    result = ordered_chunks([*shuffled, other], sample_chunks[0].doc_id)
    assert [c.index for c in result] == [0, 1, 2, 3, 4]


def test_message_role_coercion():
    assert Message(role="assistant", content="hi").role is Role.ASSISTANT
    with pytest.raises(InvalidInputError):
        Message(role="robot", content="hi")


def test_merge_message_chunks():
    call = ToolCall(name="search", arguments={"query": "sky"})
    parts = [
        Message(role=Role.ASSISTANT, content="The", partial=True),
        Message(role=Role.ASSISTANT, content=" sky", partial=True),
        Message(role=Role.ASSISTANT, content="", tool_calls=(call,), partial=True),
    ]
    merged = merge_message_chunks(parts)
    assert merged.content == "The sky"
    assert merged.tool_calls == (call,)
    assert merged.partial is False


def test_merge_empty_stream_rejected():
    with pytest.raises(InvalidInputError):
        merge_message_chunks([])
