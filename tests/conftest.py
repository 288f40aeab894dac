"""Shared test fixtures."""

from __future__ import annotations

import tempfile
from pathlib import Path

import pytest

from rag_composer.config.settings import Settings
from rag_composer.models.domain import Chunk, Document
from rag_composer.runtime.context import ExecutionContext


@pytest.fixture
def settings():
    """Test settings with temp paths."""
    tmp = tempfile.mkdtemp()
    return Settings(
        embedding_cache_db_path=str(Path(tmp) / "cache.db"),
        memory_db_path=str(Path(tmp) / "memory.db"),
        retry_initial_delay_s=0.0,
        retry_jitter=0.0,
    )


@pytest.fixture
def ctx():
    return ExecutionContext()


@pytest.fixture
def sample_document():
    return Document(
        content="First paragraph about the sky.\n\nSecond paragraph about the sea.\n\nThird paragraph about the land.",
        metadata={"title": "Test Document"},
        source="test.txt",
    )


@pytest.fixture
def sample_chunks(sample_document):
    return [
        Chunk(
            content=f"This is sample chunk number {i} about topic {i}.",
            doc_id=sample_document.doc_id,
            index=i,
            metadata={"heading_path": "Section"},
        )
        for i in range(5)
    ]


@pytest.fixture
def tmp_dir():
    return tempfile.mkdtemp()
