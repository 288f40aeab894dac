"""Protocol for turning documents into graph entities."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from rag_composer.models.domain import Document, GraphDocument
from rag_composer.runtime.context import ExecutionContext


@runtime_checkable
class GraphTransformer(Protocol):
    async def to_graph_documents(
        self, documents: list[Document], ctx: ExecutionContext
    ) -> list[GraphDocument]: ...
