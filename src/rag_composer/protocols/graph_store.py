"""Protocol for graph stores."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from rag_composer.models.domain import Edge, Node
from rag_composer.models.schemas import GraphQuery
from rag_composer.runtime.context import ExecutionContext


@runtime_checkable
class GraphStore(Protocol):
    async def upsert_nodes(self, nodes: list[Node], ctx: ExecutionContext) -> None: ...

    async def upsert_edges(self, edges: list[Edge], ctx: ExecutionContext) -> None: ...

    async def query(self, spec: GraphQuery, ctx: ExecutionContext) -> list[Node | Edge]: ...
