"""Process-local property graph with breadth-first traversal."""

from __future__ import annotations

import asyncio
from collections import deque

from rag_composer.exceptions import ConflictError, NotFoundError
from rag_composer.models.domain import Edge, Node
from rag_composer.models.schemas import GraphQuery
from rag_composer.runtime.context import ExecutionContext


class InMemoryGraphStore:
    """Nodes keyed by id, edges keyed by ``(source, kind, target)``.

    Re-upserting a node replaces its properties; changing its kind is a
    Conflict. Edges must reference stored nodes.
    """

    def __init__(self) -> None:
        self._nodes: dict[str, Node] = {}
        self._edges: dict[str, Edge] = {}
        self._out: dict[str, list[str]] = {}
        self._in: dict[str, list[str]] = {}
        self._lock = asyncio.Lock()

    async def upsert_nodes(self, nodes: list[Node], ctx: ExecutionContext) -> None:
        async with self._lock:
            for node in nodes:
                current = self._nodes.get(node.node_id)
                if current is not None and current.kind != node.kind:
                    raise ConflictError(
                        f"Node '{node.node_id}' is a '{current.kind}', cannot store it as '{node.kind}'"
                    )
            for node in nodes:
                self._nodes[node.node_id] = node
                self._out.setdefault(node.node_id, [])
                self._in.setdefault(node.node_id, [])

    async def upsert_edges(self, edges: list[Edge], ctx: ExecutionContext) -> None:
        async with self._lock:
            for edge in edges:
                for endpoint in (edge.source_id, edge.target_id):
                    if endpoint not in self._nodes:
                        raise NotFoundError(f"Edge {edge.edge_id} references unknown node '{endpoint}'")
            for edge in edges:
                if edge.edge_id not in self._edges:
                    self._out[edge.source_id].append(edge.edge_id)
                    self._in[edge.target_id].append(edge.edge_id)
                self._edges[edge.edge_id] = edge

    async def query(self, spec: GraphQuery, ctx: ExecutionContext) -> list[Node | Edge]:
        missing = [i for i in spec.start_ids if i not in self._nodes]
        if missing:
            raise NotFoundError(f"Unknown start nodes: {missing}")

        kinds = set(spec.edge_kinds) if spec.edge_kinds is not None else None
        visited: dict[str, int] = {}
        found_nodes: list[Node] = []
        found_edges: list[Edge] = []
        queue: deque[tuple[str, int]] = deque()
        for node_id in spec.start_ids:
            if node_id not in visited:
                visited[node_id] = 0
                queue.append((node_id, 0))

        while queue:
            node_id, depth = queue.popleft()
            found_nodes.append(self._nodes[node_id])
            if spec.limit is not None and len(found_nodes) >= spec.limit:
                break
            if depth >= spec.max_depth:
                continue
            for edge in self._neighbours(node_id, spec.direction):
                if kinds is not None and edge.kind not in kinds:
                    continue
                if spec.include_edges and edge not in found_edges:
                    found_edges.append(edge)
                other = edge.target_id if edge.source_id == node_id else edge.source_id
                if other not in visited:
                    visited[other] = depth + 1
                    queue.append((other, depth + 1))

        return [*found_nodes, *found_edges]

    def _neighbours(self, node_id: str, direction: str) -> list[Edge]:
        edge_ids: list[str] = []
        if direction in ("out", "both"):
            edge_ids.extend(self._out[node_id])
        if direction in ("in", "both"):
            edge_ids.extend(self._in[node_id])
        return [self._edges[e] for e in edge_ids]
