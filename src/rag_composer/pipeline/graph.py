"""Directed acyclic pipeline graphs.

Nodes are named runnables; edges carry a node's output to its successors.
Cycles are rejected when the edge that would close them is added.
"""

from __future__ import annotations

import asyncio
from typing import Any

from rag_composer.exceptions import CompositionError
from rag_composer.observability.logger import get_logger
from rag_composer.runnables.base import Runnable, coerce_to_runnable
from rag_composer.runtime.context import ExecutionContext, settle

logger = get_logger("graph")


class PipelineGraph:
    """Builder for a DAG of runnables.

    Input routing at execution time:

    * a root node (no predecessors) receives the pipeline input
    * a node with one predecessor receives that predecessor's output
    * a node with several receives ``{predecessor_name: output}``
    """

    def __init__(self) -> None:
        self._nodes: dict[str, Runnable] = {}
        self._successors: dict[str, list[str]] = {}
        self._predecessors: dict[str, list[str]] = {}

    @property
    def nodes(self) -> list[str]:
        return list(self._nodes)

    @property
    def edges(self) -> list[tuple[str, str]]:
        return [(src, dst) for src, dsts in self._successors.items() for dst in dsts]

    def add_node(self, name: str, runnable: Any) -> PipelineGraph:
        if not name:
            raise CompositionError("Node name must be non-empty")
        if name in self._nodes:
            raise CompositionError(f"Node '{name}' already exists")
        self._nodes[name] = coerce_to_runnable(runnable)
        self._successors[name] = []
        self._predecessors[name] = []
        return self

    def add_edge(self, source: str, target: str) -> PipelineGraph:
        for node in (source, target):
            if node not in self._nodes:
                raise CompositionError(f"Unknown node '{node}'")
        if source == target:
            raise CompositionError(f"Edge '{source}' -> '{target}' is a self-loop")
        if target in self._successors[source]:
            raise CompositionError(f"Edge '{source}' -> '{target}' already exists")
        if self._reachable(target, source):
            raise CompositionError(f"Edge '{source}' -> '{target}' would create a cycle")
        self._successors[source].append(target)
        self._predecessors[target].append(source)
        return self

    def _reachable(self, start: str, goal: str) -> bool:
        stack = [start]
        seen: set[str] = set()
        while stack:
            node = stack.pop()
            if node == goal:
                return True
            if node in seen:
                continue
            seen.add(node)
            stack.extend(self._successors[node])
        return False

    def sinks(self) -> list[str]:
        return [n for n, succ in self._successors.items() if not succ]

    def compile(self, output: str | None = None, *, name: str | None = None) -> CompiledGraph:
        if not self._nodes:
            raise CompositionError("Cannot compile an empty graph")
        if output is None:
            sinks = self.sinks()
            if len(sinks) != 1:
                raise CompositionError(
                    f"Graph has {len(sinks)} sink nodes {sinks}; pass output= to pick one"
                )
            output = sinks[0]
        elif output not in self._nodes:
            raise CompositionError(f"Unknown output node '{output}'")
        return CompiledGraph(
            nodes=dict(self._nodes),
            successors={k: list(v) for k, v in self._successors.items()},
            predecessors={k: list(v) for k, v in self._predecessors.items()},
            output=output,
            name=name,
        )


class CompiledGraph(Runnable[Any, Any]):
    """Executes a PipelineGraph. Nodes start as soon as their inputs are ready.

    The first node failure cancels every running node, waits for them and
    surfaces that failure.
    """

    def __init__(
        self,
        *,
        nodes: dict[str, Runnable],
        successors: dict[str, list[str]],
        predecessors: dict[str, list[str]],
        output: str,
        name: str | None = None,
    ) -> None:
        self._nodes = nodes
        self._successors = successors
        self._predecessors = predecessors
        self.output = output
        self.name = name or f"graph({output})"

    def _node_input(self, node: str, pipeline_input: Any, results: dict[str, Any]) -> Any:
        preds = self._predecessors[node]
        if not preds:
            return pipeline_input
        if len(preds) == 1:
            return results[preds[0]]
        return {p: results[p] for p in preds}

    async def _call(self, input: Any, ctx: ExecutionContext) -> Any:
        scope = ctx.child()
        waiting = {n: len(p) for n, p in self._predecessors.items()}
        ready = [n for n, count in waiting.items() if count == 0]
        results: dict[str, Any] = {}
        running: dict[asyncio.Task, str] = {}

        try:
            while ready or running:
                for node in ready:
                    task = asyncio.ensure_future(
                        self._nodes[node]._run(self._node_input(node, input, results), scope)
                    )
                    running[task] = node
                ready = []

                done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
                order = list(self._nodes)
                finished = sorted(done, key=lambda t: order.index(running[t]))
                failed = [t for t in finished if t.exception() is not None]
                if failed:
                    node = running[failed[0]]
                    logger.warning(
                        "graph_node_failed", graph=self.label, node=node, failed=len(failed)
                    )
                    scope.cancel(f"node '{node}' failed")
                    raise failed[0].exception()
                for task in finished:
                    node = running.pop(task)
                    results[node] = task.result()
                    for succ in self._successors[node]:
                        waiting[succ] -= 1
                        if waiting[succ] == 0:
                            ready.append(succ)
        finally:
            await settle(running)

        return results[self.output]
