"""Fan-out: one input feeds several branches concurrently, outputs are merged."""

from __future__ import annotations

import asyncio
import inspect
from enum import Enum
from typing import Any, Callable, Mapping, Sequence

from rag_composer.exceptions import CompositionError, RAGComposerError
from rag_composer.observability.logger import get_logger
from rag_composer.runnables.base import Runnable, coerce_to_runnable
from rag_composer.runtime.context import ExecutionContext, settle

logger = get_logger("parallel")


class MergePolicy(str, Enum):
    FAIL_ALL = "fail_all"
    PROCEED_WITH_SUCCESSES = "proceed_with_successes"


MergeFn = Callable[[dict[str, Any]], Any]


class RunnableParallel(Runnable[Any, Any]):
    """Run every branch on the same input and merge their outputs.

    ``merge`` receives ``{branch_name: output}`` in branch order. ``policy``
    decides what a failed branch does:

    * ``FAIL_ALL``: siblings are cancelled and awaited, then the originating
      error is raised.
    * ``PROCEED_WITH_SUCCESSES``: failed branches are left out of the merge.
      If every branch fails, the first failure in branch order is raised.

    The merge never runs until every branch has finished or been cancelled.
    """

    def __init__(
        self,
        branches: Mapping[str, Any] | Sequence[Any],
        *,
        merge: MergeFn,
        policy: MergePolicy,
        name: str | None = None,
    ) -> None:
        if not isinstance(policy, MergePolicy):
            raise CompositionError(f"policy must be a MergePolicy, got {policy!r}")
        if not callable(merge):
            raise CompositionError("merge must be callable")

        if isinstance(branches, Mapping):
            named = {str(k): coerce_to_runnable(v) for k, v in branches.items()}
        else:
            named = {}
            for branch in branches:
                runnable = coerce_to_runnable(branch)
                if runnable.label in named:
                    raise CompositionError(f"Duplicate branch name '{runnable.label}'")
                named[runnable.label] = runnable
        if not named:
            raise CompositionError("A fan-out needs at least one branch")

        self.branches = named
        self.merge = merge
        self.policy = policy
        self.name = name

    @property
    def label(self) -> str:
        return self.name or "parallel(" + ", ".join(self.branches) + ")"

    async def _call(self, input: Any, ctx: ExecutionContext) -> Any:
        scope = ctx.child()
        tasks = {
            name: asyncio.ensure_future(branch._run(input, scope))
            for name, branch in self.branches.items()
        }
        try:
            if self.policy is MergePolicy.FAIL_ALL:
                await self._wait_fail_all(tasks, scope)
            else:
                await asyncio.wait(tasks.values())
        finally:
            await settle(tasks.values())

        ctx.raise_if_cancelled()

        outputs: dict[str, Any] = {}
        failures: dict[str, RAGComposerError] = {}
        for name, task in tasks.items():
            error = task.exception()
            if error is None:
                outputs[name] = task.result()
            elif isinstance(error, RAGComposerError):
                failures[name] = error
            else:
                raise error

        if failures:
            for name, error in failures.items():
                logger.warning("branch_failed", node=self.label, branch=name, kind=error.kind.value)
            if not outputs:
                raise next(iter(failures.values()))

        logger.debug(
            "fan_out_completed",
            node=self.label,
            succeeded=len(outputs),
            failed=len(failures),
        )
        merged = self.merge(outputs)
        if inspect.isawaitable(merged):
            merged = await merged
        return merged

    async def _wait_fail_all(
        self, tasks: dict[str, asyncio.Task], scope: ExecutionContext
    ) -> None:
        pending = set(tasks.values())
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_EXCEPTION)
            failed = [t for t in tasks.values() if t in done and t.exception() is not None]
            if failed:
                error = failed[0].exception()
                scope.cancel(f"branch failed in {self.label}")
                if pending:
                    await asyncio.wait(pending)
                raise error
