"""Protocol for document loaders."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from rag_composer.models.domain import Document
from rag_composer.models.schemas import SourceDescriptor
from rag_composer.runtime.context import ExecutionContext


@runtime_checkable
class Loader(Protocol):
    async def load(self, source: SourceDescriptor, ctx: ExecutionContext) -> list[Document]:
        """Read every document the source describes. Raises NotFound / IO envelopes."""
        ...
