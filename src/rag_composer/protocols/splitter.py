"""Protocol for text splitting."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from rag_composer.models.domain import Chunk, Document
from rag_composer.runtime.context import ExecutionContext


@runtime_checkable
class Splitter(Protocol):
    async def split(self, document: Document, ctx: ExecutionContext) -> list[Chunk]: ...
