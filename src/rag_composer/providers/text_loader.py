"""Loader for plain-text and markdown files on the local filesystem."""

from __future__ import annotations

import asyncio
import re
from pathlib import Path

from charset_normalizer import from_path

from rag_composer.exceptions import InvalidInputError, NotFoundError, ResourceIOError
from rag_composer.models.domain import Document
from rag_composer.models.schemas import SourceDescriptor
from rag_composer.observability.logger import get_logger
from rag_composer.runtime.context import ExecutionContext

logger = get_logger("text_loader")

SUPPORTED_EXTENSIONS = (".txt", ".md", ".markdown")

_FRONT_MATTER = re.compile(r"^---\s*\n(.*?)\n---\s*\n", re.DOTALL)
_TITLE = re.compile(r"^#\s+(.+)$", re.MULTILINE)


def _front_matter(text: str) -> tuple[str, dict[str, str]]:
    """Strip a front matter block, keeping its simple ``key: value`` lines as metadata."""
    match = _FRONT_MATTER.match(text)
    if not match:
        return text, {}
    fields: dict[str, str] = {}
    for line in match.group(1).splitlines():
        key, sep, value = line.partition(":")
        if sep and key.strip() and not key.startswith((" ", "\t", "-")):
            fields[key.strip()] = value.strip().strip("\"'")
    return text[match.end() :], fields


class TextFileLoader:
    """Reads one file, or every supported file under a directory.

    Source options: ``pattern`` (glob, default ``*``) and ``recursive``
    (default ``False``) when the URI is a directory.
    """

    def __init__(self, extensions: tuple[str, ...] = SUPPORTED_EXTENSIONS) -> None:
        self._extensions = tuple(e.lower() for e in extensions)

    def _paths(self, source: SourceDescriptor) -> list[Path]:
        path = Path(source.uri)
        if not path.exists():
            raise NotFoundError(f"Source not found: {source.uri}")
        if path.is_file():
            if path.suffix.lower() not in self._extensions:
                raise InvalidInputError(
                    f"Unsupported file type '{path.suffix}'. Supported: {list(self._extensions)}"
                )
            return [path]
        pattern = source.options.get("pattern", "*")
        matches = path.rglob(pattern) if source.options.get("recursive") else path.glob(pattern)
        return sorted(
            p for p in matches if p.is_file() and p.suffix.lower() in self._extensions
        )

    def _read(self, path: Path) -> Document:
        try:
            best = from_path(path).best()
            text = str(best) if best else path.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise InvalidInputError(f"Cannot decode {path}: {e}", cause=e) from e
        except OSError as e:
            raise ResourceIOError(f"Cannot read {path}: {e}", cause=e) from e

        metadata: dict[str, str | int | float | bool] = {
            "source": str(path),
            "encoding": str(best.encoding) if best else "utf-8",
        }
        if path.suffix.lower() in (".md", ".markdown"):
            text, fields = _front_matter(text)
            metadata.update(fields)
            title = _TITLE.search(text)
            if title and "title" not in metadata:
                metadata["title"] = title.group(1).strip()
        return Document(content=text, metadata=metadata, source=str(path))

    async def load(self, source: SourceDescriptor, ctx: ExecutionContext) -> list[Document]:
        paths = self._paths(source)
        documents = []
        for path in paths:
            ctx.raise_if_cancelled()
            documents.append(await asyncio.to_thread(self._read, path))
        logger.info("loaded", source=source.uri, documents=len(documents))
        return documents
