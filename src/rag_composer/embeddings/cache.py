"""SQLite-backed embedding cache to avoid re-embedding identical text."""

from __future__ import annotations

import hashlib
import json
import sqlite3

import aiosqlite

from rag_composer.exceptions import ResourceIOError
from rag_composer.storage.migrations import initialize_cache_db


class EmbeddingCache:
    """Vectors keyed by ``(namespace, sha256(text))``.

    The namespace keeps vectors of different models apart; entries whose
    stored dimensionality differs from the requested one are treated as misses.
    """

    def __init__(self, db_path: str, namespace: str = "default") -> None:
        self._db_path = db_path
        self._namespace = namespace

    @property
    def namespace(self) -> str:
        return self._namespace

    async def initialize(self) -> None:
        try:
            await initialize_cache_db(self._db_path)
        except sqlite3.Error as e:
            raise ResourceIOError(f"Cannot initialize embedding cache at {self._db_path}", cause=e) from e

    async def get(self, text: str, dimensions: int) -> list[float] | None:
        found = await self.get_batch([text], dimensions)
        return found.get(0)

    async def get_batch(self, texts: list[str], dimensions: int) -> dict[int, list[float]]:
        """Return {index: embedding} for texts that are cached."""
        if not texts:
            return {}
        hash_to_indices: dict[str, list[int]] = {}
        for i, t in enumerate(texts):
            hash_to_indices.setdefault(self._hash(t), []).append(i)
        placeholders = ",".join("?" for _ in hash_to_indices)

        result: dict[int, list[float]] = {}
        try:
            async with aiosqlite.connect(self._db_path) as db:
                async with db.execute(
                    "SELECT text_hash, embedding FROM embedding_cache "
                    f"WHERE namespace = ? AND dimensions = ? AND text_hash IN ({placeholders})",
                    [self._namespace, dimensions, *hash_to_indices],
                ) as cursor:
                    async for row in cursor:
                        vector = json.loads(row[1])
                        for idx in hash_to_indices.get(row[0], []):
                            result[idx] = vector
        except sqlite3.Error as e:
            raise ResourceIOError(f"Embedding cache read failed: {e}", cause=e) from e
        return result

    async def put_batch(self, texts: list[str], embeddings: list[list[float]]) -> None:
        if not texts:
            return
        rows = [
            (self._namespace, self._hash(t), len(e), json.dumps([float(v) for v in e]))
            for t, e in zip(texts, embeddings)
        ]
        try:
            async with aiosqlite.connect(self._db_path) as db:
                await db.executemany(
                    "INSERT OR REPLACE INTO embedding_cache "
                    "(namespace, text_hash, dimensions, embedding) VALUES (?, ?, ?, ?)",
                    rows,
                )
                await db.commit()
        except sqlite3.Error as e:
            raise ResourceIOError(f"Embedding cache write failed: {e}", cause=e) from e

    async def put(self, text: str, embedding: list[float]) -> None:
        await self.put_batch([text], [embedding])

    @staticmethod
    def _hash(text: str) -> str:
        return hashlib.sha256(text.encode("utf-8")).hexdigest()
