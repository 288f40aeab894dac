"""SQLite-backed conversation memory."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone

import aiosqlite

from rag_composer.exceptions import ResourceIOError
from rag_composer.models.domain import Message
from rag_composer.models.serialization import dumps, loads
from rag_composer.observability.logger import get_logger
from rag_composer.runtime.context import ExecutionContext
from rag_composer.storage.migrations import initialize_memory_db

logger = get_logger("sqlite_memory")


class SQLiteMemory:
    """Messages stored as serialized records, one row per message, in insertion order."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    async def initialize(self) -> None:
        try:
            await initialize_memory_db(self._db_path)
        except sqlite3.Error as e:
            raise ResourceIOError(f"Cannot initialize memory db at {self._db_path}", cause=e) from e

    async def load(self, session_key: str, ctx: ExecutionContext) -> list[Message]:
        try:
            async with aiosqlite.connect(self._db_path) as db:
                async with db.execute(
                    "SELECT record FROM messages WHERE session_key = ? ORDER BY seq",
                    (session_key,),
                ) as cursor:
                    rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise ResourceIOError(f"Memory read failed: {e}", cause=e) from e
        return [loads(row[0]) for row in rows]

    async def save(self, session_key: str, messages: list[Message], ctx: ExecutionContext) -> None:
        if not messages:
            return
        now = datetime.now(timezone.utc).isoformat()
        try:
            async with aiosqlite.connect(self._db_path) as db:
                await db.executemany(
                    "INSERT INTO messages (session_key, record, created_at) VALUES (?, ?, ?)",
                    [(session_key, dumps(m), now) for m in messages],
                )
                await db.commit()
        except sqlite3.Error as e:
            raise ResourceIOError(f"Memory write failed: {e}", cause=e) from e
        logger.debug("messages_saved", session_key=session_key, count=len(messages))

    async def clear(self, session_key: str, ctx: ExecutionContext) -> None:
        try:
            async with aiosqlite.connect(self._db_path) as db:
                await db.execute("DELETE FROM messages WHERE session_key = ?", (session_key,))
                await db.commit()
        except sqlite3.Error as e:
            raise ResourceIOError(f"Memory clear failed: {e}", cause=e) from e
