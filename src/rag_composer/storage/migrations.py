"""Idempotent schema creation for the SQLite-backed reference providers."""

from __future__ import annotations

import aiosqlite

EMBEDDING_CACHE_TABLE = """
CREATE TABLE IF NOT EXISTS embedding_cache (
    namespace TEXT NOT NULL,
    text_hash TEXT NOT NULL,
    dimensions INTEGER NOT NULL,
    embedding TEXT NOT NULL,
    PRIMARY KEY (namespace, text_hash)
)
"""

MESSAGES_TABLE = """
CREATE TABLE IF NOT EXISTS messages (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    session_key TEXT NOT NULL,
    record TEXT NOT NULL,
    created_at TEXT NOT NULL
)
"""

MESSAGES_SESSION_INDEX = """
CREATE INDEX IF NOT EXISTS idx_messages_session ON messages(session_key, seq)
"""


async def initialize_cache_db(db_path: str) -> None:
    async with aiosqlite.connect(db_path) as db:
        await db.execute(EMBEDDING_CACHE_TABLE)
        await db.commit()


async def initialize_memory_db(db_path: str) -> None:
    async with aiosqlite.connect(db_path) as db:
        await db.execute(MESSAGES_TABLE)
        await db.execute(MESSAGES_SESSION_INDEX)
        await db.commit()
