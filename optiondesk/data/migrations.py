"""SQLite schema creation and migrations."""

from __future__ import annotations

from pathlib import Path

import aiosqlite

SCHEMA_VERSION = 1

TABLES: list[str] = [
    """
    CREATE TABLE IF NOT EXISTS kv_store (
        key         TEXT    PRIMARY KEY,
        value       TEXT    NOT NULL,
        saved_at    REAL    NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS schema_version (
        version     INTEGER NOT NULL
    )
    """,
]

INDEXES: list[str] = [
    "CREATE INDEX IF NOT EXISTS idx_kv_store_saved_at ON kv_store(saved_at)",
]


async def run_migrations(db_path: str) -> None:
    """Create all tables and indexes if they don't exist."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    async with aiosqlite.connect(db_path) as db:
        for ddl in TABLES:
            await db.execute(ddl)
        for idx in INDEXES:
            await db.execute(idx)
        cursor = await db.execute("SELECT COUNT(*) FROM schema_version")
        (count,) = await cursor.fetchone()
        if count == 0:
            await db.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
            )
        await db.commit()
