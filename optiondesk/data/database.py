"""Async SQLite access for the key-value store."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Iterable

import aiosqlite

logger = logging.getLogger(__name__)

Params = Iterable[Any]


class Database:
    """Single ``aiosqlite`` connection shared by every service.

    Pending-order executions, settlements and the broker snapshot all
    write from separate tasks on the same loop, so statement + commit
    pairs go through ``write`` which holds a lock for the pair.

    Usage::

        async with Database("data/optiondesk.db") as db:
            await db.write("DELETE FROM kv_store WHERE key = ?", ("daily_stats",))
            row = await db.fetchone("SELECT value FROM kv_store WHERE key = ?", ("risk_settings",))
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._conn: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    @property
    def path(self) -> str:
        return self._db_path

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    @property
    def connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    async def connect(self) -> None:
        """Open the connection in WAL mode, creating the parent directory."""
        if self._conn is not None:
            return
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self._db_path)
        await self._conn.execute("PRAGMA journal_mode=WAL")
        logger.info("Opened store database %s", self._db_path)

    async def disconnect(self) -> None:
        if self._conn is None:
            return
        await self._conn.close()
        self._conn = None
        logger.info("Closed store database %s", self._db_path)

    async def write(self, sql: str, params: Params = ()) -> int:
        """Execute one statement and commit it. Returns the affected row count."""
        async with self._write_lock:
            cursor = await self.connection.execute(sql, tuple(params))
            await self.connection.commit()
            return cursor.rowcount

    async def fetchone(self, sql: str, params: Params = ()) -> tuple | None:
        cursor = await self.connection.execute(sql, tuple(params))
        row = await cursor.fetchone()
        return tuple(row) if row is not None else None

    async def fetchall(self, sql: str, params: Params = ()) -> list[tuple]:
        cursor = await self.connection.execute(sql, tuple(params))
        return [tuple(row) for row in await cursor.fetchall()]

    async def __aenter__(self) -> "Database":
        await self.connect()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.disconnect()
