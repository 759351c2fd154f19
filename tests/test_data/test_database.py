"""Tests for the async SQLite database connection."""

import asyncio

import pytest

from optiondesk.data.database import Database
from optiondesk.data.migrations import run_migrations


class TestDatabase:
    @pytest.mark.asyncio
    async def test_connect_and_disconnect(self, db_path):
        db = Database(db_path)
        await db.connect()
        assert db.is_connected
        assert db.path == db_path
        await db.disconnect()
        assert not db.is_connected

    def test_connection_property_raises_when_not_connected(self, db_path):
        db = Database(db_path)
        with pytest.raises(RuntimeError, match="not connected"):
            _ = db.connection

    @pytest.mark.asyncio
    async def test_context_manager_enables_wal(self, db_path):
        async with Database(db_path) as db:
            assert await db.fetchone("PRAGMA journal_mode") == ("wal",)

    @pytest.mark.asyncio
    async def test_creates_parent_directory(self, tmp_path):
        nested = str(tmp_path / "sub" / "dir" / "test.db")
        async with Database(nested) as db:
            assert db.is_connected

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self, db_path):
        db = Database(db_path)
        await db.connect()
        await db.disconnect()
        await db.disconnect()


class TestQueries:
    @pytest.mark.asyncio
    async def test_write_commits_and_counts(self, db):
        inserted = await db.write(
            "INSERT INTO kv_store (key, value, saved_at) VALUES (?, ?, ?)",
            ("pending_orders", "[]", 1.0),
        )
        assert inserted == 1

        assert await db.fetchall("SELECT key, value FROM kv_store") == [
            ("pending_orders", "[]")
        ]
        assert await db.fetchone("SELECT key FROM kv_store WHERE key = ?", ("x",)) is None

    @pytest.mark.asyncio
    async def test_concurrent_writes_all_land(self, db):
        await asyncio.gather(*(
            db.write(
                "INSERT INTO kv_store (key, value, saved_at) VALUES (?, ?, ?)",
                (f"k{i}", "1", float(i)),
            )
            for i in range(20)
        ))
        assert await db.fetchone("SELECT COUNT(*) FROM kv_store") == (20,)

    @pytest.mark.asyncio
    async def test_visible_to_second_connection(self, db_path):
        await run_migrations(db_path)
        async with Database(db_path) as first:
            await first.write(
                "INSERT INTO kv_store (key, value, saved_at) VALUES (?, ?, ?)",
                ("daily_stats", "{}", 1.0),
            )
        async with Database(db_path) as second:
            assert await second.fetchone("SELECT value FROM kv_store") == ("{}",)
