"""JSON key-value store with per-key staleness checks."""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any, Callable

import aiosqlite

if TYPE_CHECKING:
    from optiondesk.data.database import Database

logger = logging.getLogger(__name__)


class KeyValueStore:
    """Persist JSON-serialisable values under named keys.

    Storage and decode failures are logged and reported as "no data";
    they never propagate to the caller.

    Parameters
    ----------
    db:
        Connected database holding the ``kv_store`` table.
    clock:
        Returns the current time in epoch seconds. Injected by tests.
    """

    def __init__(
        self,
        db: "Database",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._db = db
        self._clock = clock

    async def save(self, key: str, value: Any) -> bool:
        """Store *value* under *key*. Returns False if it could not be written."""
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError):
            logger.warning("Value for %s is not JSON serialisable", key)
            return False

        try:
            await self._db.write(
                """
                INSERT INTO kv_store (key, value, saved_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key)
                DO UPDATE SET value=excluded.value, saved_at=excluded.saved_at
                """,
                (key, payload, self._clock()),
            )
        except aiosqlite.Error:
            logger.exception("Failed to save %s", key)
            return False

        logger.debug("Saved %s (%d bytes)", key, len(payload))
        return True

    async def load(self, key: str, ttl: float | None = None) -> Any | None:
        """Return the value stored under *key*, or ``None``.

        When *ttl* (seconds) is given and the entry is at least that old,
        the entry is deleted and ``None`` is returned.
        """
        try:
            row = await self._db.fetchone(
                "SELECT value, saved_at FROM kv_store WHERE key = ?", (key,)
            )
        except aiosqlite.Error:
            logger.exception("Failed to load %s", key)
            return None

        if row is None:
            return None

        payload, saved_at = row[0], row[1]
        if ttl is not None and self._clock() - saved_at >= ttl:
            logger.info("Discarding stale %s (age %.0fs)", key, self._clock() - saved_at)
            await self.delete(key)
            return None

        try:
            return json.loads(payload)
        except json.JSONDecodeError:
            logger.warning("Corrupt JSON stored under %s, ignoring", key)
            return None

    async def delete(self, key: str) -> None:
        """Remove *key* if present."""
        try:
            await self._db.write("DELETE FROM kv_store WHERE key = ?", (key,))
        except aiosqlite.Error:
            logger.exception("Failed to delete %s", key)

    async def keys(self) -> list[str]:
        """List stored keys in alphabetical order."""
        try:
            rows = await self._db.fetchall("SELECT key FROM kv_store ORDER BY key")
        except aiosqlite.Error:
            logger.exception("Failed to list keys")
            return []
        return [row[0] for row in rows]
