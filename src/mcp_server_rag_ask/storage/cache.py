"""SQLite-backed response cache keyed by normalized query text."""

import json
import logging
import time

import aiosqlite

from ..models import CachedResult
from .base import SQLiteStore

logger = logging.getLogger(__name__)


class CacheStore(SQLiteStore):
    """Maps a trimmed query to the last complete result bundle computed for it.

    Writes replace the whole bundle (last write wins). Entries never change in
    place and only expire when a TTL is configured.
    """

    schema = (
        """
        CREATE TABLE IF NOT EXISTS answer_cache (
            query TEXT PRIMARY KEY,
            payload TEXT NOT NULL,
            created_at REAL NOT NULL
        )
        """,
    )

    def __init__(self, db_path, ttl_seconds: int | None = None):
        super().__init__(db_path)
        self.ttl_seconds = ttl_seconds

    async def get(self, key: str) -> CachedResult | None:
        """Return the cached bundle for `key`, or None on miss or expiry."""
        await self.initialize()

        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            async with db.execute("SELECT payload, created_at FROM answer_cache WHERE query = ?", (key,)) as cursor:
                row = await cursor.fetchone()

        if row is None:
            return None
        if self.ttl_seconds is not None and time.time() - row["created_at"] > self.ttl_seconds:
            return None

        try:
            return CachedResult.model_validate(json.loads(row["payload"]))
        except ValueError as e:
            logger.warning(f"Discarding unreadable cache entry for '{key}': {e}")
            return None

    async def set(self, key: str, value: CachedResult) -> None:
        """Store `value` under `key`, overwriting any previous bundle."""
        await self.initialize()

        async with self._connect() as db:
            await db.execute(
                """
                INSERT INTO answer_cache (query, payload, created_at) VALUES (?, ?, ?)
                ON CONFLICT(query) DO UPDATE SET payload = excluded.payload, created_at = excluded.created_at
            """,
                (key, value.model_dump_json(), time.time()),
            )
            await db.commit()

    async def clear(self) -> int:
        """Delete every entry. Returns count deleted."""
        await self.initialize()

        async with self._connect() as db:
            cursor = await db.execute("DELETE FROM answer_cache")
            await db.commit()
            return cursor.rowcount
