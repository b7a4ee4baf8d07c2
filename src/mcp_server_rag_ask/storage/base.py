"""Shared SQLite plumbing for the storage backends."""

import asyncio
from pathlib import Path

import aiosqlite


class SQLiteStore:
    """Async SQLite store with lazy, race-free schema creation.

    Each operation opens its own connection, so one instance can be shared by
    any number of concurrent requests.
    """

    schema: tuple[str, ...] = ()

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._initialized = False
        self._init_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Create schema if not exists."""
        if self._initialized:
            return

        # Concurrent callers can race and lock the DB on PRAGMAs/DDL.
        async with self._init_lock:
            if self._initialized:
                return

            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("PRAGMA journal_mode = WAL")
                await db.execute("PRAGMA busy_timeout = 5000")
                for statement in self.schema:
                    await db.execute(statement)
                await db.commit()

            self._initialized = True

    def _connect(self) -> aiosqlite.Connection:
        return aiosqlite.connect(self.db_path, timeout=5.0)
