"""Per-user usage counters."""

from .base import SQLiteStore


class UsageStore(SQLiteStore):
    """Monotonic count of answered queries per signed-in user."""

    schema = (
        """
        CREATE TABLE IF NOT EXISTS search_counts (
            user_id TEXT PRIMARY KEY,
            count INTEGER NOT NULL DEFAULT 0
        )
        """,
    )

    async def increment(self, user_id: str) -> int:
        """Atomically add one to the user's counter and return the new value."""
        await self.initialize()

        async with self._connect() as db:
            await db.execute(
                """
                INSERT INTO search_counts (user_id, count) VALUES (?, 1)
                ON CONFLICT(user_id) DO UPDATE SET count = count + 1
            """,
                (user_id,),
            )
            async with db.execute("SELECT count FROM search_counts WHERE user_id = ?", (user_id,)) as cursor:
                row = await cursor.fetchone()
            await db.commit()
            return row[0] if row else 0

    async def get(self, user_id: str) -> int:
        await self.initialize()

        async with self._connect() as db:
            async with db.execute("SELECT count FROM search_counts WHERE user_id = ?", (user_id,)) as cursor:
                row = await cursor.fetchone()
                return row[0] if row else 0
