"""Sliding-window rate limiter for anonymous callers."""

import time
from dataclasses import dataclass

from ..exceptions import RateLimitExceeded
from .base import SQLiteStore


@dataclass
class RateLimitResult:
    """Outcome of one quota check."""

    success: bool
    limit: int
    remaining: int
    reset: float  # unix time at which the oldest counted request leaves the window


class SlidingWindowRateLimiter(SQLiteStore):
    """Allows `max_requests` per trailing `window_seconds` for each identifier.

    Every admitted call is logged with its timestamp; a call is admitted only if
    fewer than `max_requests` logged calls fall inside the window. The check and
    the insert run in one write transaction, so concurrent callers cannot both
    take the last slot. Denied calls are not logged.
    """

    schema = (
        """
        CREATE TABLE IF NOT EXISTS rate_limit_hits (
            bucket TEXT NOT NULL,
            ts REAL NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_rate_limit_bucket ON rate_limit_hits(bucket, ts)",
    )

    def __init__(self, db_path, max_requests: int = 3, window_seconds: int = 86400, prefix: str = "ratelimit"):
        super().__init__(db_path)
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.prefix = prefix

    def _bucket(self, identifier: str) -> str:
        return f"{self.prefix}:{identifier}"

    async def limit(self, identifier: str, now: float | None = None) -> RateLimitResult:
        """Consume one unit of quota for `identifier` if any is left."""
        await self.initialize()

        now = time.time() if now is None else now
        bucket = self._bucket(identifier)
        window_start = now - self.window_seconds

        async with self._connect() as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                await db.execute("DELETE FROM rate_limit_hits WHERE bucket = ? AND ts <= ?", (bucket, window_start))
                async with db.execute(
                    "SELECT COUNT(*), MIN(ts) FROM rate_limit_hits WHERE bucket = ?",
                    (bucket,),
                ) as cursor:
                    count, oldest = await cursor.fetchone()

                success = count < self.max_requests
                if success:
                    await db.execute("INSERT INTO rate_limit_hits (bucket, ts) VALUES (?, ?)", (bucket, now))
                    count += 1
                    if oldest is None:
                        oldest = now
                await db.commit()
            except BaseException:
                await db.rollback()
                raise

        return RateLimitResult(
            success=success,
            limit=self.max_requests,
            remaining=max(0, self.max_requests - count),
            reset=oldest + self.window_seconds,
        )

    async def reset(self, identifier: str) -> None:
        """Forget every logged call for `identifier`."""
        await self.initialize()

        async with self._connect() as db:
            await db.execute("DELETE FROM rate_limit_hits WHERE bucket = ?", (self._bucket(identifier),))
            await db.commit()

    async def enforce(self, identifier: str) -> RateLimitResult:
        """Like `limit`, but raise when the quota is exhausted.

        Raises:
            RateLimitExceeded: If `identifier` has no quota left in the window.
        """
        result = await self.limit(identifier)
        if not result.success:
            raise RateLimitExceeded(identifier, result.limit, result.remaining, result.reset)
        return result
