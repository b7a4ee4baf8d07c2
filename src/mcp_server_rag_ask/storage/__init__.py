"""Storage backends: answer cache, usage counters and the anonymous rate limiter."""

from .cache import CacheStore
from .ratelimit import RateLimitResult, SlidingWindowRateLimiter
from .usage import UsageStore

__all__ = [
    "CacheStore",
    "RateLimitResult",
    "SlidingWindowRateLimiter",
    "UsageStore",
]
