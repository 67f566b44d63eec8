"""Redis connection pool and the per-meeting pipeline run lock.

The pool is shared by the status change feed (Redis Streams) and the run
lock. RunLock uses SET NX EX with a random token so that only the holder
can release it, and an expired lock never blocks a meeting forever.
"""

from __future__ import annotations

import secrets

import redis.asyncio as aioredis
import structlog

from src.insights.config import get_settings

logger = structlog.get_logger(__name__)

# ── Module-level Redis pool (lazy init) ─────────────────────────────────────

_redis_pool: aioredis.Redis | None = None


def get_redis_pool() -> aioredis.Redis:
    """Get or create the Redis connection pool singleton."""
    global _redis_pool
    if _redis_pool is None:
        settings = get_settings()
        _redis_pool = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
        )
    return _redis_pool


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis_pool
    if _redis_pool:
        await _redis_pool.close()
        _redis_pool = None


# ── Run Lock ────────────────────────────────────────────────────────────────

# Delete the key only if it still holds our token.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class RunLock:
    """At-most-one active pipeline run per meeting.

    Args:
        redis: Async Redis client.
        ttl_seconds: Lock expiry, an upper bound for one run.
    """

    def __init__(self, redis: aioredis.Redis, ttl_seconds: int) -> None:
        self._redis = redis
        self._ttl = ttl_seconds
        self._tokens: dict[str, str] = {}

    @staticmethod
    def _key(meeting_id: str) -> str:
        return f"pipeline:lock:{meeting_id}"

    async def acquire(self, meeting_id: str) -> bool:
        """Try to take the lock for a meeting.

        Returns:
            True if acquired, False if another run holds it.
        """
        token = secrets.token_hex(16)
        acquired = await self._redis.set(
            self._key(meeting_id), token, nx=True, ex=self._ttl
        )
        if acquired:
            self._tokens[meeting_id] = token
            return True
        return False

    async def release(self, meeting_id: str) -> None:
        """Release the lock if this instance still holds it."""
        token = self._tokens.pop(meeting_id, None)
        if token is None:
            return
        try:
            await self._redis.eval(_RELEASE_SCRIPT, 1, self._key(meeting_id), token)
        except aioredis.RedisError:
            # The TTL reclaims it eventually.
            logger.warning("run_lock_release_failed", meeting_id=meeting_id, exc_info=True)
