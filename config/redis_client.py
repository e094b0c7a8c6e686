"""
config/redis_client.py
Async Redis client for the JWT deny-list, payout batch locking
and unauthenticated rate limiting.
"""

from typing import Optional
import redis.asyncio as aioredis

from config.settings import settings


# ── Global client (initialized on startup) ───────────────────
redis_client: Optional[aioredis.Redis] = None


async def init_redis() -> None:
    """Initialize the Redis connection pool."""
    global redis_client
    redis_client = aioredis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
    )
    await redis_client.ping()


async def close_redis() -> None:
    """Close Redis connection pool."""
    global redis_client
    if redis_client:
        await redis_client.aclose()


def get_redis() -> aioredis.Redis:
    """FastAPI dependency to get Redis client."""
    if not redis_client:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return redis_client


class RedisCache:
    """Helper class for the Redis patterns used across services."""

    def __init__(self, client: aioredis.Redis):
        self.client = client

    # ── Batch Locking ────────────────────────────────────────
    async def acquire_lock(self, name: str, owner: str, ttl: int = settings.REDIS_BATCH_LOCK_TTL) -> bool:
        """
        Atomic lock using SET NX (set if not exists).
        Returns True if lock acquired, False if someone else holds it.
        """
        result = await self.client.set(f"lock:{name}", owner, ex=ttl, nx=True)
        return result is True

    async def release_lock(self, name: str) -> None:
        await self.client.delete(f"lock:{name}")

    # ── JWT Deny List ─────────────────────────────────────────
    async def revoke_token(self, jti: str, ttl_seconds: int) -> None:
        """Add JWT ID to deny list until it expires."""
        await self.client.setex(f"jwt_revoked:{jti}", ttl_seconds, "1")

    async def is_token_revoked(self, jti: str) -> bool:
        return await self.client.exists(f"jwt_revoked:{jti}") == 1

    # ── Rate Limiting ─────────────────────────────────────────
    async def check_rate_limit(self, key: str, limit: int, window_seconds: int = 60) -> bool:
        """
        Fixed window rate limiter.
        Returns True if request is allowed, False if rate limited.
        """
        pipe = self.client.pipeline()
        pipe.incr(key)
        pipe.expire(key, window_seconds)
        results = await pipe.execute()
        return results[0] <= limit
