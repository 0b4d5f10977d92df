"""Redis client for idempotency keys on crystal creation.

Usage:
    from crystal_custody.infrastructure.redis_client import get_redis, close_redis

    redis = get_redis()
    await redis.set("key", "value", ex=3600)
"""

from __future__ import annotations

import redis.asyncio as aioredis

from crystal_custody.config import get_settings
from crystal_custody.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None


async def init_redis() -> aioredis.Redis:
    """Initialize and return the Redis client. Called during app startup."""
    global _redis_client
    settings = get_settings()
    _redis_client = aioredis.from_url(
        settings.redis_url,
        decode_responses=True,
    )
    # Verify connectivity
    await _redis_client.ping()
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis() -> aioredis.Redis:
    """Return the Redis client singleton. Must call init_redis() first."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


def is_redis_available() -> bool:
    return _redis_client is not None


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


# --- Idempotency Helpers ---


def _idempotency_key(principal: str, key: str) -> str:
    # Scoped per principal so two callers can't collide on the same client key.
    return f"idempotency:spawn:{principal}:{key}"


async def claim_idempotency(principal: str, key: str) -> bool:
    """Atomically claim an idempotency key.

    Returns True if the key was new and is now reserved, False if it was
    already used (duplicate request).
    """
    settings = get_settings()
    redis = get_redis()
    claimed = await redis.set(
        _idempotency_key(principal, key),
        "pending",
        nx=True,
        ex=settings.redis_idempotency_ttl_seconds,
    )
    return bool(claimed)


async def complete_idempotency(principal: str, key: str, crystal_id: int) -> None:
    """Record which crystal a claimed key produced."""
    settings = get_settings()
    redis = get_redis()
    await redis.set(
        _idempotency_key(principal, key),
        str(crystal_id),
        ex=settings.redis_idempotency_ttl_seconds,
    )


async def release_idempotency(principal: str, key: str) -> None:
    """Drop a claimed key after the creation it guarded failed."""
    redis = get_redis()
    await redis.delete(_idempotency_key(principal, key))
