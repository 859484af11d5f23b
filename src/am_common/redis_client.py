"""Redis connection for the cached fee totals.

Settlement never waits on Redis for correctness: fee_ledger_entries in
PostgreSQL is the record, and the cache is rebuilt from it by fee
verification. Socket timeouts keep a stalled Redis from holding a settlement
response open; a timeout surfaces as redis.TimeoutError (a RedisError) and the
cache update is skipped.
"""

import logging

import redis
import redis.asyncio as aioredis

from config.settings import settings

logger = logging.getLogger(__name__)

_redis_pool: aioredis.Redis | None = None


async def get_redis() -> aioredis.Redis:
    """Shared client for the fee cache; connections are opened lazily."""
    global _redis_pool  # noqa: PLW0603
    if _redis_pool is None:
        _redis_pool = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
            socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
        )
    return _redis_pool


async def redis_available() -> bool:
    """Ping the fee cache. A failure is logged, not raised: the service runs without it."""
    try:
        client = await get_redis()
        await client.ping()
    except redis.RedisError as exc:
        logger.warning("Fee cache unreachable at %s: %s", settings.REDIS_URL, exc)
        return False
    return True


async def close_redis() -> None:
    global _redis_pool  # noqa: PLW0603
    if _redis_pool is not None:
        await _redis_pool.aclose()
        _redis_pool = None
