"""
Redis caching service for booking listings.

CACHING STRATEGY
================

What we cache:
  - GET /bookings listing responses (paginated, JSON-serialized)
  - Cache key pattern: "bookings:list:{scope}:{query}" where scope is the
    caller's visibility ("all", "user:<id>", "driver:<id>")

Invalidation strategy:
  - Any successful booking mutation deletes every listing key
  - TTL-based expiry as a safety net (REDIS_CACHE_TTL)

  All listing keys start with "bookings:list:" so we can SCAN and delete them.

What is never cached:
  - Single-booking reads, history and ledger. Every mutation needs the caller's
    current version, so those reads must be real-time.

Redis is optional. Any Redis failure is logged and the request falls back to
the database.
"""

import json
from typing import Optional

import redis.asyncio as redis
from booking_core.core.config import get_settings
from booking_core.core.logging import get_logger
from booking_core.core.metrics import record_cache_operation

logger = get_logger(__name__)
settings = get_settings()

LIST_PREFIX = "bookings:list:"

_redis_client: Optional[redis.Redis] = None


async def get_redis() -> Optional[redis.Redis]:
    """Get or create Redis connection. Returns None if Redis is disabled."""
    global _redis_client

    if not settings.REDIS_ENABLED:
        return None

    if _redis_client is None:
        try:
            _redis_client = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
            )
            await _redis_client.ping()
            logger.info("redis_connected", url=settings.REDIS_URL)
        except Exception as e:
            logger.error("redis_connection_failed", error=str(e))
            _redis_client = None
            return None

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection on shutdown."""
    global _redis_client
    if _redis_client:
        await _redis_client.close()
        _redis_client = None


def make_list_key(scope: str, **filters) -> str:
    query = "&".join(f"{name}={filters[name]}" for name in sorted(filters))
    return f"{LIST_PREFIX}{scope}:{query}"


async def get_cached_listing(key: str) -> Optional[dict]:
    client = await get_redis()
    if not client:
        return None

    try:
        data = await client.get(key)
        if data:
            record_cache_operation("get", hit=True)
            logger.debug("cache_hit", key=key)
            return json.loads(data)
        record_cache_operation("get", hit=False)
        logger.debug("cache_miss", key=key)
    except Exception as e:
        logger.error("cache_get_error", key=key, error=str(e))

    return None


async def set_cached_listing(key: str, data: dict) -> None:
    client = await get_redis()
    if not client:
        return

    try:
        await client.setex(key, settings.REDIS_CACHE_TTL, json.dumps(data, default=str))
        logger.debug("cache_set", key=key, ttl=settings.REDIS_CACHE_TTL)
    except Exception as e:
        logger.error("cache_set_error", key=key, error=str(e))


async def invalidate_booking_cache() -> None:
    """Drop every cached listing page."""
    client = await get_redis()
    if not client:
        return

    try:
        deleted = 0
        async for key in client.scan_iter(match=f"{LIST_PREFIX}*", count=100):
            await client.delete(key)
            deleted += 1
        logger.info("cache_invalidated", keys_deleted=deleted)
    except Exception as e:
        logger.error("cache_invalidation_error", error=str(e))


async def get_cache_stats() -> dict:
    """Get Redis cache statistics for monitoring."""
    client = await get_redis()
    if not client:
        return {"status": "disabled"}

    try:
        info = await client.info("stats")
        hits = info.get("keyspace_hits", 0)
        misses = info.get("keyspace_misses", 0)
        return {
            "status": "connected",
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
        }
    except Exception as e:
        return {"status": "error", "error": str(e)}
