"""
Redis caching for the operator roster (registrations per event).

CACHING STRATEGY
================

What we cache:
  - The serialized roster response for one event
  - Cache key pattern: "roster:event:{event_id}"

Why:
  - Every gate device polls the roster to show "N of M checked in"
  - Many devices per event, all reading the same rows

Invalidation strategy:
  - On registration created (webhook): delete the event's key
  - On check-in: delete the event's key
  - Short TTL as safety net

Redis is advisory. Every failure is logged and treated as a miss; the
database is always authoritative and the admission path never reads the
cache.

Known staleness window:
  A roster read that queried the database before an admit (or a new
  registration) can write its result after that write's invalidation.
  The stale totals then live until the next invalidation or at most
  REDIS_CACHE_TTL. Gate decisions never consult the roster, so only the
  displayed counts lag.
"""

import json
from typing import Optional

import redis.asyncio as redis
from gatepass.core.config import get_settings
from gatepass.core.logging import get_logger
from gatepass.core.metrics import record_cache_operation, redis_connection_errors

logger = get_logger(__name__)
settings = get_settings()

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
            redis_connection_errors.inc()
            logger.error("redis_connection_failed", error=str(e))
            _redis_client = None
            return None

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection on shutdown."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


def _make_roster_key(event_id: int) -> str:
    return f"roster:event:{event_id}"


async def get_cached_roster(event_id: int) -> Optional[dict]:
    client = await get_redis()
    if not client:
        return None

    key = _make_roster_key(event_id)
    try:
        data = await client.get(key)
        record_cache_operation("get", hit=bool(data))
        if data:
            logger.debug("cache_hit", key=key)
            return json.loads(data)
        logger.debug("cache_miss", key=key)
    except Exception as e:
        logger.error("cache_get_error", key=key, error=str(e))

    return None


async def set_cached_roster(event_id: int, data: dict) -> None:
    client = await get_redis()
    if not client:
        return

    key = _make_roster_key(event_id)
    try:
        await client.setex(key, settings.REDIS_CACHE_TTL, json.dumps(data, default=str))
        record_cache_operation("set", hit=False)
        logger.debug("cache_set", key=key, ttl=settings.REDIS_CACHE_TTL)
    except Exception as e:
        logger.error("cache_set_error", key=key, error=str(e))


async def invalidate_roster(event_id: int) -> None:
    client = await get_redis()
    if not client:
        return

    key = _make_roster_key(event_id)
    try:
        await client.delete(key)
        logger.info("cache_invalidated", key=key)
    except Exception as e:
        logger.error("cache_invalidation_error", key=key, error=str(e))


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
