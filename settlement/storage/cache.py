"""Shared Redis copy of the latest price quotes.

Every oracle instance writes its quotes here so that other instances can
serve them as stale fallbacks. All helpers degrade to no-ops while Redis
is unconfigured or unreachable; the in-process cache keeps working.

Values are JSON encoded with orjson.
"""

from __future__ import annotations

import logging
from typing import Any

import orjson
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from settlement.config import get_settings

logger = logging.getLogger(__name__)

_pool: ConnectionPool | None = None
_client: redis.Redis | None = None

KEY_PREFIX_PRICE = "price:"          # price:{SYMBOL} or price:{0xaddress}


# =============================================================================
# Connection management
# =============================================================================

async def init_cache(redis_url: str | None = None) -> None:
    """Connect to Redis; an empty URL or a failed ping leaves sharing off."""
    global _pool, _client

    if _client is not None:
        return

    url = redis_url if redis_url is not None else get_settings().redis_url
    if not url:
        logger.info("No Redis URL configured, quotes stay per-process")
        return

    _pool = ConnectionPool.from_url(url, max_connections=20, decode_responses=False)
    _client = redis.Redis(connection_pool=_pool)

    if not await ping():
        logger.warning(f"Redis at {url} is unreachable, quotes stay per-process")
        await close_cache()
        return
    logger.info(f"Shared quote cache connected: {url}")


async def close_cache() -> None:
    global _pool, _client

    if _client is not None:
        await _client.aclose()
        _client = None
    if _pool is not None:
        await _pool.disconnect()
        _pool = None


def is_cache_available() -> bool:
    return _client is not None


async def ping() -> bool:
    """True when Redis answers; reported by the health endpoint."""
    if _client is None:
        return False
    try:
        return bool(await _client.ping())
    except (redis.RedisError, OSError):
        return False


# =============================================================================
# Quote storage
# =============================================================================

async def get_json(key: str) -> Any | None:
    """Decoded value at ``key``, or None if missing, unreadable or offline."""
    if _client is None:
        return None
    try:
        data = await _client.get(key)
    except redis.RedisError as e:
        logger.warning(f"Redis read of {key} failed: {e}")
        return None
    if data is None:
        return None
    try:
        return orjson.loads(data)
    except orjson.JSONDecodeError as e:
        logger.warning(f"Discarding undecodable cache entry {key}: {e}")
        return None


async def set_json(key: str, value: Any, ttl: int | None = None) -> bool:
    """Store ``value`` at ``key`` for ``ttl`` seconds (forever if None)."""
    if _client is None:
        return False
    try:
        data = orjson.dumps(value)
    except (TypeError, orjson.JSONEncodeError) as e:
        logger.warning(f"Cannot encode cache entry {key}: {e}")
        return False
    try:
        if ttl:
            await _client.setex(key, ttl, data)
        else:
            await _client.set(key, data)
        return True
    except redis.RedisError as e:
        logger.warning(f"Redis write of {key} failed: {e}")
        return False


async def delete(key: str) -> bool:
    if _client is None:
        return False
    try:
        await _client.delete(key)
        return True
    except redis.RedisError as e:
        logger.warning(f"Redis delete of {key} failed: {e}")
        return False
