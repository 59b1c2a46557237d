"""Redis-backed JSON cache.

Every operation is best-effort: connection or serialization errors are
logged and treated as a miss, never raised to the caller. With no
REDIS_URL configured the cache is disabled and every get is a miss.
"""

import json
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError

from app.config import load_settings
from app.core.constants import DEFAULT_CACHE_TTL
from app.core.logger import logger

_client: redis.Redis | None = None
_initialized = False


def _get_client() -> redis.Redis | None:
    global _client, _initialized
    if _initialized:
        return _client

    _initialized = True
    url = load_settings().redis_url
    if not url:
        logger.info("Redis: no REDIS_URL configured — cache disabled")
        return None

    _client = redis.from_url(url, decode_responses=True)
    logger.info("Redis: client initialized")
    return _client


def is_enabled() -> bool:
    return _get_client() is not None


def set_client(client: redis.Redis | None) -> None:
    """Swap the underlying client (tests inject a fake or None)."""
    global _client, _initialized
    _client = client
    _initialized = True


async def get_cache(key: str) -> Any | None:
    client = _get_client()
    if client is None:
        return None
    try:
        raw = await client.get(key)
    except RedisError as e:
        logger.warning(f"Redis GET failed for {key}: {e}")
        return None
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"Redis value for {key} is not valid JSON: {e}")
        return None


async def set_cache(key: str, value: Any, ttl_seconds: int = DEFAULT_CACHE_TTL) -> bool:
    client = _get_client()
    if client is None:
        return False
    try:
        await client.set(key, json.dumps(value, default=str), ex=ttl_seconds)
        return True
    except (RedisError, TypeError) as e:
        logger.warning(f"Redis SET failed for {key}: {e}")
        return False


async def delete_cache(key: str) -> None:
    client = _get_client()
    if client is None:
        return
    try:
        await client.delete(key)
    except RedisError as e:
        logger.warning(f"Redis DEL failed for {key}: {e}")


async def close() -> None:
    """Close the connection pool (app shutdown)."""
    global _client, _initialized
    if _client is not None:
        try:
            await _client.aclose()
        except RedisError as e:
            logger.warning(f"Redis close failed: {e}")
    _client = None
    _initialized = False
