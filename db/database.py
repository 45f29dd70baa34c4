"""
Redis connection module for formpulse.

One process-wide asyncio client, created lazily from REDIS_URL. Route
handlers receive a KVStore through the get_kv dependency.
"""
import logging
from typing import Optional

import redis.asyncio as redis

from db.kv import KVStore
from utils.config import KV_KEY_PREFIX, REDIS_URL

logger = logging.getLogger("formpulse.db")

_redis_client: Optional[redis.Redis] = None


def get_redis_client() -> redis.Redis:
    """Get or create the shared Redis client"""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(REDIS_URL, decode_responses=True)
        logger.info("Redis client created for %s", REDIS_URL.split("@")[-1])
    return _redis_client


def set_redis_client(client) -> None:
    """Install an externally created client (used by tests and embedding apps)"""
    global _redis_client
    _redis_client = client


async def close_redis_client() -> None:
    global _redis_client
    if _redis_client is not None:
        try:
            await _redis_client.aclose()
        except Exception as e:
            logger.warning("Error closing Redis client: %s", e)
        _redis_client = None


def get_kv() -> KVStore:
    """FastAPI dependency returning the namespaced key-value store"""
    return KVStore(get_redis_client(), prefix=KV_KEY_PREFIX)
