"""
Database Module - Redis client

Provides a singleton async Redis client used for cart storage.
"""

from typing import Optional

from redis.asyncio import Redis

from cartsync.config import REDIS_URL, CART_KEY_PREFIX, GUEST_CART_TTL


_redis_client: Optional[Redis] = None


def get_redis() -> Redis:
    """
    Get async Redis client (singleton).

    Connects to REDIS_URL (redis:// or rediss://). Responses are decoded
    to str since carts are stored as JSON.
    """
    global _redis_client

    if _redis_client is None:
        if not REDIS_URL:
            raise ValueError("REDIS_URL must be set")
        _redis_client = Redis.from_url(REDIS_URL, decode_responses=True)

    return _redis_client


async def close_redis() -> None:
    """Close the singleton client (application shutdown)."""
    global _redis_client

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


class RedisKeys:
    """Redis key prefixes for different data types."""

    CART = CART_KEY_PREFIX  # cart:{owner_key}

    @staticmethod
    def cart_key(owner_key: str) -> str:
        return f"{RedisKeys.CART}{owner_key}"

    @staticmethod
    def owner_key_from(redis_key: str) -> str:
        return redis_key[len(RedisKeys.CART):]

    @staticmethod
    def cart_pattern() -> str:
        return f"{RedisKeys.CART}*"


class TTL:
    """Time-to-live constants for Redis keys (seconds)."""

    GUEST_CART = GUEST_CART_TTL
