"""
Redis client singleton.

Used by the API for rate limiting counters, revoked-token lookups and the
health check. Booking data never lives in Redis.
"""

import logging
from functools import lru_cache

import redis.asyncio as redis
from redis import ConnectionError as RedisConnectionError

from shared.config import get_settings

logger = logging.getLogger(__name__)


@lru_cache
def get_redis_client() -> "redis.Redis[str]":
    """
    Get cached Redis client instance.

    - Connection pooling (max 20 connections)
    - Automatic retry on timeout for transient failures
    - Health check pings every 30 seconds

    Redis Key Patterns:
        - Rate limiting: rate_limit:{client_ip}:{window}
        - Revoked tokens: token_blacklist:{jti}
    """
    settings = get_settings()

    try:
        client = redis.from_url(
            settings.REDIS_URL,
            max_connections=20,
            decode_responses=True,  # Automatically decode bytes to strings
            retry_on_timeout=True,  # Retry on transient network timeouts
            health_check_interval=30,  # Ping Redis every 30s to detect failures
        )
        logger.info(f"Redis client initialized: {settings.REDIS_URL}")
        return client

    except RedisConnectionError as e:
        logger.error(f"Redis connection failed: {e}", exc_info=True)
        raise


async def close_redis_client() -> None:
    """
    Close Redis connection gracefully.

    Note:
        Should be called during application shutdown.
    """
    try:
        client = get_redis_client()
        await client.aclose()
        logger.info("Redis client closed")
    except Exception as e:
        logger.warning(f"Error closing Redis client: {e}")
