"""
Redis client singleton for rate limiting counters and the admin token blacklist.

This module provides a singleton Redis client configured for production reliability
with connection pooling, retry logic, and health checks.

Redis Key Patterns:
    - rate_limit:{client_ip}:{window}       request counters (TTL = window)
    - login_attempts:{client_ip}:{window}   login counters (TTL = login window)
    - token_blacklist:{jti}                 revoked admin tokens (TTL = token lifetime)
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

    Redis is never authoritative for queue state; callers treat it as
    optional and fail open when it is unreachable.

    Returns:
        Redis async client configured with connection pool and retry logic
    """
    settings = get_settings()

    try:
        client = redis.from_url(
            settings.REDIS_URL,
            max_connections=20,
            decode_responses=True,
            retry_on_timeout=True,
            health_check_interval=30,
            socket_connect_timeout=2,
            socket_timeout=2,
        )

        logger.info(
            f"Redis client initialized: {settings.REDIS_URL} "
            f"(max_connections=20, retry_on_timeout=True, health_check_interval=30s)"
        )
        return client

    except RedisConnectionError as e:
        logger.error(f"Redis connection failed: {e}", exc_info=True)
        raise

    except Exception as e:
        logger.error(f"Unexpected error creating Redis client: {e}", exc_info=True)
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
