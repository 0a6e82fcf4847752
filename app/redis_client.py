"""
Redis Connection Management
"""

from typing import Optional

import redis
import structlog

from app.config import settings

logger = structlog.get_logger(__name__)

client: Optional[redis.Redis] = None


def init_redis(redis_url: Optional[str] = None) -> Optional[redis.Redis]:
    """Initialize the Redis client used by the token cache"""
    global client

    redis_url = redis_url or settings.redis_url
    if not redis_url:
        logger.warning("redis_not_configured", reason="REDIS_URL missing - token issuance disabled")
        return None

    client = redis.Redis.from_url(
        redis_url,
        decode_responses=True,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_socket_timeout,
        health_check_interval=30,
    )
    logger.info("redis_client_initialized")
    return client


def close_redis() -> None:
    global client

    if client is not None:
        client.close()
        client = None
        logger.info("redis_client_closed")
