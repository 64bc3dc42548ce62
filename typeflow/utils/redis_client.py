"""Redis client construction."""

import logging
from typing import Optional

import redis.asyncio as redis

from ..config import settings

logger = logging.getLogger(__name__)


def create_redis_client(redis_url: Optional[str] = None) -> redis.Redis:
    """Create an asyncio Redis client; callers own and close it."""
    redis_url = redis_url or settings.redis_url
    client = redis.from_url(
        redis_url,
        password=settings.redis_password,
        decode_responses=True,
        encoding="utf-8",
    )
    logger.info(f"Created Redis client for {redis_url}")
    return client
