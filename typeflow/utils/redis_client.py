from typing import Optional

import redis
import redis.asyncio as aioredis

from typeflow.config import settings

_sync_redis_client: Optional[redis.Redis] = None


def get_redis_client() -> redis.Redis:
    """Sync Redis client used for execution event publishing."""
    global _sync_redis_client
    if _sync_redis_client is None:
        _sync_redis_client = redis.from_url(
            settings.REDIS_URL, encoding="utf-8", decode_responses=True
        )
    return _sync_redis_client


def create_async_redis_client(url: Optional[str] = None) -> aioredis.Redis:
    """Async Redis client for subscribers of the execution channels."""
    return aioredis.from_url(
        url or settings.REDIS_URL, encoding="utf-8", decode_responses=True
    )
