import os
from typing import Any, Optional

import redis.asyncio as redis

DEFAULT_REDIS_URL = 'redis://localhost:6379/0'


class RedisClient:
    """
    Shared counter store for RedisRateLimiter and DuplicateGuard.

    Wraps a ``redis.asyncio.Redis`` connection created lazily from
    MPESA_REDIS_URL (or REDIS_URL); pass ``client`` to reuse an existing one.
    """

    def __init__(self, url: Optional[str] = None, client: Optional[Any] = None):
        self.url = url
        self.client = client

    def init_client(self):
        if self.client is None:
            url = self.url or os.getenv('MPESA_REDIS_URL') or os.getenv('REDIS_URL', DEFAULT_REDIS_URL)
            self.client = redis.Redis.from_url(url, decode_responses=True)
        return self.client

    async def incr(self, key: str) -> int:
        return await self.init_client().incr(key)

    async def expire(self, key: str, seconds: int):
        return await self.init_client().expire(key, seconds)

    async def get(self, key: str):
        return await self.init_client().get(key)

    async def delete(self, key: str):
        return await self.init_client().delete(key)

    async def close(self) -> None:
        if self.client is not None:
            await self.client.aclose()
            self.client = None
