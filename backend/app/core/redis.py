# app/core/redis.py
# Redis 客户端封装
#
# 只在 SESSION_BACKEND=redis 时连接，用于保存聊天会话

import redis.asyncio as redis
from typing import Optional

from app.core.config import settings


class RedisClient:
    """Async Redis client wrapper"""

    def __init__(self, url: Optional[str] = None):
        self.url = url or settings.REDIS_URL
        self._client: Optional[redis.Redis] = None

    async def connect(self) -> None:
        """Connect to Redis and ping"""
        self._client = redis.from_url(
            self.url,
            encoding="utf-8",
            decode_responses=True,
        )
        await self._client.ping()

    async def disconnect(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise RuntimeError("Redis client not connected. Call connect() first.")
        return self._client

    async def ping(self) -> bool:
        return await self.client.ping()

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def set(self, key: str, value: str, ex: Optional[int] = None) -> bool:
        return await self.client.set(key, value, ex=ex)

    async def delete(self, key: str) -> int:
        return await self.client.delete(key)


# Global Redis client instance
redis_client = RedisClient()
