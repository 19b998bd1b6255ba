"""Redis coordination store shared by every worker process."""

from __future__ import annotations

import logging
from typing import Any, Optional

import redis.asyncio as redis

from .base import BaseCoordinationStore

logger = logging.getLogger(__name__)

_DELETE_IF_EQUALS = """
if redis.call('get', KEYS[1]) == ARGV[1] then
  return redis.call('del', KEYS[1])
else
  return 0
end
"""

_EXPIRE_IF_EQUALS = """
if redis.call('get', KEYS[1]) == ARGV[1] then
  return redis.call('pexpire', KEYS[1], ARGV[2])
else
  return 0
end
"""


class RedisCoordinationStore(BaseCoordinationStore):
    """Redis-based store using ``SET NX PX`` and Lua compare-and-delete."""

    def __init__(
        self,
        url: Optional[str] = None,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        prefix: str = "mentionops",
        client: Optional[Any] = None,
    ) -> None:
        self.url = url
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.prefix = prefix
        self._redis: Optional[Any] = client

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}" if self.prefix else key

    async def connect(self) -> None:
        """Connect to Redis."""
        if self.url:
            self._redis = redis.from_url(self.url, decode_responses=True)
        else:
            self._redis = redis.Redis(
                host=self.host,
                port=self.port,
                db=self.db,
                password=self.password,
                decode_responses=True,
            )
        await self._redis.ping()
        logger.debug(f"Connected coordination store to redis db={self.db}")

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def _client(self) -> Any:
        if not self._redis:
            await self.connect()
        return self._redis

    async def set_if_absent(self, key: str, value: str, ttl_ms: int) -> bool:
        client = await self._client()
        result = await client.set(self._key(key), value, nx=True, px=ttl_ms)
        return bool(result)

    async def get(self, key: str) -> str | None:
        client = await self._client()
        return await client.get(self._key(key))

    async def delete(self, key: str) -> None:
        client = await self._client()
        await client.delete(self._key(key))

    async def delete_if_equals(self, key: str, expected: str) -> bool:
        client = await self._client()
        removed = await client.eval(_DELETE_IF_EQUALS, 1, self._key(key), expected)
        return bool(removed)

    async def expire_if_equals(self, key: str, expected: str, ttl_ms: int) -> bool:
        client = await self._client()
        renewed = await client.eval(
            _EXPIRE_IF_EQUALS, 1, self._key(key), expected, ttl_ms
        )
        return bool(renewed)
