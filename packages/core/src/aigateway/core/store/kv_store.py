"""KVStore 实现 -- 带 TTL 的通用键值存储

MemoryKVStore：进程内字典，单进程开发 / 测试使用。
RedisKVStore：redis.asyncio 客户端，多实例部署共享缓存。
两者都支持 glob 风格的 keys(pattern)。
"""

import fnmatch
import time
from collections.abc import Callable

import structlog
from redis import asyncio as aioredis

log = structlog.get_logger()


class MemoryKVStore:
    """进程内 KVStore

    过期条目在 get 时惰性清理；set / keys 时整体清扫一次，字典不会无限增长。
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._data: dict[str, tuple[str, float | None]] = {}
        self._clock = clock

    async def get(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        now = self._clock()
        self._purge_expired(now)
        expires_at = now + ttl_seconds if ttl_seconds else None
        self._data[key] = (value, expires_at)

    async def keys(self, pattern: str) -> list[str]:
        self._purge_expired(self._clock())
        return [key for key in self._data if fnmatch.fnmatchcase(key, pattern)]

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._data.pop(key, None) is not None:
                removed += 1
        return removed

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._data.clear()

    def _purge_expired(self, now: float) -> None:
        expired = [
            key
            for key, (_, expires_at) in self._data.items()
            if expires_at is not None and now >= expires_at
        ]
        for key in expired:
            del self._data[key]


class RedisKVStore:
    """基于 redis.asyncio 的 KVStore"""

    def __init__(self, client: aioredis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisKVStore":
        return cls(aioredis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> str | None:
        return await self._client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        await self._client.set(key, value, ex=ttl_seconds or None)

    async def keys(self, pattern: str) -> list[str]:
        # 用 SCAN 遍历
        return [key async for key in self._client.scan_iter(match=pattern, count=500)]

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self._client.delete(*keys)

    async def ping(self) -> bool:
        return bool(await self._client.ping())

    async def close(self) -> None:
        await self._client.aclose()
        log.info("redis_kv_store_closed")
