from __future__ import annotations

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from backend.src.contracts.errors import CacheUnavailableError

DEDUP_KEY_PREFIX = "similar_notified:user:"


def _dedup_key(subscriber_id: int, item_key: str) -> str:
    return f"{DEDUP_KEY_PREFIX}{subscriber_id}:{item_key}"


class RedisDedupCache:
    """TTL-backed record of similar-section alerts already sent per subscriber."""

    def __init__(self, client: aioredis.Redis) -> None:
        self._client = client

    async def ping(self) -> None:
        try:
            await self._client.ping()
        except RedisError as exc:
            raise CacheUnavailableError("dedup_cache", str(exc)) from exc

    async def exists(self, subscriber_id: int, item_key: str) -> bool:
        try:
            return bool(await self._client.exists(_dedup_key(subscriber_id, item_key)))
        except RedisError as exc:
            raise CacheUnavailableError("dedup_cache", str(exc)) from exc

    async def set_with_ttl(self, subscriber_id: int, item_key: str, ttl_seconds: int) -> None:
        try:
            await self._client.set(_dedup_key(subscriber_id, item_key), "1", ex=ttl_seconds)
        except RedisError as exc:
            raise CacheUnavailableError("dedup_cache", str(exc)) from exc

    async def claim(self, subscriber_id: int, item_key: str, ttl_seconds: int) -> bool:
        """Atomically write the key unless present. True means this caller owns the alert."""
        try:
            created = await self._client.set(
                _dedup_key(subscriber_id, item_key), "1", ex=ttl_seconds, nx=True
            )
        except RedisError as exc:
            raise CacheUnavailableError("dedup_cache", str(exc)) from exc
        return bool(created)
