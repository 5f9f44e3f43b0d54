from __future__ import annotations

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from backend.src.contracts.errors import CacheUnavailableError

logger = structlog.get_logger(__name__)

STATUS_KEY_PREFIX = "course_status:"

_OPEN = "open"
_CLOSED = "closed"


def _status_key(item_key: str) -> str:
    return f"{STATUS_KEY_PREFIX}{item_key}"


def _decode(item_key: str, raw: str | bytes | None) -> bool | None:
    if raw is None:
        return None
    value = raw.decode() if isinstance(raw, bytes) else raw
    if value == _OPEN:
        return True
    if value == _CLOSED:
        return False
    # Anything else is re-initialised on the next write, like a first sighting.
    logger.warning("status_cache_unreadable_value", item_key=item_key, value=value)
    return None


class RedisStatusCache:
    """Last observed open/closed state per course, kept in Redis.

    Entries are never expired or deleted here; absence means "never observed".
    Every Redis failure surfaces as CacheUnavailableError.
    """

    def __init__(self, client: aioredis.Redis) -> None:
        self._client = client

    async def ping(self) -> None:
        try:
            await self._client.ping()
        except RedisError as exc:
            raise CacheUnavailableError("status_cache", str(exc)) from exc

    async def get(self, item_key: str) -> bool | None:
        try:
            raw = await self._client.get(_status_key(item_key))
        except RedisError as exc:
            raise CacheUnavailableError("status_cache", str(exc)) from exc
        return _decode(item_key, raw)

    async def get_many(self, item_keys: list[str]) -> dict[str, bool | None]:
        if not item_keys:
            return {}
        try:
            raws = await self._client.mget([_status_key(k) for k in item_keys])
        except RedisError as exc:
            raise CacheUnavailableError("status_cache", str(exc)) from exc
        return {k: _decode(k, raw) for k, raw in zip(item_keys, raws)}

    async def set(self, item_key: str, is_open: bool) -> None:
        try:
            await self._client.set(_status_key(item_key), _OPEN if is_open else _CLOSED)
        except RedisError as exc:
            raise CacheUnavailableError("status_cache", str(exc)) from exc
