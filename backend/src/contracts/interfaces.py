from __future__ import annotations

from typing import Protocol

from backend.src.contracts.models import (
    AdminSummary,
    ChangeRecord,
    CourseSnapshot,
    ExistenceDiff,
    Subscriber,
    WatchRule,
)


class ICatalogProvider(Protocol):
    async def list_all_items(self) -> list[CourseSnapshot]: ...


class IStatusCache(Protocol):
    async def ping(self) -> None: ...

    async def get(self, item_key: str) -> bool | None: ...

    async def get_many(self, item_keys: list[str]) -> dict[str, bool | None]: ...

    async def set(self, item_key: str, is_open: bool) -> None: ...


class IDedupCache(Protocol):
    async def ping(self) -> None: ...

    async def exists(self, subscriber_id: int, item_key: str) -> bool: ...

    async def set_with_ttl(self, subscriber_id: int, item_key: str, ttl_seconds: int) -> None: ...

    async def claim(self, subscriber_id: int, item_key: str, ttl_seconds: int) -> bool: ...


class ICatalogStore(Protocol):
    async def diff(self, snapshot: list[CourseSnapshot]) -> ExistenceDiff: ...

    async def apply(self, diff: ExistenceDiff) -> None: ...


class ISubscriptionIndex(Protocol):
    async def list_watch_rules(self) -> list[WatchRule]: ...

    async def list_admin_recipients(self) -> list[Subscriber]: ...


class IChannelNotifier(Protocol):
    async def send(self, subscriber: Subscriber, records: list[ChangeRecord]) -> bool: ...


class IAdminSink(Protocol):
    async def send_admin_summary(self, admin: Subscriber, summary: AdminSummary) -> bool: ...


class IDeviceStore(Protocol):
    async def remove(self, device_id: int) -> None: ...
