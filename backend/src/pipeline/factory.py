from __future__ import annotations

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.src.admin.fanout import AdminFanout
from backend.src.cache.dedup_cache import RedisDedupCache
from backend.src.cache.status_cache import RedisStatusCache
from backend.src.config import Settings
from backend.src.courses.provider import JsonFeedCatalogProvider
from backend.src.courses.repository import CatalogStore
from backend.src.notifier.apns_notifier import ApnsPushNotifier
from backend.src.notifier.email_notifier import EmailNotifier
from backend.src.notifier.registry import NotifierRegistry
from backend.src.notifier.web_inbox_notifier import WebInboxNotifier
from backend.src.notifier.web_push_notifier import WebPushNotifier
from backend.src.pipeline.alert_pass import AlertPass
from backend.src.users.repository import DeviceStore, SubscriptionIndex


def build_alert_pass(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    redis_client: aioredis.Redis,
) -> AlertPass:
    """Wire the production components of an alert pass."""
    subscription_index = SubscriptionIndex(session_factory)
    device_store = DeviceStore(session_factory)
    email_notifier = EmailNotifier(settings)

    registry = NotifierRegistry(
        web_inbox_notifier=WebInboxNotifier(session_factory),
        email_notifier=email_notifier,
        web_push_notifier=WebPushNotifier(settings, device_store),
        apns_notifier=ApnsPushNotifier(settings, device_store),
        concurrency=settings.dispatch_concurrency,
    )

    return AlertPass(
        catalog_provider=JsonFeedCatalogProvider(settings),
        catalog_store=CatalogStore(session_factory),
        status_cache=RedisStatusCache(redis_client),
        dedup_cache=RedisDedupCache(redis_client),
        subscription_index=subscription_index,
        registry=registry,
        admin_fanout=AdminFanout(subscription_index, email_notifier),
        dedup_ttl_seconds=settings.similar_dedup_ttl_seconds,
    )
