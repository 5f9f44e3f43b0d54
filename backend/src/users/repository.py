from __future__ import annotations

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from backend.src.contracts.models import DeviceRegistration, Subscriber, User, Watchlist, WatchRule

logger = structlog.get_logger(__name__)


class UserRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, user_id: int) -> User | None:
        stmt = select(User).where(User.id == user_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_catalog_admins(self) -> list[User]:
        stmt = (
            select(User)
            .where(
                User.is_admin.is_(True),
                User.watch_all_courses.is_(True),
                User.is_email_verified.is_(True),
            )
            .options(selectinload(User.devices))
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def delete_device(self, device_id: int) -> None:
        await self._session.execute(
            delete(DeviceRegistration).where(DeviceRegistration.id == device_id)
        )
        await self._session.flush()


class WatchlistRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_all_with_users(self) -> list[Watchlist]:
        stmt = select(Watchlist).options(
            selectinload(Watchlist.user).selectinload(User.devices)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())


class SubscriptionIndex:
    """Read-only view of every watch rule and its owner's preferences."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def list_watch_rules(self) -> list[WatchRule]:
        async with self._session_factory() as session:
            rows = await WatchlistRepository(session).get_all_with_users()
            rules = [row.to_watch_rule() for row in rows]

        for rule in rules:
            if rule.similar_filters.malformed:
                logger.warning(
                    "similar_filters_malformed",
                    watch_rule_id=rule.id,
                    malformed_count=rule.similar_filters.malformed,
                )

        logger.info("watch_rules_loaded", count=len(rules))
        return rules

    async def list_admin_recipients(self) -> list[Subscriber]:
        async with self._session_factory() as session:
            admins = await UserRepository(session).get_catalog_admins()
            return [admin.to_subscriber() for admin in admins]


class DeviceStore:
    """Removes push registrations whose tokens the provider rejected."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def remove(self, device_id: int) -> None:
        async with self._session_factory() as session:
            await UserRepository(session).delete_device(device_id)
            await session.commit()
        logger.info("device_registration_cleared", device_id=device_id)
