from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.src.contracts.models import Notification

UNREAD_LIMIT = 50
ALL_LIMIT = 100


class NotificationRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add_many(self, notifications: list[Notification]) -> None:
        self._session.add_all(notifications)
        await self._session.flush()

    async def list_for_user(self, user_id: int, include_read: bool = False) -> list[Notification]:
        stmt = select(Notification).where(Notification.user_id == user_id)
        if not include_read:
            stmt = stmt.where(Notification.is_read.is_(False))
        stmt = stmt.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(
            ALL_LIMIT if include_read else UNREAD_LIMIT
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def mark_as_read(self, notification_id: int, user_id: int) -> bool:
        stmt = select(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == user_id,
        )
        result = await self._session.execute(stmt)
        notification = result.scalar_one_or_none()
        if notification is None:
            return False
        notification.is_read = True
        await self._session.flush()
        return True

    async def mark_all_as_read(self, user_id: int) -> int:
        stmt = (
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True)
        )
        result = await self._session.execute(stmt)
        await self._session.flush()
        return result.rowcount or 0
