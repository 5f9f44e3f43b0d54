from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from backend.src.contracts.models import Base, ChangeRecord, Direction, TriggerSource, User
from backend.src.notifications.repository import NotificationRepository
from backend.src.notifier.web_inbox_notifier import WebInboxNotifier, build_inbox_message
from backend.tests.fakes import make_course, make_subscriber


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:", echo=False, poolclass=StaticPool
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        session.add(User(id=1, email="student1@example.com", username="student1"))
        await session.commit()

    yield factory
    await engine.dispose()


def _record(section: str = "1", direction: Direction = Direction.OPENED) -> ChangeRecord:
    return ChangeRecord(
        item=make_course(section=section, is_open=direction == Direction.OPENED),
        direction=direction,
        trigger_sources={TriggerSource.SIMILAR_COURSE, TriggerSource.NEWLY_OPENED},
    )


class TestInboxMessage:
    def test_message_lines(self) -> None:
        message = build_inbox_message(_record(section="3"))

        assert message.splitlines() == [
            "Opened: Data Structures (CS201 - section 3)",
            "Alternative section | Newly opened",
            "08:00 AM - 09:30 AM | ن ر",
            "Dr. Salem",
        ]

    def test_closed_message(self) -> None:
        assert build_inbox_message(_record(direction=Direction.CLOSED)).startswith("Closed:")


class TestWebInboxNotifier:
    @pytest.mark.asyncio
    async def test_one_row_per_record(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        notifier = WebInboxNotifier(session_factory)

        result = await notifier.send(make_subscriber(1), [_record("1"), _record("2")])

        assert result is True
        async with session_factory() as session:
            rows = await NotificationRepository(session).list_for_user(1)
        assert len(rows) == 2
        assert {r.section for r in rows} == {"1", "2"}
        assert rows[0].to_schema().trigger_sources == [
            TriggerSource.NEWLY_OPENED,
            TriggerSource.SIMILAR_COURSE,
        ]
        assert all(not r.is_read for r in rows)

    @pytest.mark.asyncio
    async def test_mark_read(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        await WebInboxNotifier(session_factory).send(make_subscriber(1), [_record("1"), _record("2")])

        async with session_factory() as session:
            repo = NotificationRepository(session)
            rows = await repo.list_for_user(1)
            assert await repo.mark_as_read(rows[0].id, user_id=1) is True
            assert await repo.mark_as_read(rows[0].id, user_id=2) is False
            await session.commit()

        async with session_factory() as session:
            repo = NotificationRepository(session)
            assert len(await repo.list_for_user(1)) == 1
            assert len(await repo.list_for_user(1, include_read=True)) == 2
            assert await repo.mark_all_as_read(1) == 1
            await session.commit()
