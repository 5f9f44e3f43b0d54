from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from backend.src.config import Settings
from backend.src.contracts.errors import CatalogUnavailableError
from backend.src.contracts.models import Base, CourseSnapshot, ExistenceDiff
from backend.src.courses.provider import JsonFeedCatalogProvider, parse_catalog
from backend.src.courses.repository import CatalogStore, CourseRepository
from backend.tests.fakes import make_course

FEED_URL = "https://registrar.example.edu/courses.json"

FEED_ROW = {
    "course_code": "CS201",
    "section": "1",
    "period": "morning",
    "course_name": "Data Structures",
    "is_open": True,
    "days": "ن ر",
    "time": "08:00 AM   إلى   09:30 AM",
    "instructor": "Dr. Salem",
}


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:", echo=False, poolclass=StaticPool
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


def _settings() -> Settings:
    return Settings(catalog_feed_url=FEED_URL, catalog_timeout_seconds=5)


# ── Catalog store ─────────────────────────────────────────────────────────────


async def sync(store: CatalogStore, snapshot: list[CourseSnapshot]) -> ExistenceDiff:
    diff = await store.diff(snapshot)
    await store.apply(diff)
    return diff


async def stored_sections(session_factory: async_sessionmaker[AsyncSession]) -> list[str]:
    async with session_factory() as session:
        rows = await CourseRepository(session).get_all()
    return sorted(r.section for r in rows)


class TestCatalogStore:
    @pytest.mark.asyncio
    async def test_first_sync_adds_everything(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        store = CatalogStore(session_factory)

        diff = await sync(store, [make_course(section="1"), make_course(section="2", is_open=False)])

        assert len(diff.added) == 2
        assert diff.removed == []
        by_section = {item.section: item for item in diff.items}
        assert by_section["1"].first_opened_at is not None
        assert by_section["2"].first_opened_at is None

    @pytest.mark.asyncio
    async def test_diff_alone_writes_nothing(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        store = CatalogStore(session_factory)
        await sync(store, [make_course(section="1")])

        diff = await store.diff([make_course(section="2")])

        assert [c.section for c in diff.added] == ["2"]
        assert [c.section for c in diff.removed] == ["1"]
        assert await stored_sections(session_factory) == ["1"]

        retried = await store.diff([make_course(section="2")])
        assert [c.section for c in retried.added] == ["2"]

    @pytest.mark.asyncio
    async def test_removed_courses_are_deleted(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        store = CatalogStore(session_factory)
        await sync(store, [make_course(section="1"), make_course(section="2")])

        diff = await sync(store, [make_course(section="1")])

        assert [c.section for c in diff.removed] == ["2"]
        assert diff.added == []
        assert await stored_sections(session_factory) == ["1"]

    @pytest.mark.asyncio
    async def test_first_opening_is_stamped_once(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        store = CatalogStore(session_factory)
        await sync(store, [make_course(is_open=False)])

        opened = await sync(store, [make_course(is_open=True)])
        stamped = opened.items[0].first_opened_at
        await sync(store, [make_course(is_open=False)])
        reopened = await sync(store, [make_course(is_open=True)])

        assert stamped is not None
        assert reopened.items[0].first_opened_at == stamped

    @pytest.mark.asyncio
    async def test_feed_timestamp_wins(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        store = CatalogStore(session_factory)
        published = datetime(2026, 2, 1, 9, 0, tzinfo=timezone.utc)

        diff = await sync(store, [make_course(first_opened_at=published)])

        assert diff.items[0].first_opened_at == published

    @pytest.mark.asyncio
    async def test_row_fields_follow_snapshot(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> None:
        store = CatalogStore(session_factory)
        await sync(store, [make_course(instructor="Dr. Salem")])
        await sync(store, [make_course(instructor="Dr. Noor", is_open=False)])

        async with session_factory() as session:
            rows = await CourseRepository(session).get_all()
        assert rows[0].instructor == "Dr. Noor"
        assert rows[0].is_open is False


# ── Feed parsing ──────────────────────────────────────────────────────────────


class TestParseCatalog:
    def test_plain_list(self) -> None:
        items = parse_catalog([FEED_ROW])

        assert items[0].key == "CS201:1:morning"
        assert items[0].is_open is True

    def test_wrapped_list(self) -> None:
        assert len(parse_catalog({"courses": [FEED_ROW, {**FEED_ROW, "section": "2"}]})) == 2

    def test_not_a_list(self) -> None:
        with pytest.raises(CatalogUnavailableError):
            parse_catalog({"data": []})

    def test_invalid_rows(self) -> None:
        with pytest.raises(CatalogUnavailableError):
            parse_catalog([{"course_code": "CS201"}])


# ── Feed provider ─────────────────────────────────────────────────────────────


class TestJsonFeedCatalogProvider:
    @pytest.mark.asyncio
    async def test_fetches_and_parses(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert str(request.url) == FEED_URL
            return httpx.Response(200, json=[FEED_ROW])

        provider = JsonFeedCatalogProvider(_settings(), transport=httpx.MockTransport(handler))

        items = await provider.list_all_items()

        assert [i.key for i in items] == ["CS201:1:morning"]

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self) -> None:
        calls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["count"] += 1
            if calls["count"] < 3:
                return httpx.Response(503)
            return httpx.Response(200, json={"courses": [FEED_ROW]})

        provider = JsonFeedCatalogProvider(_settings(), transport=httpx.MockTransport(handler))

        with patch("backend.src.courses.provider.asyncio.sleep", new_callable=AsyncMock) as sleep:
            items = await provider.list_all_items()

        assert len(items) == 1
        assert calls["count"] == 3
        assert [c.args[0] for c in sleep.await_args_list] == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_retries(self) -> None:
        provider = JsonFeedCatalogProvider(
            _settings(), transport=httpx.MockTransport(lambda request: httpx.Response(500))
        )

        with patch("backend.src.courses.provider.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(CatalogUnavailableError):
                await provider.list_all_items()

    @pytest.mark.asyncio
    async def test_invalid_body_is_not_retried(self) -> None:
        calls = {"count": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["count"] += 1
            return httpx.Response(200, json={"unexpected": True})

        provider = JsonFeedCatalogProvider(_settings(), transport=httpx.MockTransport(handler))

        with pytest.raises(CatalogUnavailableError):
            await provider.list_all_items()
        assert calls["count"] == 1
