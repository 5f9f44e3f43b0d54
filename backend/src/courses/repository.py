from __future__ import annotations

from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.src.contracts.models import Course, CourseSnapshot, ExistenceDiff
from backend.src.differ.differ import CatalogDiffer

logger = structlog.get_logger(__name__)


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes for timezone-aware columns.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _first_opened_at(item: CourseSnapshot, existing: Course | None, now: datetime) -> datetime | None:
    """A feed timestamp wins; otherwise the first pass that sees the course open stamps it."""
    if item.first_opened_at is not None:
        return item.first_opened_at
    stored = _as_utc(existing.first_opened_at) if existing is not None else None
    if stored is None and item.is_open:
        return now
    return stored


class CourseRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_all(self) -> list[Course]:
        result = await self._session.execute(select(Course))
        return list(result.scalars().all())

    async def upsert(self, snapshot: CourseSnapshot, existing: Course | None, now: datetime) -> Course:
        if existing is None:
            row = Course(
                course_code=snapshot.course_code,
                section=snapshot.section,
                period=snapshot.period,
                course_name=snapshot.course_name,
                is_open=snapshot.is_open,
                days=snapshot.days,
                time=snapshot.time,
                faculty=snapshot.faculty,
                instructor=snapshot.instructor,
                room=snapshot.room,
                first_opened_at=snapshot.first_opened_at,
                last_updated=now,
            )
            self._session.add(row)
            return row

        existing.course_name = snapshot.course_name
        existing.is_open = snapshot.is_open
        existing.days = snapshot.days
        existing.time = snapshot.time
        existing.faculty = snapshot.faculty
        existing.instructor = snapshot.instructor
        existing.room = snapshot.room
        existing.first_opened_at = snapshot.first_opened_at
        existing.last_updated = now
        return existing

    async def delete(self, course: Course) -> None:
        await self._session.delete(course)


class CatalogStore:
    """Keeps the ``courses`` table in line with each fresh snapshot.

    diff() reads the stored catalog and returns the existence diff (added /
    removed courses) with every snapshot item carrying the first_opened_at it
    will be stored with. apply() writes that diff; nothing is written before.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        self._differ = CatalogDiffer()

    async def diff(self, snapshot: list[CourseSnapshot]) -> ExistenceDiff:
        now = datetime.now(timezone.utc)

        async with self._session_factory() as session:
            existing = {row.key: row for row in await CourseRepository(session).get_all()}

        diff = self._differ.diff([row.to_schema() for row in existing.values()], snapshot)
        items = [
            item.model_copy(
                update={"first_opened_at": _first_opened_at(item, existing.get(item.key), now)}
            )
            for item in diff.items
        ]
        return ExistenceDiff(items=items, added=diff.added, removed=diff.removed)

    async def apply(self, diff: ExistenceDiff) -> None:
        now = datetime.now(timezone.utc)
        removed_keys = {item.key for item in diff.removed}

        async with self._session_factory() as session:
            repo = CourseRepository(session)
            existing = {row.key: row for row in await repo.get_all()}

            for item in diff.items:
                await repo.upsert(item, existing.get(item.key), now)

            for key in removed_keys:
                if key in existing:
                    await repo.delete(existing[key])

            await session.commit()

        logger.info(
            "catalog_synced",
            items_count=len(diff.items),
            added_count=len(diff.added),
            removed_count=len(diff.removed),
        )
