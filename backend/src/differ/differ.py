from __future__ import annotations

import structlog

from backend.src.contracts.interfaces import IStatusCache
from backend.src.contracts.models import (
    CourseSnapshot,
    Direction,
    ExistenceDiff,
    StatusDiff,
    Transition,
)

logger = structlog.get_logger(__name__)


def _unique_by_key(snapshot: list[CourseSnapshot]) -> dict[str, CourseSnapshot]:
    by_key: dict[str, CourseSnapshot] = {}
    for item in snapshot:
        if item.key in by_key:
            logger.warning("duplicate_course_in_snapshot", key=item.key)
        by_key[item.key] = item
    return by_key


class StatusDiffer:
    """Compare a catalog snapshot against the status cache and emit transitions.

    - First sighting of a course: initialise the cache, emit nothing
    - Same state as cached: emit nothing
    - Different state: emit a Transition and queue the new state

    detect() only reads. The queued states are written by commit(), which the
    pass calls once every cache it depends on has answered and before anyone
    is notified, so a crash after the commit can drop an alert but never
    repeat one.
    """

    def __init__(self, status_cache: IStatusCache) -> None:
        self._cache = status_cache

    async def detect(self, snapshot: list[CourseSnapshot]) -> StatusDiff:
        items = _unique_by_key(snapshot)
        cached = await self._cache.get_many(list(items))

        diff = StatusDiff()
        bootstrapped = 0

        for key, item in items.items():
            previous = cached.get(key)

            if previous is None:
                diff.pending_writes[key] = item.is_open
                bootstrapped += 1
                continue

            if previous == item.is_open:
                continue

            direction = Direction.OPENED if item.is_open else Direction.CLOSED
            diff.pending_writes[key] = item.is_open
            logger.info(
                "transition_detected",
                key=key,
                name=item.course_name,
                direction=direction.value,
            )
            diff.transitions.append(Transition(item=item, direction=direction))

        logger.info(
            "detect_complete",
            items_count=len(items),
            bootstrapped_count=bootstrapped,
            transitions_count=len(diff.transitions),
        )

        return diff

    async def commit(self, diff: StatusDiff) -> None:
        for key, is_open in diff.pending_writes.items():
            await self._cache.set(key, is_open)

        logger.info("status_cache_committed", writes_count=len(diff.pending_writes))


class CatalogDiffer:
    """Compare the stored catalog with a fresh snapshot by course identity.

    Detects:
    - Added courses: present in the snapshot but not stored
    - Removed courses: stored but missing from the snapshot

    Open/closed flips are not reported here; StatusDiffer owns those.
    """

    def diff(
        self, known: list[CourseSnapshot], snapshot: list[CourseSnapshot]
    ) -> ExistenceDiff:
        known_by_key = {c.key: c for c in known}
        current = _unique_by_key(snapshot)

        added = [item for key, item in current.items() if key not in known_by_key]
        removed = [item for key, item in known_by_key.items() if key not in current]

        for item in added:
            logger.info("course_added", key=item.key, name=item.course_name)
        for item in removed:
            logger.info("course_removed", key=item.key, name=item.course_name)

        logger.info(
            "existence_diff_complete",
            known_count=len(known_by_key),
            snapshot_count=len(current),
            added_count=len(added),
            removed_count=len(removed),
        )

        return ExistenceDiff(items=list(current.values()), added=added, removed=removed)
