from __future__ import annotations

import structlog

from backend.src.contracts.interfaces import IAdminSink, ISubscriptionIndex
from backend.src.contracts.models import (
    AdminChange,
    AdminChangeKind,
    AdminSummary,
    CourseSnapshot,
    Direction,
    Transition,
)

logger = structlog.get_logger(__name__)


class AdminChangeAccumulator:
    """Catalog-wide changes seen during one pass.

    Created fresh for every pass and dropped with it; nothing carries over
    to the next pass.
    """

    def __init__(self) -> None:
        self._changes: list[AdminChange] = []

    def __len__(self) -> int:
        return len(self._changes)

    def record(self, kind: AdminChangeKind, item: CourseSnapshot) -> None:
        self._changes.append(AdminChange(kind=kind, item=item))

    def record_added(self, items: list[CourseSnapshot]) -> None:
        for item in items:
            self.record(AdminChangeKind.ADDED, item)

    def record_removed(self, items: list[CourseSnapshot]) -> None:
        for item in items:
            self.record(AdminChangeKind.REMOVED, item)

    def record_transitions(self, transitions: list[Transition]) -> None:
        for transition in transitions:
            kind = (
                AdminChangeKind.OPENED
                if transition.direction == Direction.OPENED
                else AdminChangeKind.CLOSED
            )
            self.record(kind, transition.item)

    def summary(self) -> AdminSummary:
        summary = AdminSummary()
        buckets = {
            AdminChangeKind.ADDED: summary.added,
            AdminChangeKind.OPENED: summary.opened,
            AdminChangeKind.CLOSED: summary.closed,
            AdminChangeKind.REMOVED: summary.removed,
        }
        for change in self._changes:
            buckets[change.kind].append(change.item)
        return summary

    def clear(self) -> None:
        self._changes.clear()


class AdminFanout:
    """Send one aggregate change summary per opted-in administrator."""

    def __init__(self, subscription_index: ISubscriptionIndex, sink: IAdminSink) -> None:
        self._index = subscription_index
        self._sink = sink

    async def flush(self, accumulator: AdminChangeAccumulator) -> int:
        """Send the summary to every eligible admin, then clear the accumulator.

        Returns the number of summaries delivered.
        """
        if not len(accumulator):
            logger.info("admin_flush_nothing_queued")
            return 0

        summary = accumulator.summary()
        try:
            admins = [
                a
                for a in await self._index.list_admin_recipients()
                if a.is_admin and a.watch_all_courses and a.is_email_verified
            ]

            if not admins:
                logger.info("admin_flush_no_recipients", changes_count=summary.total)
                return 0

            logger.info(
                "admin_flush_start",
                admins_count=len(admins),
                added=len(summary.added),
                opened=len(summary.opened),
                closed=len(summary.closed),
                removed=len(summary.removed),
            )

            sent = 0
            for admin in admins:
                try:
                    if await self._sink.send_admin_summary(admin, summary):
                        sent += 1
                except Exception as exc:  # noqa: BLE001
                    logger.error("admin_summary_failed", user_id=admin.id, error=str(exc))

            logger.info("admin_flush_complete", sent=sent, admins_count=len(admins))
            return sent
        finally:
            accumulator.clear()
