from __future__ import annotations

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.src.contracts.models import ChangeRecord, Direction, Notification, Subscriber, TriggerSource
from backend.src.notifications.repository import NotificationRepository

logger = structlog.get_logger(__name__)

TRIGGER_LABELS: dict[TriggerSource, str] = {
    TriggerSource.DIRECT_WATCH: "Watched section",
    TriggerSource.SIMILAR_COURSE: "Alternative section",
    TriggerSource.NEWLY_OPENED: "Newly opened",
}


def trigger_labels(sources: set[TriggerSource]) -> str:
    return " | ".join(label for source, label in TRIGGER_LABELS.items() if source in sources)


def build_inbox_message(record: ChangeRecord) -> str:
    """Plain-text inbox line for one change, e.g. ``Opened: Data Structures (CS201 - section 2)``."""
    item = record.item
    status = "Opened" if record.direction == Direction.OPENED else "Closed"
    lines = [
        f"{status}: {item.course_name} ({item.course_code} - section {item.section})",
        trigger_labels(record.trigger_sources),
    ]
    schedule = " | ".join(part for part in (item.time, item.days) if part)
    if schedule:
        lines.append(schedule)
    if item.instructor:
        lines.append(item.instructor)
    return "\n".join(lines)


class WebInboxNotifier:
    """Channel notifier that writes one inbox row per change record."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def send(self, subscriber: Subscriber, records: list[ChangeRecord]) -> bool:
        log = logger.bind(user_id=subscriber.id, channel="web_inbox")

        rows = [
            Notification(
                user_id=subscriber.id,
                watchlist_id=record.watch_rule_id,
                course_code=record.item.course_code,
                section=record.item.section,
                message=build_inbox_message(record),
                type=record.direction.value,
                trigger_sources=sorted(s.value for s in record.trigger_sources),
                is_read=False,
            )
            for record in records
        ]

        try:
            async with self._session_factory() as session:
                await NotificationRepository(session).add_many(rows)
                await session.commit()
        except Exception as exc:  # noqa: BLE001
            log.error("web_inbox_write_failed", error=str(exc))
            return False

        log.info("web_inbox_written", count=len(rows))
        return True
