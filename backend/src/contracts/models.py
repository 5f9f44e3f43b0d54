from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from sqlalchemy import JSON, Boolean, DateTime, Enum, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from backend.src.contracts.schedule import Weekday, normalise_time_range, parse_days

_JSON = JSON().with_variant(JSONB(), "postgresql")


# ── Enums ──────────────────────────────────────────────────────────────────────


class Direction(str, enum.Enum):
    OPENED = "opened"
    CLOSED = "closed"


class TriggerSource(str, enum.Enum):
    DIRECT_WATCH = "direct_watch"
    SIMILAR_COURSE = "similar_course"
    NEWLY_OPENED = "newly_opened"


SIMILAR_SOURCES: frozenset[TriggerSource] = frozenset(
    {TriggerSource.SIMILAR_COURSE, TriggerSource.NEWLY_OPENED}
)


class AdminChangeKind(str, enum.Enum):
    ADDED = "added"
    OPENED = "opened"
    CLOSED = "closed"
    REMOVED = "removed"


class Platform(str, enum.Enum):
    WEB = "web"
    IOS = "ios"


class BatchState(str, enum.Enum):
    COLLECTING = "collecting"
    READY = "ready"
    DISPATCHING = "dispatching"
    DONE = "done"


# ── Pydantic schemas ──────────────────────────────────────────────────────────


def course_key(course_code: str, section: str, period: str = "") -> str:
    return f"{course_code}:{section}:{period}"


class CourseSnapshot(BaseModel):
    course_code: str
    section: str
    period: str = ""
    course_name: str
    is_open: bool
    days: str = ""
    time: str = ""
    faculty: str = ""
    instructor: str = ""
    room: str = ""
    first_opened_at: datetime | None = None

    @property
    def key(self) -> str:
        return course_key(self.course_code, self.section, self.period)


class Transition(BaseModel):
    item: CourseSnapshot
    direction: Direction

    @property
    def key(self) -> str:
        return self.item.key


class FilterRule(BaseModel):
    """One similar-section filter: a days pattern plus optional allowed times."""

    model_config = ConfigDict(frozen=True)

    days: frozenset[Weekday]
    times: frozenset[str] = frozenset()

    @field_validator("days", mode="before")
    @classmethod
    def _parse_days(cls, value: Any) -> Any:
        if isinstance(value, str):
            return parse_days(value)
        if isinstance(value, (list, tuple, set, frozenset)):
            return parse_days(" ".join(str(v.value if isinstance(v, Weekday) else v) for v in value))
        raise ValueError("days must be a string or a list of day tokens")

    @field_validator("times", mode="before")
    @classmethod
    def _normalise_times(cls, value: Any) -> Any:
        if value is None:
            return frozenset()
        if isinstance(value, str):
            raise ValueError("times must be a list of time ranges")
        return frozenset(normalise_time_range(str(t)) for t in value if str(t).strip())

    def matches(self, days: frozenset[Weekday], time: str) -> bool:
        if days != self.days:
            return False
        if not self.times:
            return True
        return normalise_time_range(time) in self.times


class SimilarFilters(BaseModel):
    """Validated form of a watchlist's stored similar-section filters.

    ``rules`` holds every stored entry that validated; ``malformed`` counts the
    ones that did not. Only a watchlist with neither is unrestricted; a
    malformed entry is a rule that never matches.
    """

    rules: list[FilterRule] = Field(default_factory=list)
    malformed: int = 0

    @classmethod
    def from_raw(cls, raw: Any) -> SimilarFilters:
        if raw is None:
            return cls()
        if not isinstance(raw, list):
            return cls(malformed=1)

        rules: list[FilterRule] = []
        malformed = 0
        for entry in raw:
            try:
                rules.append(FilterRule.model_validate(entry))
            except ValidationError:
                malformed += 1
        return cls(rules=rules, malformed=malformed)

    @property
    def is_unrestricted(self) -> bool:
        return not self.rules and self.malformed == 0


class PushDevice(BaseModel):
    id: int
    device_token: str
    platform: Platform


class Subscriber(BaseModel):
    id: int
    email: str
    username: str = ""
    is_email_verified: bool = False
    notify_on_open: bool = True
    notify_on_close: bool = False
    notify_on_similar: bool = False
    notify_by_email: bool = True
    notify_by_web: bool = True
    notify_by_push: bool = False
    devices: list[PushDevice] = Field(default_factory=list)
    is_admin: bool = False
    watch_all_courses: bool = False

    @property
    def email_eligible(self) -> bool:
        return self.notify_by_email and self.is_email_verified

    @property
    def push_eligible(self) -> bool:
        return self.notify_by_push and bool(self.devices)


class WatchRule(BaseModel):
    id: int
    subscriber_id: int
    subscriber: Subscriber | None = None
    item_key: str
    course_name: str
    notify_on_similar: bool = True
    similar_filters: SimilarFilters = Field(default_factory=SimilarFilters)
    newly_opened_only: bool = False
    added_at: datetime | None = None


class Match(BaseModel):
    subscriber: Subscriber
    transition: Transition
    trigger_sources: set[TriggerSource]
    watch_rule_id: int | None = None


class ChangeRecord(BaseModel):
    item: CourseSnapshot
    direction: Direction
    trigger_sources: set[TriggerSource]
    watch_rule_id: int | None = None


class AdminChange(BaseModel):
    kind: AdminChangeKind
    item: CourseSnapshot


class AdminSummary(BaseModel):
    added: list[CourseSnapshot] = Field(default_factory=list)
    opened: list[CourseSnapshot] = Field(default_factory=list)
    closed: list[CourseSnapshot] = Field(default_factory=list)
    removed: list[CourseSnapshot] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.added) + len(self.opened) + len(self.closed) + len(self.removed)


class ExistenceDiff(BaseModel):
    items: list[CourseSnapshot]
    added: list[CourseSnapshot] = Field(default_factory=list)
    removed: list[CourseSnapshot] = Field(default_factory=list)


class StatusDiff(BaseModel):
    """Transitions found in a snapshot and the status cache writes they imply.

    Nothing is written until the diff is committed.
    """

    transitions: list[Transition] = Field(default_factory=list)
    pending_writes: dict[str, bool] = Field(default_factory=dict)


class PassResult(BaseModel):
    pass_id: str
    items_seen: int
    added: int
    removed: int
    transitions: int
    subscribers_notified: int
    admin_summaries_sent: int


class WebNotificationRead(BaseModel):
    id: int
    course_code: str
    section: str
    message: str
    type: Direction
    trigger_sources: list[TriggerSource]
    is_read: bool
    created_at: datetime | None = None


# ── SQLAlchemy ORM ─────────────────────────────────────────────────────────────


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    username: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    is_email_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False)
    watch_all_courses: Mapped[bool] = mapped_column(Boolean, default=False)
    notify_on_open: Mapped[bool] = mapped_column(Boolean, default=True)
    notify_on_close: Mapped[bool] = mapped_column(Boolean, default=False)
    notify_on_similar: Mapped[bool] = mapped_column(Boolean, default=False)
    notify_by_email: Mapped[bool] = mapped_column(Boolean, default=True)
    notify_by_web: Mapped[bool] = mapped_column(Boolean, default=True)
    notify_by_push: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    devices: Mapped[list["DeviceRegistration"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    watchlists: Mapped[list["Watchlist"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )

    def to_subscriber(self) -> Subscriber:
        return Subscriber(
            id=self.id,
            email=self.email,
            username=self.username,
            is_email_verified=self.is_email_verified,
            notify_on_open=self.notify_on_open,
            notify_on_close=self.notify_on_close,
            notify_on_similar=self.notify_on_similar,
            notify_by_email=self.notify_by_email,
            notify_by_web=self.notify_by_web,
            notify_by_push=self.notify_by_push,
            devices=[
                PushDevice(id=d.id, device_token=d.device_token, platform=Platform(d.platform))
                for d in self.devices
            ],
            is_admin=self.is_admin,
            watch_all_courses=self.watch_all_courses,
        )


class Course(Base):
    __tablename__ = "courses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    course_code: Mapped[str] = mapped_column(String(50), nullable=False)
    section: Mapped[str] = mapped_column(String(20), nullable=False)
    period: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    course_name: Mapped[str] = mapped_column(String(500), nullable=False)
    is_open: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    days: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    time: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    faculty: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    instructor: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    room: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    first_opened_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_courses_identity", "course_code", "section", "period", unique=True),
        Index("ix_courses_course_name", "course_name"),
    )

    @property
    def key(self) -> str:
        return course_key(self.course_code, self.section, self.period)

    def to_schema(self) -> CourseSnapshot:
        return CourseSnapshot(
            course_code=self.course_code,
            section=self.section,
            period=self.period,
            course_name=self.course_name,
            is_open=self.is_open,
            days=self.days,
            time=self.time,
            faculty=self.faculty,
            instructor=self.instructor,
            room=self.room,
            first_opened_at=self.first_opened_at,
        )


class Watchlist(Base):
    __tablename__ = "watchlists"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    course_code: Mapped[str] = mapped_column(String(50), nullable=False)
    section: Mapped[str] = mapped_column(String(20), nullable=False)
    period: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    course_name: Mapped[str] = mapped_column(String(500), nullable=False)
    notify_on_similar: Mapped[bool] = mapped_column(Boolean, default=True)
    # [{"days": "ن ر", "times": ["08:00 AM   إلى   09:30 AM"]}, ...]; null or [] = no filtering
    similar_filters: Mapped[Any] = mapped_column(_JSON, nullable=True)
    similar_filter_newly_opened: Mapped[bool] = mapped_column(Boolean, default=False)
    added_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    user: Mapped["User | None"] = relationship(back_populates="watchlists")

    __table_args__ = (Index("ix_watchlists_user_id", "user_id"),)

    def to_watch_rule(self) -> WatchRule:
        return WatchRule(
            id=self.id,
            subscriber_id=self.user_id,
            subscriber=self.user.to_subscriber() if self.user is not None else None,
            item_key=course_key(self.course_code, self.section, self.period),
            course_name=self.course_name,
            notify_on_similar=self.notify_on_similar,
            similar_filters=SimilarFilters.from_raw(self.similar_filters),
            newly_opened_only=self.similar_filter_newly_opened,
            added_at=self.added_at,
        )


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    watchlist_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("watchlists.id", ondelete="SET NULL"), nullable=True
    )
    course_code: Mapped[str] = mapped_column(String(50), nullable=False)
    section: Mapped[str] = mapped_column(String(20), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(
        Enum(Direction, name="direction_enum", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    trigger_sources: Mapped[list] = mapped_column(_JSON, nullable=False, default=list)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (Index("ix_notifications_user_id_is_read", "user_id", "is_read"),)

    def to_schema(self) -> WebNotificationRead:
        return WebNotificationRead(
            id=self.id,
            course_code=self.course_code,
            section=self.section,
            message=self.message,
            type=Direction(self.type),
            trigger_sources=[TriggerSource(s) for s in self.trigger_sources],
            is_read=self.is_read,
            created_at=self.created_at,
        )


class DeviceRegistration(Base):
    __tablename__ = "device_registrations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    device_token: Mapped[str] = mapped_column(String(1000), nullable=False)
    platform: Mapped[str] = mapped_column(
        Enum(Platform, name="platform_enum", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    user: Mapped["User"] = relationship(back_populates="devices")

    __table_args__ = (
        Index("ix_device_registrations_user_id", "user_id"),
    )
