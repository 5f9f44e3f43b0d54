from __future__ import annotations

import pytest

from backend.src.admin.fanout import AdminFanout
from backend.src.contracts.errors import CacheUnavailableError, CatalogUnavailableError
from backend.src.contracts.models import CourseSnapshot, Direction, Subscriber, TriggerSource, WatchRule
from backend.src.notifier.registry import NotifierRegistry
from backend.src.pipeline.alert_pass import AlertPass
from backend.tests.fakes import (
    InMemoryCatalogStore,
    InMemoryDedupCache,
    InMemoryStatusCache,
    InMemorySubscriptionIndex,
    RecordingAdminSink,
    RecordingNotifier,
    StaticCatalogProvider,
    make_course,
    make_rule,
    make_subscriber,
)


class Harness:
    """An AlertPass wired entirely to in-memory collaborators."""

    def __init__(
        self,
        snapshot: list[CourseSnapshot],
        cached: dict[str, bool] | None = None,
        rules: list[WatchRule] | None = None,
        admins: list[Subscriber] | None = None,
    ) -> None:
        self.provider = StaticCatalogProvider(snapshot)
        self.store = InMemoryCatalogStore(snapshot if cached else None)
        self.status_cache = InMemoryStatusCache(cached)
        self.dedup_cache = InMemoryDedupCache()
        self.index = InMemorySubscriptionIndex(rules, admins)
        self.web_inbox = RecordingNotifier()
        self.email = RecordingNotifier()
        self.web_push = RecordingNotifier()
        self.apns = RecordingNotifier()
        self.admin_sink = RecordingAdminSink()

    def build(self) -> AlertPass:
        return AlertPass(
            catalog_provider=self.provider,
            catalog_store=self.store,
            status_cache=self.status_cache,
            dedup_cache=self.dedup_cache,
            subscription_index=self.index,
            registry=NotifierRegistry(
                web_inbox_notifier=self.web_inbox,
                email_notifier=self.email,
                web_push_notifier=self.web_push,
                apns_notifier=self.apns,
            ),
            admin_fanout=AdminFanout(self.index, self.admin_sink),
            dedup_ttl_seconds=86400,
        )


class TestDirectWatchPass:
    @pytest.mark.asyncio
    async def test_closed_to_open_notifies_watcher(self) -> None:
        subscriber = make_subscriber()
        harness = Harness(
            snapshot=[make_course(is_open=True)],
            cached={"CS201:1:": False},
            rules=[make_rule(10, subscriber)],
        )

        result = await harness.build().run()

        assert result.transitions == 1
        assert result.subscribers_notified == 1
        records = harness.web_inbox.records_for(1)
        assert len(records) == 1
        assert records[0].item.key == "CS201:1:"
        assert records[0].direction == Direction.OPENED
        assert records[0].trigger_sources == {TriggerSource.DIRECT_WATCH}
        assert len(harness.email.sent) == 1
        assert harness.email.records_for(1)[0].item.key == "CS201:1:"

    @pytest.mark.asyncio
    async def test_second_run_without_change_is_silent(self) -> None:
        harness = Harness(
            snapshot=[make_course(is_open=True)],
            cached={"CS201:1:": False},
            rules=[make_rule(10, make_subscriber())],
        )
        alert_pass = harness.build()

        await alert_pass.run()
        second = await alert_pass.run()

        assert second.transitions == 0
        assert len(harness.web_inbox.sent) == 1

    @pytest.mark.asyncio
    async def test_several_changes_arrive_as_one_batch(self) -> None:
        subscriber = make_subscriber(notify_on_close=True)
        harness = Harness(
            snapshot=[
                make_course(section="1", is_open=True),
                make_course(section="2", is_open=False),
            ],
            cached={"CS201:1:": False, "CS201:2:": True},
            rules=[make_rule(10, subscriber, section="1"), make_rule(11, subscriber, section="2")],
        )

        await harness.build().run()

        assert len(harness.email.sent) == 1
        assert {r.direction for r in harness.email.records_for(1)} == {
            Direction.OPENED,
            Direction.CLOSED,
        }


class TestSimilarPass:
    @pytest.mark.asyncio
    async def test_unfiltered_similar_section(self) -> None:
        subscriber = make_subscriber(notify_on_similar=True)
        harness = Harness(
            snapshot=[
                make_course(course_code="CS101", section="1", is_open=False, course_name="Intro"),
                make_course(course_code="CS101", section="2", is_open=True, course_name="Intro"),
            ],
            cached={"CS101:1:": False, "CS101:2:": False},
            rules=[make_rule(10, subscriber, course_code="CS101", section="1", course_name="Intro")],
        )

        await harness.build().run()

        records = harness.web_inbox.records_for(1)
        assert [r.item.key for r in records] == ["CS101:2:"]
        assert records[0].trigger_sources == {TriggerSource.SIMILAR_COURSE}

    @pytest.mark.asyncio
    async def test_filtered_out_similar_section(self) -> None:
        subscriber = make_subscriber(notify_on_similar=True)
        harness = Harness(
            snapshot=[
                make_course(
                    course_code="CS101",
                    section="2",
                    is_open=True,
                    course_name="Intro",
                    days="Tue Thu",
                    time="09:00-10:00",
                ),
            ],
            cached={"CS101:2:": False},
            rules=[
                make_rule(
                    10,
                    subscriber,
                    course_code="CS101",
                    section="1",
                    course_name="Intro",
                    similar_filters=[{"days": "Mon Wed", "times": ["10:00-11:00"]}],
                )
            ],
        )

        result = await harness.build().run()

        assert result.transitions == 1
        assert result.subscribers_notified == 0
        assert harness.web_inbox.sent == []

    @pytest.mark.asyncio
    async def test_similar_reopening_within_window_is_suppressed(self) -> None:
        subscriber = make_subscriber(notify_on_similar=True)
        harness = Harness(
            snapshot=[make_course(section="2", is_open=True)],
            cached={"CS201:2:": False},
            rules=[make_rule(10, subscriber, section="1")],
        )
        alert_pass = harness.build()

        await alert_pass.run()
        harness.provider.items = [make_course(section="2", is_open=False)]
        await alert_pass.run()
        harness.provider.items = [make_course(section="2", is_open=True)]
        reopened = await alert_pass.run()

        assert reopened.transitions == 1
        assert reopened.subscribers_notified == 0
        assert len(harness.web_inbox.sent) == 1


class TestAdminSummaryPass:
    @pytest.mark.asyncio
    async def test_each_admin_gets_one_summary(self) -> None:
        admins = [
            make_subscriber(100, is_admin=True, watch_all_courses=True),
            make_subscriber(101, is_admin=True, watch_all_courses=True),
        ]
        harness = Harness(
            snapshot=[make_course(section="1", is_open=False), make_course(section="2", is_open=True)],
            cached={"CS201:1:": False, "CS201:2:": True},
            admins=admins,
        )
        harness.provider.items = [
            make_course(section="1", is_open=True),
            make_course(section="2", is_open=False),
            make_course(section="3", is_open=True),
            make_course(section="4", is_open=False),
        ]

        result = await harness.build().run()

        assert result.added == 2
        assert result.transitions == 2
        assert result.admin_summaries_sent == 2
        assert [a.id for a, _ in harness.admin_sink.sent] == [100, 101]
        summary = harness.admin_sink.sent[0][1]
        assert summary.total == 4
        assert [c.section for c in summary.added] == ["3", "4"]
        assert [c.section for c in summary.opened] == ["1"]
        assert [c.section for c in summary.closed] == ["2"]

    @pytest.mark.asyncio
    async def test_quiet_pass_sends_no_summary(self) -> None:
        harness = Harness(
            snapshot=[make_course(is_open=True)],
            cached={"CS201:1:": True},
            admins=[make_subscriber(100, is_admin=True, watch_all_courses=True)],
        )

        result = await harness.build().run()

        assert result.admin_summaries_sent == 0
        assert harness.admin_sink.sent == []

    @pytest.mark.asyncio
    async def test_removed_course_is_reported(self) -> None:
        harness = Harness(
            snapshot=[make_course(section="1"), make_course(section="2")],
            cached={"CS201:1:": True, "CS201:2:": True},
            admins=[make_subscriber(100, is_admin=True, watch_all_courses=True)],
        )
        harness.provider.items = [make_course(section="1")]

        result = await harness.build().run()

        assert result.removed == 1
        assert [c.section for c in harness.admin_sink.sent[0][1].removed] == ["2"]


class TestAbortedPass:
    @pytest.mark.asyncio
    async def test_unreachable_dedup_cache_writes_nothing(self) -> None:
        harness = Harness(
            snapshot=[make_course(is_open=True)],
            cached={"CS201:1:": False},
            rules=[make_rule(10, make_subscriber())],
            admins=[make_subscriber(100, is_admin=True, watch_all_courses=True)],
        )
        harness.dedup_cache.available = False
        alert_pass = harness.build()

        with pytest.raises(CacheUnavailableError):
            await alert_pass.run()

        assert harness.status_cache.writes == []
        assert harness.store.apply_calls == 0
        assert harness.web_inbox.sent == []
        assert harness.admin_sink.sent == []

        harness.dedup_cache.available = True
        retried = await alert_pass.run()

        assert retried.transitions == 1
        assert len(harness.web_inbox.sent) == 1
        assert len(harness.admin_sink.sent) == 1

    @pytest.mark.asyncio
    async def test_dedup_cache_dropping_mid_pass_writes_nothing(self) -> None:
        watcher = make_subscriber(1, notify_on_similar=True)
        direct = make_subscriber(2)
        harness = Harness(
            snapshot=[make_course(section="1", is_open=False), make_course(section="2", is_open=False)],
            cached={"CS201:1:": False, "CS201:2:": False},
            rules=[make_rule(10, watcher, section="1"), make_rule(20, direct, section="2")],
            admins=[make_subscriber(100, is_admin=True, watch_all_courses=True)],
        )
        harness.provider.items = [
            make_course(section="1", is_open=False),
            make_course(section="2", is_open=True),
            make_course(section="3", is_open=True),
        ]
        harness.dedup_cache.fail_writes = True
        alert_pass = harness.build()

        with pytest.raises(CacheUnavailableError):
            await alert_pass.run()

        assert harness.status_cache.writes == []
        assert harness.store.apply_calls == 0
        assert harness.web_inbox.sent == []
        assert harness.admin_sink.sent == []

        harness.dedup_cache.fail_writes = False
        retried = await alert_pass.run()

        assert retried.transitions == 1
        assert retried.added == 1
        assert [r.item.key for r in harness.web_inbox.records_for(2)] == ["CS201:2:"]
        assert harness.web_inbox.records_for(2)[0].trigger_sources == {TriggerSource.DIRECT_WATCH}
        assert harness.web_inbox.records_for(1)[0].trigger_sources == {TriggerSource.SIMILAR_COURSE}
        summary = harness.admin_sink.sent[0][1]
        assert [c.section for c in summary.added] == ["3"]
        assert [c.section for c in summary.opened] == ["2"]
        assert harness.status_cache.values["CS201:2:"] is True
        assert harness.status_cache.values["CS201:3:"] is True

    @pytest.mark.asyncio
    async def test_unreachable_status_cache_aborts(self) -> None:
        harness = Harness(snapshot=[make_course()], cached={"CS201:1:": False})
        harness.status_cache.available = False

        with pytest.raises(CacheUnavailableError):
            await harness.build().run()

        assert harness.store.apply_calls == 0

    @pytest.mark.asyncio
    async def test_catalog_failure_aborts_before_cache_writes(self) -> None:
        harness = Harness(snapshot=[make_course()], cached={"CS201:1:": False})
        harness.provider.fail = True

        with pytest.raises(CatalogUnavailableError):
            await harness.build().run()

        assert harness.status_cache.writes == []

    @pytest.mark.asyncio
    async def test_empty_snapshot_is_skipped(self) -> None:
        harness = Harness(snapshot=[make_course()], cached={"CS201:1:": True})
        harness.provider.items = []

        result = await harness.build().run()

        assert result.items_seen == 0
        assert harness.store.apply_calls == 0
        assert harness.status_cache.writes == []

    @pytest.mark.asyncio
    async def test_failing_channel_does_not_abort_pass(self) -> None:
        harness = Harness(
            snapshot=[make_course(is_open=True)],
            cached={"CS201:1:": False},
            rules=[make_rule(10, make_subscriber(1)), make_rule(20, make_subscriber(2))],
        )
        harness.email = RecordingNotifier(raise_for={1})

        result = await harness.build().run()

        assert result.subscribers_notified == 2
        assert [s.id for s, _ in harness.email.sent] == [2]
        assert len(harness.web_inbox.sent) == 2
