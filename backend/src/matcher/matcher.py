from __future__ import annotations

from datetime import datetime, timezone

import structlog

from backend.src.contracts.models import (
    CourseSnapshot,
    Direction,
    Match,
    SimilarFilters,
    Subscriber,
    Transition,
    TriggerSource,
    WatchRule,
)
from backend.src.contracts.schedule import try_parse_days

logger = structlog.get_logger(__name__)

RulesBySubscriber = dict[int, tuple[Subscriber, list[WatchRule]]]


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _matches_similar_filters(filters: SimilarFilters, item: CourseSnapshot) -> bool:
    """Check a course's schedule against a watchlist's similar-section filters.

    OR across rules, AND of days and times within a rule. No filters at all
    matches every course; a course whose days cannot be read matches none.
    """
    if filters.is_unrestricted:
        return True
    if not filters.rules:
        return False

    days = try_parse_days(item.days)
    if days is None:
        return False

    return any(rule.matches(days, item.time) for rule in filters.rules)


def _is_newly_opened(item: CourseSnapshot, rule: WatchRule) -> bool:
    """True only if the course first opened strictly after the rule was added."""
    if item.first_opened_at is None or rule.added_at is None:
        return False
    return _as_utc(item.first_opened_at) > _as_utc(rule.added_at)


def group_rules_by_subscriber(rules: list[WatchRule]) -> RulesBySubscriber:
    grouped: RulesBySubscriber = {}
    for rule in rules:
        if rule.subscriber is None:
            logger.warning(
                "orphaned_watch_rule_skipped",
                watch_rule_id=rule.id,
                subscriber_id=rule.subscriber_id,
            )
            continue
        if rule.subscriber_id not in grouped:
            grouped[rule.subscriber_id] = (rule.subscriber, [])
        grouped[rule.subscriber_id][1].append(rule)
    return grouped


class WatchMatcher:
    """Decide which subscribers care about a transition, and why.

    Matching rules:
    - Direct watch: the watchlist names the transitioned course; gated on the
      subscriber's notify_on_open / notify_on_close toggle
    - Similar course (opened only): the watchlist names another section with
      the same course name; requires the subscriber's and the watchlist's
      notify_on_similar, the watchlist's day/time filters, and, when
      newly_opened_only is set, a first opening after the watchlist was added

    All watchlists of one subscriber collapse into a single Match.
    """

    def match(self, transition: Transition, rules_by_subscriber: RulesBySubscriber) -> list[Match]:
        matches: list[Match] = []

        for subscriber, rules in rules_by_subscriber.values():
            sources: set[TriggerSource] = set()
            watch_rule_id: int | None = None

            for rule in rules:
                matched = self._match_rule(transition, subscriber, rule)
                if not matched:
                    continue
                if watch_rule_id is None or TriggerSource.DIRECT_WATCH in matched:
                    watch_rule_id = rule.id
                sources |= matched

            if not sources:
                continue

            logger.info(
                "subscriber_matched",
                subscriber_id=subscriber.id,
                key=transition.key,
                direction=transition.direction.value,
                trigger_sources=sorted(s.value for s in sources),
            )
            matches.append(
                Match(
                    subscriber=subscriber,
                    transition=transition,
                    trigger_sources=sources,
                    watch_rule_id=watch_rule_id,
                )
            )

        return matches

    def match_all(self, transitions: list[Transition], rules: list[WatchRule]) -> list[Match]:
        grouped = group_rules_by_subscriber(rules)
        matches: list[Match] = []
        for transition in transitions:
            matches.extend(self.match(transition, grouped))

        logger.info(
            "matching_complete",
            transitions_count=len(transitions),
            subscribers_count=len(grouped),
            matches_count=len(matches),
        )
        return matches

    def _match_rule(
        self,
        transition: Transition,
        subscriber: Subscriber,
        rule: WatchRule,
    ) -> set[TriggerSource]:
        item = transition.item

        if rule.item_key == item.key:
            wanted = (
                subscriber.notify_on_open
                if transition.direction == Direction.OPENED
                else subscriber.notify_on_close
            )
            return {TriggerSource.DIRECT_WATCH} if wanted else set()

        if transition.direction != Direction.OPENED:
            return set()
        if rule.course_name.strip() != item.course_name.strip():
            return set()
        if not (subscriber.notify_on_similar and rule.notify_on_similar):
            return set()

        if not _matches_similar_filters(rule.similar_filters, item):
            logger.debug(
                "similar_filtered_out",
                subscriber_id=subscriber.id,
                watch_rule_id=rule.id,
                key=item.key,
                days=item.days,
                time=item.time,
            )
            return set()

        sources = {TriggerSource.SIMILAR_COURSE}
        if rule.newly_opened_only:
            if not _is_newly_opened(item, rule):
                return set()
            sources.add(TriggerSource.NEWLY_OPENED)

        return sources
