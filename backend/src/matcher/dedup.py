from __future__ import annotations

import structlog

from backend.src.contracts.interfaces import IDedupCache
from backend.src.contracts.models import SIMILAR_SOURCES, Match, TriggerSource

logger = structlog.get_logger(__name__)

DEFAULT_DEDUP_TTL_SECONDS = 24 * 60 * 60


class SimilarMatchDeduplicator:
    """Stop similar-section matches from re-firing within the dedup window.

    Direct watches fire only on genuine flips, so they pass straight through.
    For similar matches the dedup key is claimed (SET NX EX) before the match
    reaches a batch; a lost claim strips the similar sources and drops the
    match if nothing else is left.
    """

    def __init__(self, dedup_cache: IDedupCache, ttl_seconds: int = DEFAULT_DEDUP_TTL_SECONDS) -> None:
        self._cache = dedup_cache
        self._ttl_seconds = ttl_seconds

    async def filter(self, matches: list[Match]) -> list[Match]:
        kept: list[Match] = []
        suppressed = 0

        for match in matches:
            if TriggerSource.SIMILAR_COURSE not in match.trigger_sources:
                kept.append(match)
                continue

            claimed = await self._cache.claim(
                match.subscriber.id, match.transition.key, self._ttl_seconds
            )
            if claimed:
                kept.append(match)
                continue

            suppressed += 1
            remaining = match.trigger_sources - SIMILAR_SOURCES
            logger.info(
                "similar_match_suppressed",
                subscriber_id=match.subscriber.id,
                key=match.transition.key,
                remaining_sources=sorted(s.value for s in remaining),
            )
            if remaining:
                kept.append(match.model_copy(update={"trigger_sources": remaining}))

        logger.info("dedup_complete", matches_count=len(matches), suppressed_count=suppressed)
        return kept
