from __future__ import annotations

import uuid

import structlog

from backend.src.admin.fanout import AdminChangeAccumulator, AdminFanout
from backend.src.batcher.batcher import PassBatcher
from backend.src.contracts.interfaces import (
    ICatalogProvider,
    ICatalogStore,
    IDedupCache,
    IStatusCache,
    ISubscriptionIndex,
)
from backend.src.contracts.models import Match, PassResult
from backend.src.differ.differ import StatusDiffer
from backend.src.matcher.dedup import DEFAULT_DEDUP_TTL_SECONDS, SimilarMatchDeduplicator
from backend.src.matcher.matcher import WatchMatcher
from backend.src.notifier.registry import NotifierRegistry

logger = structlog.get_logger(__name__)


class PassContext:
    """State owned by a single pass and discarded with it."""

    def __init__(self) -> None:
        self.pass_id = uuid.uuid4().hex[:12]
        self.admin_changes = AdminChangeAccumulator()


class AlertPass:
    """One complete run: snapshot, detection, matching, dedup, batching,
    dispatch and the admin summary.

    Detection only reads. The catalog rows and status cache writes are
    committed after matching and dedup have run and before dispatch, so a
    cache that fails anywhere up to that point aborts the pass with nothing
    written and the next pass sees the same transitions. Any failure
    discards the pass's admin changes and propagates to the caller.
    """

    def __init__(
        self,
        catalog_provider: ICatalogProvider,
        catalog_store: ICatalogStore,
        status_cache: IStatusCache,
        dedup_cache: IDedupCache,
        subscription_index: ISubscriptionIndex,
        registry: NotifierRegistry,
        admin_fanout: AdminFanout,
        dedup_ttl_seconds: int = DEFAULT_DEDUP_TTL_SECONDS,
    ) -> None:
        self._catalog_provider = catalog_provider
        self._catalog_store = catalog_store
        self._status_cache = status_cache
        self._dedup_cache = dedup_cache
        self._subscription_index = subscription_index
        self._registry = registry
        self._admin_fanout = admin_fanout
        self._status_differ = StatusDiffer(status_cache)
        self._matcher = WatchMatcher()
        self._deduplicator = SimilarMatchDeduplicator(dedup_cache, dedup_ttl_seconds)

    async def run(self) -> PassResult:
        context = PassContext()

        with structlog.contextvars.bound_contextvars(pass_id=context.pass_id):
            logger.info("alert_pass_start")
            try:
                result = await self._run(context)
            except Exception:
                logger.error(
                    "alert_pass_aborted",
                    discarded_admin_changes=len(context.admin_changes),
                    exc_info=True,
                )
                context.admin_changes.clear()
                raise

            logger.info("alert_pass_complete", **result.model_dump(exclude={"pass_id"}))
            return result

    async def _run(self, context: PassContext) -> PassResult:
        # 1. Both caches must answer before the pass starts
        await self._status_cache.ping()
        await self._dedup_cache.ping()

        # 2. Snapshot
        snapshot = await self._catalog_provider.list_all_items()
        if not snapshot:
            logger.warning("empty_snapshot_skipped")
            return PassResult(
                pass_id=context.pass_id,
                items_seen=0,
                added=0,
                removed=0,
                transitions=0,
                subscribers_notified=0,
                admin_summaries_sent=0,
            )

        # 3. Existence diff and open/closed flips, read only
        existence = await self._catalog_store.diff(snapshot)
        status = await self._status_differ.detect(existence.items)
        transitions = status.transitions

        # 4. Match, then claim dedup keys for similar matches
        matches: list[Match] = []
        if transitions:
            rules = await self._subscription_index.list_watch_rules()
            matches = self._matcher.match_all(transitions, rules)
            matches = await self._deduplicator.filter(matches)

        # 5. Commit catalog and status writes, then record the pass's changes
        await self._catalog_store.apply(existence)
        await self._status_differ.commit(status)
        context.admin_changes.record_added(existence.added)
        context.admin_changes.record_removed(existence.removed)
        context.admin_changes.record_transitions(transitions)

        # 6. Batch per subscriber and dispatch
        batcher = PassBatcher()
        batcher.add_all(matches)
        batches = batcher.close()
        if batches:
            await self._registry.dispatch_all(batches)

        # 7. Admin summary
        admin_sent = await self._admin_fanout.flush(context.admin_changes)

        return PassResult(
            pass_id=context.pass_id,
            items_seen=len(existence.items),
            added=len(existence.added),
            removed=len(existence.removed),
            transitions=len(transitions),
            subscribers_notified=len(batches),
            admin_summaries_sent=admin_sent,
        )
