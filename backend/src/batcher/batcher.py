from __future__ import annotations

import structlog

from backend.src.contracts.errors import BatchStateError
from backend.src.contracts.models import BatchState, ChangeRecord, Match, Subscriber

logger = structlog.get_logger(__name__)

_NEXT_STATE: dict[BatchState, BatchState] = {
    BatchState.COLLECTING: BatchState.READY,
    BatchState.READY: BatchState.DISPATCHING,
    BatchState.DISPATCHING: BatchState.DONE,
}


class SubscriberBatch:
    """One subscriber's change records for a single pass, one per course."""

    def __init__(self, subscriber: Subscriber) -> None:
        self.subscriber = subscriber
        self.state = BatchState.COLLECTING
        self._records: dict[str, ChangeRecord] = {}

    @property
    def records(self) -> list[ChangeRecord]:
        return list(self._records.values())

    def __len__(self) -> int:
        return len(self._records)

    def add(self, match: Match) -> None:
        if self.state != BatchState.COLLECTING:
            raise BatchStateError(
                f"batch for subscriber {self.subscriber.id} is {self.state.value}, not collecting"
            )

        key = match.transition.key
        existing = self._records.get(key)
        if existing is not None:
            existing.trigger_sources |= match.trigger_sources
            return

        self._records[key] = ChangeRecord(
            item=match.transition.item,
            direction=match.transition.direction,
            trigger_sources=set(match.trigger_sources),
            watch_rule_id=match.watch_rule_id,
        )

    def advance(self, target: BatchState) -> None:
        if _NEXT_STATE.get(self.state) != target:
            raise BatchStateError(
                f"batch for subscriber {self.subscriber.id} cannot move "
                f"from {self.state.value} to {target.value}"
            )
        self.state = target


class PassBatcher:
    """Accumulate matches per subscriber for the whole pass."""

    def __init__(self) -> None:
        self._batches: dict[int, SubscriberBatch] = {}

    def add(self, match: Match) -> None:
        batch = self._batches.get(match.subscriber.id)
        if batch is None:
            batch = SubscriberBatch(match.subscriber)
            self._batches[match.subscriber.id] = batch
        batch.add(match)

    def add_all(self, matches: list[Match]) -> None:
        for match in matches:
            self.add(match)

    def close(self) -> list[SubscriberBatch]:
        """Mark every non-empty batch ready for dispatch and return them."""
        ready: list[SubscriberBatch] = []
        for batch in self._batches.values():
            if not len(batch):
                continue
            batch.advance(BatchState.READY)
            ready.append(batch)

        logger.info(
            "batches_ready",
            subscribers_count=len(ready),
            records_count=sum(len(b) for b in ready),
        )
        return ready
