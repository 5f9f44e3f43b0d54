from __future__ import annotations

import asyncio

import structlog

from backend.src.batcher.batcher import SubscriberBatch
from backend.src.contracts.interfaces import IChannelNotifier
from backend.src.contracts.models import BatchState, Platform, Subscriber

logger = structlog.get_logger(__name__)


class NotifierRegistry:
    """Dispatch subscriber batches to the channels each subscriber can receive.

    Every channel is attempted once per batch, concurrently and independently;
    one failing channel or subscriber never blocks the others.
    """

    def __init__(
        self,
        web_inbox_notifier: IChannelNotifier,
        email_notifier: IChannelNotifier,
        web_push_notifier: IChannelNotifier,
        apns_notifier: IChannelNotifier,
        concurrency: int = 10,
    ) -> None:
        self._web_inbox = web_inbox_notifier
        self._email = email_notifier
        self._web_push = web_push_notifier
        self._apns = apns_notifier
        self._concurrency = concurrency

    def _channels_for(self, subscriber: Subscriber) -> dict[str, IChannelNotifier]:
        """Channels a subscriber is enabled and eligible for.

        - ``web_inbox`` when web notifications are on
        - ``email`` when email is on and the address is verified
        - ``web_push`` / ``apns`` when push is on and a device of that
          platform is registered; each pushes once per device, not per record
        """
        channels: dict[str, IChannelNotifier] = {}

        if subscriber.notify_by_web:
            channels["web_inbox"] = self._web_inbox

        if subscriber.email_eligible:
            channels["email"] = self._email

        if subscriber.push_eligible:
            if any(d.platform == Platform.WEB for d in subscriber.devices):
                channels["web_push"] = self._web_push
            if any(d.platform == Platform.IOS for d in subscriber.devices):
                channels["apns"] = self._apns

        return channels

    async def dispatch(self, batch: SubscriberBatch) -> dict[str, bool]:
        """Send one subscriber's batch; returns channel name -> success."""
        subscriber = batch.subscriber
        records = batch.records
        log = logger.bind(user_id=subscriber.id, records_count=len(records))

        batch.advance(BatchState.DISPATCHING)

        tasks: dict[str, asyncio.Task[bool]] = {
            channel: asyncio.create_task(notifier.send(subscriber, records))
            for channel, notifier in self._channels_for(subscriber).items()
        }

        results: dict[str, bool] = {}
        for channel, task in tasks.items():
            try:
                results[channel] = await task
            except Exception as exc:  # noqa: BLE001
                log.error("notify_channel_error", channel=channel, error=str(exc))
                results[channel] = False

        batch.advance(BatchState.DONE)

        if not tasks:
            log.info("notify_no_channels")
        else:
            log.info("notify_complete", results=results)
        return results

    async def dispatch_all(self, batches: list[SubscriberBatch]) -> dict[int, dict[str, bool]]:
        semaphore = asyncio.Semaphore(self._concurrency)

        async def _bounded(batch: SubscriberBatch) -> dict[str, bool]:
            async with semaphore:
                return await self.dispatch(batch)

        outcomes = await asyncio.gather(
            *(_bounded(batch) for batch in batches),
            return_exceptions=True,
        )

        results: dict[int, dict[str, bool]] = {}
        for batch, outcome in zip(batches, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    "dispatch_subscriber_error",
                    user_id=batch.subscriber.id,
                    error=str(outcome),
                )
                results[batch.subscriber.id] = {}
                continue
            results[batch.subscriber.id] = outcome

        return results
