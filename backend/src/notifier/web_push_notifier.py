from __future__ import annotations

import asyncio
import json

import structlog
from pywebpush import WebPushException, webpush

from backend.src.config import Settings
from backend.src.contracts.errors import InvalidDeviceTokenError
from backend.src.contracts.interfaces import IDeviceStore
from backend.src.contracts.models import ChangeRecord, Platform, PushDevice, Subscriber

logger = structlog.get_logger(__name__)

# Push services answer 404/410 for subscriptions that will never work again.
_GONE_STATUS_CODES = frozenset({404, 410})


def build_count_body(count: int) -> str:
    if count == 1:
        return "1 new update in the courses you watch"
    return f"{count} new updates in the courses you watch"


def build_web_push_payload(count: int, frontend_url: str) -> str:
    """Build the JSON payload for a web push; only the count, never the details."""
    return json.dumps(
        {
            "title": "Course Alert",
            "body": build_count_body(count),
            "url": f"{frontend_url}/notifications",
            "type": "batched_notification",
            "count": count,
        },
        ensure_ascii=False,
    )


def _is_gone(exc: WebPushException) -> bool:
    response = getattr(exc, "response", None)
    return response is not None and getattr(response, "status_code", None) in _GONE_STATUS_CODES


class WebPushNotifier:
    """Channel notifier that sends browser push notifications via pywebpush."""

    def __init__(self, settings: Settings, device_store: IDeviceStore) -> None:
        self._settings = settings
        self._device_store = device_store

    async def send(self, subscriber: Subscriber, records: list[ChangeRecord]) -> bool:
        web_devices = [d for d in subscriber.devices if d.platform == Platform.WEB]

        if not web_devices:
            return True

        payload = build_web_push_payload(len(records), self._settings.frontend_url)
        all_succeeded = True

        for device in web_devices:
            try:
                success = await self._send_to_device(device, payload, subscriber)
            except InvalidDeviceTokenError as exc:
                await self._device_store.remove(exc.device_id)
                success = False
            if not success:
                all_succeeded = False

        return all_succeeded

    async def _send_to_device(
        self,
        device: PushDevice,
        payload: str,
        subscriber: Subscriber,
    ) -> bool:
        log = logger.bind(
            user_id=subscriber.id,
            device_id=device.id,
            channel="web_push",
        )

        try:
            subscription_info = json.loads(device.device_token)
        except ValueError:
            log.warning("web_push_token_unreadable")
            raise InvalidDeviceTokenError(device.id, "unreadable subscription") from None

        try:
            await asyncio.to_thread(
                webpush,
                subscription_info=subscription_info,
                data=payload,
                vapid_private_key=self._settings.vapid_private_key,
                vapid_claims={"sub": self._settings.vapid_claims_email},
            )
        except WebPushException as exc:
            if _is_gone(exc):
                log.info("web_push_subscription_expired", error=str(exc))
                raise InvalidDeviceTokenError(device.id, "subscription gone") from exc
            log.error("web_push_send_failed", error=str(exc))
            return False
        except Exception as exc:  # noqa: BLE001
            log.error("web_push_send_failed", error=str(exc))
            return False

        log.info("web_push_sent")
        return True
