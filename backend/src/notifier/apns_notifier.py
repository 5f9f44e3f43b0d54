from __future__ import annotations

import structlog
from aioapns import APNs, NotificationRequest

from backend.src.config import Settings
from backend.src.contracts.errors import InvalidDeviceTokenError
from backend.src.contracts.interfaces import IDeviceStore
from backend.src.contracts.models import ChangeRecord, Platform, PushDevice, Subscriber
from backend.src.notifier.web_push_notifier import build_count_body

logger = structlog.get_logger(__name__)

# APNs reasons meaning the token is dead for good.
INVALID_TOKEN_REASONS = frozenset({"BadDeviceToken", "Unregistered", "DeviceTokenNotForTopic"})


def build_apns_notification(
    count: int,
    device_token: str,
    bundle_id: str,
) -> NotificationRequest:
    """Build an APNs NotificationRequest carrying only the update count."""
    return NotificationRequest(
        device_token=device_token,
        message={
            "aps": {
                "alert": {
                    "title": "Course Alert",
                    "body": build_count_body(count),
                },
                "badge": count,
                "sound": "default",
            },
            "type": "batched_notification",
            "count": count,
        },
        apns_topic=bundle_id,
    )


class ApnsPushNotifier:
    """Channel notifier that sends iOS push notifications via APNs."""

    def __init__(self, settings: Settings, device_store: IDeviceStore) -> None:
        self._settings = settings
        self._device_store = device_store
        self._client: APNs | None = None

    def _get_client(self) -> APNs:
        if self._client is None:
            self._client = APNs(
                key=self._settings.apns_auth_key_path,
                key_id=self._settings.apns_auth_key_id,
                team_id=self._settings.apns_team_id,
                topic=self._settings.apns_bundle_id,
                use_sandbox=self._settings.apns_use_sandbox,
            )
        return self._client

    async def send(self, subscriber: Subscriber, records: list[ChangeRecord]) -> bool:
        ios_devices = [d for d in subscriber.devices if d.platform == Platform.IOS]

        if not ios_devices:
            return True

        all_succeeded = True
        for device in ios_devices:
            try:
                success = await self._send_to_device(device, len(records), subscriber)
            except InvalidDeviceTokenError as exc:
                await self._device_store.remove(exc.device_id)
                success = False
            if not success:
                all_succeeded = False

        return all_succeeded

    async def _send_to_device(
        self,
        device: PushDevice,
        count: int,
        subscriber: Subscriber,
    ) -> bool:
        log = logger.bind(
            user_id=subscriber.id,
            device_id=device.id,
            channel="apns",
        )

        notification = build_apns_notification(
            count=count,
            device_token=device.device_token,
            bundle_id=self._settings.apns_bundle_id,
        )

        try:
            result = await self._get_client().send_notification(notification)
        except Exception as exc:  # noqa: BLE001
            log.error("apns_send_failed", error=str(exc))
            return False

        if result.is_successful:
            log.info("apns_sent")
            return True

        if result.description in INVALID_TOKEN_REASONS:
            log.info("apns_token_invalid", reason=result.description)
            raise InvalidDeviceTokenError(device.id, result.description)

        log.error("apns_rejected", reason=result.description)
        return False
