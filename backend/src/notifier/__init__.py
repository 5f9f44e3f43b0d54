from backend.src.notifier.apns_notifier import ApnsPushNotifier
from backend.src.notifier.email_notifier import EmailNotifier
from backend.src.notifier.registry import NotifierRegistry
from backend.src.notifier.web_inbox_notifier import WebInboxNotifier
from backend.src.notifier.web_push_notifier import WebPushNotifier

__all__ = [
    "ApnsPushNotifier",
    "EmailNotifier",
    "NotifierRegistry",
    "WebInboxNotifier",
    "WebPushNotifier",
]
