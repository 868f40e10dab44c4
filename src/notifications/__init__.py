"""Notifications: push fan-out for new items and videos."""

from src.notifications.config import NotificationConfig
from src.notifications.push import ExpoPushClient, PushClient, is_expo_push_token
from src.notifications.schemas import PushNotification, PushResult
from src.notifications.subscribers import SubscriberRepository
from src.notifications.trigger import NotificationTrigger

__all__ = [
    "NotificationConfig",
    "PushClient",
    "ExpoPushClient",
    "is_expo_push_token",
    "PushNotification",
    "PushResult",
    "SubscriberRepository",
    "NotificationTrigger",
]
