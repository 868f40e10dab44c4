"""WebSub push subscriptions for YouTube channels."""

from src.websub.config import WebSubConfig
from src.websub.service import NotificationOutcome, WebSubService, verify_signature

__all__ = [
    "WebSubConfig",
    "WebSubService",
    "NotificationOutcome",
    "verify_signature",
]
