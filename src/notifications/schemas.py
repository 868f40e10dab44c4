"""Push notification payloads and delivery results."""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class PushNotification:
    """Content shared by every device a notification goes to."""

    title: str
    body: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class PushResult:
    """Delivery counts. ``failed`` includes rejected tokens and failed chunks."""

    sent: int = 0
    failed: int = 0

    def merge(self, other: "PushResult") -> None:
        self.sent += other.sent
        self.failed += other.failed

    def to_dict(self) -> dict[str, int]:
        return {"sent": self.sent, "failed": self.failed}
