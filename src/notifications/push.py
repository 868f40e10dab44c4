"""Push delivery clients.

``PushClient`` is the narrow interface the notification trigger talks to.
``ExpoPushClient`` posts to the Expo push service: invalid tokens are
dropped before sending, messages go out in chunks of at most 100, and each
chunk is retried with per-attempt delays before its messages are counted as
failed.
"""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from typing import Any

import httpx

from src.notifications.config import NotificationConfig
from src.notifications.schemas import PushNotification, PushResult

logger = logging.getLogger(__name__)

_EXPO_TOKEN_RE = re.compile(r"^(?:ExponentPushToken|ExpoPushToken)\[.+\]$")


def is_expo_push_token(token: str) -> bool:
    """
    >>> is_expo_push_token("ExponentPushToken[xxxxxxxxxxxxxxxxxxxxxx]")
    True
    >>> is_expo_push_token("not-a-token")
    False
    """
    return bool(_EXPO_TOKEN_RE.match(token))


def chunked(items: list, size: int) -> list[list]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class PushClient(ABC):
    """Delivers one notification to a set of device tokens."""

    @abstractmethod
    async def send(self, tokens: list[str], notification: PushNotification) -> PushResult:
        """Send ``notification`` to every token. Must not raise on delivery failures."""


class ExpoPushClient(PushClient):
    """Sends notifications through the Expo push API."""

    def __init__(
        self,
        access_token: str | None = None,
        config: NotificationConfig | None = None,
    ) -> None:
        self._access_token = access_token
        self._config = config or NotificationConfig()

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Accept-Encoding": "gzip, deflate",
            "Content-Type": "application/json",
        }
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"
        return headers

    def _build_messages(self, tokens: list[str], notification: PushNotification) -> list[dict[str, Any]]:
        messages = []
        for token in tokens:
            if not is_expo_push_token(token):
                logger.warning("Skipping invalid push token %s", token)
                continue
            messages.append(
                {
                    "to": token,
                    "sound": "default",
                    "title": notification.title,
                    "body": notification.body,
                    "data": notification.data,
                }
            )
        return messages

    async def send(self, tokens: list[str], notification: PushNotification) -> PushResult:
        messages = self._build_messages(tokens, notification)
        result = PushResult()
        if not messages:
            return result

        for chunk in chunked(messages, self._config.chunk_size):
            result.merge(await self._send_chunk_with_retry(chunk))

        logger.info("Push notifications sent: %d success, %d failed", result.sent, result.failed)
        return result

    async def _send_chunk_with_retry(self, chunk: list[dict[str, Any]]) -> PushResult:
        delays = self._config.retry_delays
        max_attempts = self._config.retry_max_attempts

        for attempt in range(max_attempts):
            try:
                tickets = await self._post(chunk)
                return self._count_tickets(chunk, tickets)
            except (httpx.HTTPError, ValueError) as e:
                logger.warning("Expo push request failed (attempt %d): %s", attempt + 1, e)

            if attempt < max_attempts - 1:
                delay = delays[attempt] if attempt < len(delays) else delays[-1]
                await asyncio.sleep(delay)

        logger.error("All %d attempts exhausted for a chunk of %d messages", max_attempts, len(chunk))
        return PushResult(failed=len(chunk))

    async def _post(self, chunk: list[dict[str, Any]]) -> list[dict[str, Any]]:
        async with httpx.AsyncClient(timeout=self._config.request_timeout_seconds) as client:
            resp = await client.post(self._config.push_endpoint, json=chunk, headers=self._headers())
            resp.raise_for_status()
            payload = resp.json()
        tickets = payload.get("data")
        if not isinstance(tickets, list):
            raise ValueError(f"Unexpected Expo response: {payload.get('errors') or payload}")
        return tickets

    def _count_tickets(self, chunk: list[dict[str, Any]], tickets: list[dict[str, Any]]) -> PushResult:
        result = PushResult()
        for message, ticket in zip(chunk, tickets):
            if ticket.get("status") == "ok":
                result.sent += 1
                continue
            result.failed += 1
            details = ticket.get("details") or {}
            if details.get("error") == "DeviceNotRegistered":
                logger.info("Push token %s is no longer registered", message["to"])
            else:
                logger.warning("Push ticket error for %s: %s", message["to"], ticket.get("message"))
        # Tickets missing from a short response count as failures
        result.failed += max(0, len(chunk) - len(tickets))
        return result
