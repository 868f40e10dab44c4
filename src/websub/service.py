"""
WebSub (PubSubHubbub) push subscriptions for YouTube channels.

Flow:
1. ``subscribe`` posts an async subscription request to the hub.
2. The hub calls back with a GET; ``verify_challenge`` echoes the challenge
   for known channels and stores the lease expiry.
3. The hub POSTs Atom bodies for new or updated videos;
   ``handle_notification`` feeds them through the same classification and
   reconciliation path as channel polling. Bodies that fail the HMAC check
   are dropped.

While a channel holds an unexpired lease, the channel-poll job leaves it to
the pushes.
"""

import asyncio
import hashlib
import hmac
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from src.ingestion.http_client import HTTPClient, HTTPClientError, RetryConfig
from src.ingestion.rss_parser import parse_push_notification
from src.items.schemas import BulkReconcileResult
from src.services.channel_poller import ChannelPoller
from src.sources.repository import ChannelSourceRepository
from src.sources.schemas import ChannelSource
from src.websub.config import WebSubConfig

logger = structlog.get_logger(__name__)

_TOPIC_CHANNEL_RE = re.compile(r"channel_id=([^&]+)")


def verify_signature(secret: str, body: bytes, signature: str) -> bool:
    """
    Check an ``X-Hub-Signature`` header (``sha1=<hex>``) against ``body``.

    >>> import hashlib, hmac
    >>> sig = "sha1=" + hmac.new(b"s3cret", b"<feed/>", hashlib.sha1).hexdigest()
    >>> verify_signature("s3cret", b"<feed/>", sig)
    True
    """
    provided = signature.split("=", 1)[1] if "=" in signature else signature
    expected = hmac.new(secret.encode(), body, hashlib.sha1).hexdigest()
    return hmac.compare_digest(provided.strip().lower(), expected)


@dataclass
class NotificationOutcome:
    """What one push delivery did."""

    signature_valid: bool | None = None
    result: BulkReconcileResult = field(default_factory=BulkReconcileResult)
    unknown_channels: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "signature_valid": self.signature_valid,
            "unknown_channels": self.unknown_channels,
            **self.result.to_dict(),
        }


class WebSubService:
    """Subscribes channels to the hub and processes its callbacks."""

    def __init__(
        self,
        channels: ChannelSourceRepository,
        poller: ChannelPoller,
        callback_url: str | None,
        secret: str | None = None,
        config: WebSubConfig | None = None,
    ) -> None:
        self._channels = channels
        self._poller = poller
        self._callback_url = callback_url
        self._secret = secret
        self._config = config or WebSubConfig()

    @property
    def enabled(self) -> bool:
        return bool(self._callback_url)

    def topic_for(self, channel_id: str) -> str:
        return self._config.topic_template.format(channel_id=channel_id)

    # ── Subscriptions ───────────────────────────────────────────

    async def subscribe(self, channel: ChannelSource) -> bool:
        """
        Ask the hub to (re)subscribe our callback to the channel's topic.

        The lease is only recorded once the hub verifies the intent.

        Returns:
            True when the hub accepted the request.
        """
        if not self.enabled:
            logger.debug("WebSub callback URL not configured, not subscribing")
            return False

        form = {
            "hub.callback": self._callback_url,
            "hub.topic": self.topic_for(channel.channel_id),
            "hub.verify": "async",
            "hub.mode": "subscribe",
            "hub.lease_seconds": str(self._config.lease_seconds),
        }
        if self._secret:
            form["hub.secret"] = self._secret

        log = logger.bind(channel_id=channel.channel_id)
        try:
            async with HTTPClient(
                RetryConfig(max_retries=1), timeout=self._config.request_timeout_seconds
            ) as client:
                response = await client.post(self._config.hub_url, form_body=form)
        except HTTPClientError as e:
            log.warning("WebSub subscription request failed", error=str(e), status=e.status_code)
            return False

        if response.status_code not in (202, 204):
            log.warning("Unexpected hub response", status=response.status_code)
            return False
        log.info("WebSub subscription requested")
        return True

    async def renew_expiring(self) -> dict[str, int]:
        """
        Subscribe channels without a lease and renew leases about to end.

        Returns:
            Counts of requested, accepted and failed subscriptions.
        """
        if not self.enabled:
            return {"requested": 0, "accepted": 0, "failed": 0}

        now = datetime.now(timezone.utc)
        limit = self._config.subscribe_batch_size
        missing = await self._channels.list_without_lease(now, limit)
        expiring = await self._channels.list_expiring_leases(
            now, now + timedelta(seconds=self._config.renew_window_seconds), limit
        )

        summary = {"requested": 0, "accepted": 0, "failed": 0}
        for i, channel in enumerate(missing + expiring):
            if i:
                await asyncio.sleep(self._config.subscribe_delay_seconds)
            summary["requested"] += 1
            if await self.subscribe(channel):
                summary["accepted"] += 1
            else:
                summary["failed"] += 1

        logger.info("WebSub renewal pass finished", **summary)
        return summary

    async def verify_challenge(
        self,
        mode: str | None,
        topic: str | None,
        challenge: str | None,
        lease_seconds: int | None = None,
    ) -> str | None:
        """
        Answer a hub verification request.

        Returns:
            The challenge to echo, or None when the topic is not one of ours
            (the caller responds 404).
        """
        if not (mode and topic and challenge):
            return None

        match = _TOPIC_CHANNEL_RE.search(topic)
        channel = await self._channels.get_by_channel_id(match.group(1)) if match else None
        if channel is None:
            logger.warning("Verification for unknown topic", topic=topic, mode=mode)
            return None

        if mode == "subscribe":
            lease = lease_seconds or self._config.lease_seconds
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=lease)
            await self._channels.set_lease(channel.id, expires_at)
            logger.info("WebSub subscription verified", channel_id=channel.channel_id, lease_seconds=lease)
        elif mode == "unsubscribe":
            await self._channels.set_lease(channel.id, None)
            logger.info("WebSub unsubscription verified", channel_id=channel.channel_id)
        else:
            logger.warning("Unsupported hub mode", mode=mode, topic=topic)
            return None
        return challenge

    # ── Notifications ───────────────────────────────────────────

    async def handle_notification(self, body: bytes, signature: str | None = None) -> NotificationOutcome:
        """
        Process a pushed Atom body.

        With a secret configured, a body whose ``X-Hub-Signature`` is missing
        or wrong is dropped unread. The outcome still counts as handled so
        the callback answers 2xx and the hub does not redeliver it.

        Raises:
            ParseError: The body is not an Atom document.
        """
        outcome = NotificationOutcome()
        if self._secret:
            outcome.signature_valid = bool(signature) and verify_signature(self._secret, body, signature)
            if not outcome.signature_valid:
                logger.warning(
                    "Dropping WebSub notification with bad signature",
                    signed=bool(signature),
                    size=len(body),
                )
                return outcome

        grouped = parse_push_notification(body.decode("utf-8", errors="replace"))
        for channel_id, videos in grouped.items():
            channel = await self._channels.get_by_channel_id(channel_id)
            if channel is None:
                logger.warning("Push for unknown channel", channel_id=channel_id)
                outcome.unknown_channels.append(channel_id)
                continue

            result = await self._poller.ingest_videos(channel, videos)
            outcome.result.created += result.created
            outcome.result.updated += result.updated
            outcome.result.skipped += result.skipped
            outcome.result.errors += result.errors
            outcome.result.new_items.extend(result.new_items)

        logger.info("WebSub notification processed", **outcome.to_dict())
        return outcome
