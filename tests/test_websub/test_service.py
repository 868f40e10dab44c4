"""Tests for WebSub subscriptions, verification and push handling."""

import hashlib
import hmac
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from urllib.parse import parse_qs

import httpx
import pytest
import respx

from src.errors import ParseError
from src.items.schemas import BulkReconcileResult
from src.websub.config import WebSubConfig
from src.websub.service import WebSubService, verify_signature

HUB = "https://pubsubhubbub.appspot.com/subscribe"
CALLBACK = "https://feedwatch.example.com/websub/callback"
CHANNEL_ID = "UC1234567890abcdefghijkl"
TOPIC = f"https://www.youtube.com/xml/feeds/videos.xml?channel_id={CHANNEL_ID}"

PUSH = f"""<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns:yt="http://www.youtube.com/xml/schemas/2015" xmlns="http://www.w3.org/2005/Atom">
  <entry>
    <id>yt:video:abc123</id>
    <yt:videoId>abc123</yt:videoId>
    <yt:channelId>{CHANNEL_ID}</yt:channelId>
    <title>Breaking news</title>
    <published>2026-03-02T08:00:00+00:00</published>
  </entry>
  <entry>
    <id>yt:video:zzz999</id>
    <yt:videoId>zzz999</yt:videoId>
    <yt:channelId>UCunknownunknownunknown1</yt:channelId>
    <title>Someone else</title>
  </entry>
</feed>
""".encode()

FAST = WebSubConfig(subscribe_delay_seconds=0)


def _sign(secret: str, body: bytes) -> str:
    return "sha1=" + hmac.new(secret.encode(), body, hashlib.sha1).hexdigest()


@pytest.fixture
def poller():
    poller = MagicMock()
    poller.ingest_videos = AsyncMock(return_value=BulkReconcileResult(created=1))
    return poller


@pytest.fixture
def service(channel_repo, poller):
    return WebSubService(channel_repo, poller, CALLBACK, secret="s3cret", config=FAST)


class TestVerifySignature:
    def test_valid(self):
        assert verify_signature("s3cret", b"<feed/>", _sign("s3cret", b"<feed/>"))

    def test_wrong_secret(self):
        assert not verify_signature("s3cret", b"<feed/>", _sign("other", b"<feed/>"))

    def test_tampered_body(self):
        assert not verify_signature("s3cret", b"<feed>x</feed>", _sign("s3cret", b"<feed/>"))


class TestVerifyChallenge:
    @pytest.mark.asyncio
    async def test_subscribe_stores_lease(self, service, channel_repo):
        channel = channel_repo.add(CHANNEL_ID)

        echoed = await service.verify_challenge("subscribe", TOPIC, "challenge-123", lease_seconds=3600)

        assert echoed == "challenge-123"
        expires = channel_repo.channels[channel.id].push_lease_expires_at
        assert timedelta(minutes=59) < expires - datetime.now(timezone.utc) <= timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_unsubscribe_clears_lease(self, service, channel_repo):
        channel = channel_repo.add(
            CHANNEL_ID, push_lease_expires_at=datetime.now(timezone.utc) + timedelta(days=5)
        )

        echoed = await service.verify_challenge("unsubscribe", TOPIC, "bye")

        assert echoed == "bye"
        assert channel_repo.channels[channel.id].push_lease_expires_at is None

    @pytest.mark.asyncio
    async def test_unknown_topic(self, service):
        assert await service.verify_challenge("subscribe", TOPIC, "challenge-123") is None

    @pytest.mark.asyncio
    async def test_missing_parameters(self, service, channel_repo):
        channel_repo.add(CHANNEL_ID)
        assert await service.verify_challenge("subscribe", TOPIC, None) is None

    @pytest.mark.asyncio
    async def test_unsupported_mode(self, service, channel_repo):
        channel_repo.add(CHANNEL_ID)
        assert await service.verify_challenge("denied", TOPIC, "x") is None


class TestHandleNotification:
    @pytest.mark.asyncio
    async def test_known_channel_ingested(self, service, channel_repo, poller):
        channel = channel_repo.add(CHANNEL_ID)

        outcome = await service.handle_notification(PUSH, _sign("s3cret", PUSH))

        assert outcome.signature_valid is True
        assert outcome.result.created == 1
        assert outcome.unknown_channels == ["UCunknownunknownunknown1"]
        ingested_channel, videos = poller.ingest_videos.await_args.args
        assert ingested_channel.id == channel.id
        assert [v.video_id for v in videos] == ["abc123"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("signature", ["sha1=deadbeef", None])
    async def test_unverified_body_dropped(self, service, channel_repo, poller, signature):
        channel_repo.add(CHANNEL_ID)

        outcome = await service.handle_notification(PUSH, signature)

        assert outcome.signature_valid is False
        assert outcome.result.created == 0
        poller.ingest_videos.assert_not_called()

    @pytest.mark.asyncio
    async def test_without_secret_unsigned_body_ingested(self, channel_repo, poller):
        channel_repo.add(CHANNEL_ID)
        service = WebSubService(channel_repo, poller, CALLBACK, config=FAST)

        outcome = await service.handle_notification(PUSH)

        assert outcome.signature_valid is None
        poller.ingest_videos.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_not_atom(self, service):
        with pytest.raises(ParseError):
            await service.handle_notification(b"hello", _sign("s3cret", b"hello"))


class TestSubscribe:
    @pytest.mark.asyncio
    @respx.mock
    async def test_subscription_request(self, service, channel_source):
        route = respx.post(HUB).mock(return_value=httpx.Response(202))

        assert await service.subscribe(channel_source) is True

        form = parse_qs(route.calls.last.request.content.decode())
        assert form["hub.callback"] == [CALLBACK]
        assert form["hub.topic"] == [TOPIC]
        assert form["hub.mode"] == ["subscribe"]
        assert form["hub.secret"] == ["s3cret"]
        assert form["hub.lease_seconds"] == ["864000"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_hub_rejects(self, service, channel_source):
        respx.post(HUB).mock(return_value=httpx.Response(400, text="bad topic"))
        assert await service.subscribe(channel_source) is False

    @pytest.mark.asyncio
    async def test_disabled_without_callback(self, channel_repo, poller, channel_source):
        service = WebSubService(channel_repo, poller, callback_url=None)

        assert not service.enabled
        assert await service.subscribe(channel_source) is False
        assert await service.renew_expiring() == {"requested": 0, "accepted": 0, "failed": 0}

    @pytest.mark.asyncio
    @respx.mock
    async def test_renew_covers_missing_and_expiring(self, service, channel_repo):
        now = datetime.now(timezone.utc)
        channel_repo.add("UCaaaaaaaaaaaaaaaaaaaaaa")
        channel_repo.add("UCbbbbbbbbbbbbbbbbbbbbbb", push_lease_expires_at=now + timedelta(minutes=10))
        channel_repo.add("UCcccccccccccccccccccccc", push_lease_expires_at=now + timedelta(days=5))
        route = respx.post(HUB).mock(return_value=httpx.Response(202))

        summary = await service.renew_expiring()

        assert summary == {"requested": 2, "accepted": 2, "failed": 0}
        topics = {parse_qs(c.request.content.decode())["hub.topic"][0] for c in route.calls}
        assert topics == {service.topic_for("UCaaaaaaaaaaaaaaaaaaaaaa"), service.topic_for("UCbbbbbbbbbbbbbbbbbbbbbb")}
