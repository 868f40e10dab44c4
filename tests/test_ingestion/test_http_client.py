"""Tests for HTTP client infrastructure layer."""

import asyncio

import httpx
import pytest
import respx

from src.errors import TransientFetchError
from src.ingestion.http_client import (
    APIKeyRotator,
    HTTPClient,
    HTTPClientError,
    RateLimitError,
    RetryConfig,
)

FEED_URL = "https://example.com/feed"
FAST_RETRY = RetryConfig(max_retries=3, base_delay=0.01, jitter_factor=0.0)


class TestAPIKeyRotator:
    """Tests for APIKeyRotator."""

    def test_from_env_var_with_multiple_keys(self):
        """Should parse comma-separated keys."""
        rotator = APIKeyRotator.from_env_var("key1, key2 ,key3")

        assert rotator is not None
        assert rotator.keys == ["key1", "key2", "key3"]
        assert rotator.key_count == 3

    @pytest.mark.parametrize("value", [None, "", "   ", " , ,"])
    def test_from_env_var_without_keys(self, value):
        """Should return None when no usable key is given."""
        assert APIKeyRotator.from_env_var(value) is None

    @pytest.mark.asyncio
    async def test_get_key_rotation(self):
        """Should rotate through keys and wrap around."""
        rotator = APIKeyRotator(keys=["x", "y"])

        assert [await rotator.get_key() for _ in range(3)] == ["x", "y", "x"]

    @pytest.mark.asyncio
    async def test_get_key_concurrent_access(self):
        """Should hand out each key equally under concurrent requests."""
        rotator = APIKeyRotator(keys=["1", "2", "3"])

        results = await asyncio.gather(*(rotator.get_key() for _ in range(9)))

        assert sorted(results) == ["1", "1", "1", "2", "2", "2", "3", "3", "3"]


class TestRetryConfig:
    """Tests for RetryConfig."""

    def test_calculate_backoff_exponential_and_capped(self):
        """Should double the delay per attempt up to max_backoff_seconds."""
        config = RetryConfig(base_delay=1.0, max_backoff_seconds=5.0, jitter_factor=0.0)

        assert [config.calculate_backoff(i) for i in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_calculate_backoff_with_jitter(self):
        """Should add jitter within the configured range."""
        config = RetryConfig(base_delay=1.0, jitter_factor=0.1)

        backoffs = [config.calculate_backoff(0) for _ in range(100)]

        assert all(1.0 <= b < 1.1 for b in backoffs)
        assert len(set(backoffs)) > 1

    @pytest.mark.parametrize(
        "status,expected",
        [(429, True), (500, True), (503, True), (404, False), (403, False), (200, False)],
    )
    def test_is_retryable_status(self, status, expected):
        assert RetryConfig().is_retryable_status(status) is expected

    def test_is_retryable_exception(self):
        config = RetryConfig()

        assert config.is_retryable_exception(httpx.ConnectError("refused")) is True
        assert config.is_retryable_exception(httpx.RemoteProtocolError("closed")) is True
        assert config.is_retryable_exception(ValueError("bad value")) is False


class TestHTTPClient:
    """Tests for HTTPClient."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_get_sends_user_agent(self):
        """Should send the configured User-Agent on every request."""
        route = respx.get(FEED_URL).mock(return_value=httpx.Response(200, text="<rss/>"))

        async with HTTPClient(user_agent="FeedwatchBot/1.0") as client:
            response = await client.get(FEED_URL, headers={"Accept": "application/rss+xml"})

        assert response.text == "<rss/>"
        request = route.calls.last.request
        assert request.headers["User-Agent"] == "FeedwatchBot/1.0"
        assert request.headers["Accept"] == "application/rss+xml"

    @pytest.mark.asyncio
    @respx.mock
    async def test_follows_redirects(self):
        """Should follow redirects to the final document."""
        respx.get("https://example.com/rss").mock(
            return_value=httpx.Response(301, headers={"Location": FEED_URL})
        )
        respx.get(FEED_URL).mock(return_value=httpx.Response(200, text="<rss/>"))

        async with HTTPClient() as client:
            response = await client.get("https://example.com/rss")

        assert str(response.url) == FEED_URL

    @pytest.mark.asyncio
    @respx.mock
    async def test_post_form_body(self):
        """Should send form fields url-encoded."""
        route = respx.post("https://pubsubhubbub.appspot.com/subscribe").mock(
            return_value=httpx.Response(202)
        )

        async with HTTPClient() as client:
            response = await client.post(
                "https://pubsubhubbub.appspot.com/subscribe",
                form_body={"hub.mode": "subscribe", "hub.topic": "t"},
            )

        assert response.status_code == 202
        request = route.calls.last.request
        assert request.headers["content-type"] == "application/x-www-form-urlencoded"
        assert b"hub.mode=subscribe" in request.content

    @pytest.mark.asyncio
    @respx.mock
    async def test_api_key_in_query_param(self):
        """Should add the rotated API key as a query parameter."""
        route = respx.get("https://www.googleapis.com/youtube/v3/videos").mock(
            return_value=httpx.Response(200, json={"items": []})
        )

        async with HTTPClient() as client:
            await client.get(
                "https://www.googleapis.com/youtube/v3/videos",
                params={"id": "abc"},
                api_key_rotator=APIKeyRotator(keys=["secret"]),
                api_key_param="key",
            )

        params = route.calls.last.request.url.params
        assert params["key"] == "secret"
        assert params["id"] == "abc"

    @pytest.mark.asyncio
    @respx.mock
    async def test_retry_on_500_with_success(self):
        """Should retry on 5xx and succeed on a later attempt."""
        route = respx.get(FEED_URL).mock(
            side_effect=[
                httpx.Response(500),
                httpx.Response(502),
                httpx.Response(200, text="<rss/>"),
            ]
        )

        async with HTTPClient(retry_config=FAST_RETRY) as client:
            response = await client.get(FEED_URL)

        assert response.status_code == 200
        assert route.call_count == 3

    @pytest.mark.asyncio
    @respx.mock
    async def test_retry_on_connect_error(self):
        """Should retry on connection errors."""
        route = respx.get(FEED_URL).mock(
            side_effect=[httpx.ConnectError("refused"), httpx.Response(200, text="<rss/>")]
        )

        async with HTTPClient(retry_config=FAST_RETRY) as client:
            await client.get(FEED_URL)

        assert route.call_count == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_rate_limit_error_after_retries_exhausted(self):
        """Should raise RateLimitError after all retries fail with 429."""
        respx.get(FEED_URL).mock(return_value=httpx.Response(429, text="Slow down"))

        config = RetryConfig(max_retries=2, base_delay=0.01, jitter_factor=0.0)
        async with HTTPClient(retry_config=config) as client:
            with pytest.raises(RateLimitError) as exc_info:
                await client.get(FEED_URL)

        assert exc_info.value.status_code == 429

    @pytest.mark.asyncio
    @respx.mock
    async def test_timeout_exhausted_is_transient(self):
        """Should surface exhausted timeouts as a transient fetch error."""
        respx.get(FEED_URL).mock(side_effect=httpx.ReadTimeout("timed out"))

        config = RetryConfig(max_retries=1, base_delay=0.01, jitter_factor=0.0)
        async with HTTPClient(retry_config=config) as client:
            with pytest.raises(TransientFetchError) as exc_info:
                await client.get(FEED_URL)

        assert exc_info.value.url == FEED_URL

    @pytest.mark.asyncio
    @respx.mock
    async def test_no_retry_on_404(self):
        """Should not retry missing documents."""
        route = respx.get(FEED_URL).mock(return_value=httpx.Response(404, text="Not found"))

        async with HTTPClient(retry_config=FAST_RETRY) as client:
            with pytest.raises(HTTPClientError) as exc_info:
                await client.get(FEED_URL)

        assert route.call_count == 1
        assert exc_info.value.is_not_found
        assert exc_info.value.response_body == "Not found"

    @pytest.mark.asyncio
    async def test_client_not_used_as_context_manager(self):
        """Should raise error if client not used as context manager."""
        client = HTTPClient()

        with pytest.raises(RuntimeError, match="must be used as async context manager"):
            await client.get(FEED_URL)
