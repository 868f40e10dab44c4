"""
Outbound HTTP for feeds, pages, robots.txt, the YouTube Data API and the
WebSub hub.

- APIKeyRotator: round-robin over comma-separated YouTube API keys
- RetryConfig: exponential backoff with jitter
- HTTPClient: httpx wrapper with retries, redirects and a fixed User-Agent

Every failure leaves as HTTPClientError, which is a TransientFetchError:
callers mark the source errored and the retry job picks it up later.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any

import httpx

from src.errors import TransientFetchError

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})
RETRYABLE_EXCEPTIONS = (
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.ReadError,
    httpx.RemoteProtocolError,
)


@dataclass
class APIKeyRotator:
    """
    Round-robin over several API keys.

    Each YouTube key carries its own daily quota, so spreading calls across
    keys stretches the budget.
    """

    keys: list[str]
    _current_index: int = field(default=0, repr=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @classmethod
    def from_env_var(cls, value: str | None) -> "APIKeyRotator | None":
        """Parse ``"key1,key2"``; None when no usable key is present."""
        keys = [k.strip() for k in (value or "").split(",") if k.strip()]
        return cls(keys=keys) if keys else None

    async def get_key(self) -> str:
        async with self._lock:
            key = self.keys[self._current_index]
            self._current_index = (self._current_index + 1) % len(self.keys)
            return key

    @property
    def key_count(self) -> int:
        return len(self.keys)


@dataclass
class RetryConfig:
    """
    Backoff for retryable failures.

    delay = min(max_backoff_seconds, base_delay * 2^attempt) * (1 + random(0, jitter_factor))
    """

    max_retries: int = 3
    max_backoff_seconds: float = 60.0
    base_delay: float = 1.0
    jitter_factor: float = 0.1

    def calculate_backoff(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-indexed)."""
        delay = min(self.base_delay * (2**attempt), self.max_backoff_seconds)
        return delay + delay * self.jitter_factor * random.random()

    def is_retryable_status(self, status_code: int) -> bool:
        """429 and gateway/server errors. Other 4xx are final."""
        return status_code in RETRYABLE_STATUSES

    def is_retryable_exception(self, exc: Exception) -> bool:
        """Timeouts, refused connections and connections dropped mid-response."""
        return isinstance(exc, RETRYABLE_EXCEPTIONS)


class HTTPClientError(TransientFetchError):
    """A request that failed for good (final status or retries exhausted)."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
        url: str | None = None,
    ):
        super().__init__(message, url=url, status_code=status_code)
        self.response_body = response_body

    @property
    def is_not_found(self) -> bool:
        return self.status_code in (404, 410)


class RateLimitError(HTTPClientError):
    """Still answered 429 after the last retry."""


class HTTPClient:
    """
    Async HTTP client with retries.

    Must be used as an async context manager; the underlying
    ``httpx.AsyncClient`` lives for the duration of the block.

    Example:
        async with HTTPClient(RetryConfig(max_retries=1), timeout=10.0, user_agent=ua) as client:
            response = await client.get(
                "https://www.googleapis.com/youtube/v3/videos",
                params={"part": "contentDetails", "id": "dQw4w9WgXcQ"},
                api_key_rotator=rotator,
                api_key_param="key",
            )
    """

    def __init__(
        self,
        retry_config: RetryConfig | None = None,
        timeout: float = 30.0,
        user_agent: str | None = None,
    ):
        self.retry_config = retry_config or RetryConfig()
        self.timeout = timeout
        self.user_agent = user_agent
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "HTTPClient":
        self._client = httpx.AsyncClient(
            timeout=self.timeout,
            headers={"User-Agent": self.user_agent} if self.user_agent else None,
            follow_redirects=True,
        )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        api_key_rotator: APIKeyRotator | None = None,
        api_key_param: str | None = None,
    ) -> httpx.Response:
        """
        GET with retries.

        Args:
            api_key_rotator: When given, a fresh key is added as query
                parameter ``api_key_param`` on every attempt.

        Raises:
            HTTPClientError: Final error status or retries exhausted.
            RateLimitError: Still rate limited after the last retry.
        """
        return await self._request(
            "GET",
            url,
            params=params,
            headers=headers,
            api_key_rotator=api_key_rotator,
            api_key_param=api_key_param,
        )

    async def post(
        self,
        url: str,
        form_body: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """POST form fields (``application/x-www-form-urlencoded``) with retries."""
        return await self._request("POST", url, headers=headers, form_body=form_body)

    async def _request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        form_body: dict[str, Any] | None = None,
        api_key_rotator: APIKeyRotator | None = None,
        api_key_param: str | None = None,
    ) -> httpx.Response:
        if not self._client:
            raise RuntimeError("HTTPClient must be used as async context manager")

        attempts = self.retry_config.max_retries + 1
        for attempt in range(attempts):
            request_params = dict(params or {})
            if api_key_rotator and api_key_param:
                request_params[api_key_param] = await api_key_rotator.get_key()

            try:
                response = await self._client.request(
                    method,
                    url,
                    params=request_params or None,
                    headers=headers,
                    data=form_body,
                )
            except RETRYABLE_EXCEPTIONS as e:
                if attempt + 1 < attempts:
                    await self._backoff(url, attempt, type(e).__name__)
                    continue
                raise HTTPClientError(
                    f"Request to {url} failed after {attempts} attempts: {type(e).__name__}: {e}",
                    url=url,
                ) from e

            status_code = response.status_code
            if status_code < 400:
                return response

            if self.retry_config.is_retryable_status(status_code) and attempt + 1 < attempts:
                await self._backoff(url, attempt, f"status {status_code}")
                continue

            error_class = RateLimitError if status_code == 429 else HTTPClientError
            raise error_class(
                f"Request to {url} failed with status {status_code} (attempt {attempt + 1})",
                status_code=status_code,
                response_body=response.text,
                url=url,
            )

        raise AssertionError("unreachable")

    async def _backoff(self, url: str, attempt: int, reason: str) -> None:
        delay = self.retry_config.calculate_backoff(attempt)
        logger.warning(
            "Retryable %s from %s, attempt %d/%d, backing off %.2fs",
            reason,
            url,
            attempt + 1,
            self.retry_config.max_retries + 1,
            delay,
        )
        await asyncio.sleep(delay)
