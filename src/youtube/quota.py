"""Daily YouTube Data API quota accounting.

Usage is counted per UTC day. When a Redis client is available the counter
is shared by every process (``youtube:quota:{date}``); otherwise, or when
Redis errors, the tracker keeps a local count.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from src.errors import QuotaExceededError
from src.observability.metrics import get_metrics

logger = logging.getLogger(__name__)

# Unit cost per API method
QUOTA_COSTS = {
    "search.list": 100,
    "channels.list": 1,
    "videos.list": 1,
}

_KEY_TTL_SECONDS = 2 * 24 * 3600


def _today() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


class QuotaTracker:
    """Tracks units spent against the daily limit."""

    def __init__(self, daily_limit: int = 10_000, redis_client: Any | None = None) -> None:
        self._daily_limit = daily_limit
        self._redis = redis_client
        self._local_day = _today()
        self._local_used = 0

    @property
    def daily_limit(self) -> int:
        return self._daily_limit

    def _key(self, day: str) -> str:
        return f"youtube:quota:{day}"

    def _roll_local(self, day: str) -> None:
        if day != self._local_day:
            self._local_day = day
            self._local_used = 0

    async def used(self) -> int:
        """Units consumed today."""
        day = _today()
        self._roll_local(day)
        if self._redis is not None:
            try:
                value = await self._redis.get(self._key(day))
                return int(value or 0)
            except Exception as e:
                logger.warning("Quota read from Redis failed, using local count: %s", e)
        return self._local_used

    async def usage_ratio(self) -> float:
        if self._daily_limit <= 0:
            return 1.0
        return await self.used() / self._daily_limit

    async def consume(self, method: str) -> int:
        """
        Reserve the cost of ``method`` against today's budget.

        Returns:
            Units used today after this call.

        Raises:
            QuotaExceededError: The call would exceed the daily limit.
        """
        cost = QUOTA_COSTS.get(method, 1)
        used = await self.used()
        if used + cost > self._daily_limit:
            raise QuotaExceededError(
                f"YouTube quota exhausted: {used}/{self._daily_limit} used, {method} costs {cost}",
                used=used,
                limit=self._daily_limit,
            )

        day = _today()
        total = self._local_used + cost
        if self._redis is not None:
            try:
                key = self._key(day)
                total = int(await self._redis.incrby(key, cost))
                await self._redis.expire(key, _KEY_TTL_SECONDS)
            except Exception as e:
                logger.warning("Quota write to Redis failed, counting locally: %s", e)
        self._local_used += cost

        get_metrics().youtube_quota_used.set(total)
        logger.debug("YouTube API %s: +%d units (%d/%d today)", method, cost, total, self._daily_limit)
        return total
