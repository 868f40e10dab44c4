"""
Advisory run locks in Redis.

A lock is the key ``lock:{name}`` set with NX and a TTL; its value is the
holder id of the process that took it. Locks fail open: when Redis is absent
or unreachable, ``try_acquire`` reports success so scheduled work keeps
running. Duplicate work is absorbed downstream by idempotent reconciliation.
"""

import logging
import os
import socket
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from src.observability.metrics import get_metrics

logger = logging.getLogger(__name__)

LOCK_PREFIX = "lock:"

# Compare-and-delete in one round trip: a lock that expired and was taken
# by another holder is never deleted.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


def make_holder_id() -> str:
    """Identify this process: ``host:pid:random``."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class LockService:
    """Acquire and release named locks."""

    def __init__(self, redis_client: Any | None = None, holder_id: str | None = None) -> None:
        self._redis = redis_client
        self._holder = holder_id or make_holder_id()
        self._metrics = get_metrics()

    @property
    def holder_id(self) -> str:
        return self._holder

    async def try_acquire(self, key: str, ttl_seconds: int) -> bool:
        """
        Take ``lock:{key}`` for ``ttl_seconds``.

        Returns:
            True when the lock was taken (or Redis is unavailable), False
            when another holder has it.
        """
        if self._redis is None:
            return True

        try:
            was_set = await self._redis.set(
                f"{LOCK_PREFIX}{key}", self._holder, nx=True, ex=ttl_seconds
            )
        except Exception as e:
            logger.warning("Lock %s unavailable, proceeding without it: %s", key, e)
            self._metrics.lock_errors.inc()
            return True
        return bool(was_set)

    async def release(self, key: str) -> None:
        """Delete ``lock:{key}`` if this process still holds it."""
        if self._redis is None:
            return

        try:
            released = await self._redis.eval(_RELEASE_SCRIPT, 1, f"{LOCK_PREFIX}{key}", self._holder)
            if not released:
                logger.debug("Lock %s expired or taken over, nothing to release", key)
        except Exception as e:
            logger.warning("Failed to release lock %s: %s", key, e)
            self._metrics.lock_errors.inc()

    @asynccontextmanager
    async def hold(self, key: str, ttl_seconds: int) -> AsyncIterator[bool]:
        """
        Hold a lock for the duration of a block.

        Yields whether the lock was acquired; the block decides what to do
        when it was not. Release happens only for an acquired lock.

        Example:
            async with locks.hold(f"feed-scrape:{source.id}", 300) as acquired:
                if not acquired:
                    return
                ...
        """
        acquired = await self.try_acquire(key, ttl_seconds)
        try:
            yield acquired
        finally:
            if acquired:
                await self.release(key)
