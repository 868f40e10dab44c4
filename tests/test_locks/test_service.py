"""Tests for advisory run locks."""

import pytest

from src.locks.service import LockService, make_holder_id
from tests.fakes import FakeRedis


class TakeoverRedis(FakeRedis):
    """Hands the lock to another holder right after our first command on it."""

    def __init__(self, key: str, other_holder: str) -> None:
        super().__init__()
        self._key = key
        self._other_holder = other_holder
        self._taken_over = False

    def _take_over(self) -> None:
        if not self._taken_over:
            self._taken_over = True
            self.data[self._key] = self._other_holder

    async def get(self, key):
        value = await super().get(key)
        self._take_over()
        return value

    async def eval(self, script, numkeys, *keys_and_args):
        result = await super().eval(script, numkeys, *keys_and_args)
        self._take_over()
        return result


class TestLockService:
    """Mutual exclusion, holder-checked release and fail-open behavior."""

    @pytest.mark.asyncio
    async def test_second_holder_is_refused(self, fake_redis):
        first = LockService(fake_redis, holder_id="worker-1")
        second = LockService(fake_redis, holder_id="worker-2")

        assert await first.try_acquire("feed-scrape:1", 300) is True
        assert await second.try_acquire("feed-scrape:1", 300) is False
        assert fake_redis.data["lock:feed-scrape:1"] == "worker-1"

    @pytest.mark.asyncio
    async def test_distinct_keys_do_not_conflict(self, locks):
        assert await locks.try_acquire("feed-scrape:1", 300)
        assert await locks.try_acquire("feed-scrape:2", 300)

    @pytest.mark.asyncio
    async def test_release_frees_the_key(self, fake_redis):
        first = LockService(fake_redis, holder_id="worker-1")
        second = LockService(fake_redis, holder_id="worker-2")
        await first.try_acquire("cron:feed-scan", 60)

        await first.release("cron:feed-scan")

        assert await second.try_acquire("cron:feed-scan", 60) is True

    @pytest.mark.asyncio
    async def test_release_leaves_other_holders_lock(self, fake_redis):
        first = LockService(fake_redis, holder_id="worker-1")
        second = LockService(fake_redis, holder_id="worker-2")
        # worker-1's lock expired and worker-2 took it over
        fake_redis.data["lock:cron:feed-scan"] = "worker-2"

        await first.release("cron:feed-scan")

        assert fake_redis.data["lock:cron:feed-scan"] == "worker-2"
        assert await second.try_acquire("cron:feed-scan", 60) is False

    @pytest.mark.asyncio
    async def test_release_is_one_round_trip(self):
        redis = TakeoverRedis("lock:cron:feed-scan", "worker-2")
        first = LockService(redis, holder_id="worker-1")
        await first.try_acquire("cron:feed-scan", 60)

        await first.release("cron:feed-scan")

        assert redis.data["lock:cron:feed-scan"] == "worker-2"

    @pytest.mark.asyncio
    async def test_unreachable_redis_fails_open(self):
        locks = LockService(FakeRedis(broken=True), holder_id="worker-1")

        assert await locks.try_acquire("feed-scrape:1", 300) is True
        await locks.release("feed-scrape:1")

    @pytest.mark.asyncio
    async def test_no_redis_always_acquires(self):
        locks = LockService(None)

        assert await locks.try_acquire("feed-scrape:1", 300) is True
        assert await locks.try_acquire("feed-scrape:1", 300) is True

    @pytest.mark.asyncio
    async def test_hold_releases_after_block(self, locks, fake_redis):
        async with locks.hold("channel-check:7", 120) as acquired:
            assert acquired
            assert "lock:channel-check:7" in fake_redis.data

        assert "lock:channel-check:7" not in fake_redis.data

    @pytest.mark.asyncio
    async def test_hold_releases_on_error(self, locks, fake_redis):
        with pytest.raises(RuntimeError):
            async with locks.hold("channel-check:7", 120):
                raise RuntimeError("boom")

        assert "lock:channel-check:7" not in fake_redis.data

    @pytest.mark.asyncio
    async def test_hold_not_acquired_does_not_release(self, fake_redis):
        fake_redis.data["lock:channel-check:7"] = "someone-else"
        locks = LockService(fake_redis, holder_id="worker-1")

        async with locks.hold("channel-check:7", 120) as acquired:
            assert acquired is False

        assert fake_redis.data["lock:channel-check:7"] == "someone-else"


def test_holder_ids_are_unique():
    assert make_holder_id() != make_holder_id()
