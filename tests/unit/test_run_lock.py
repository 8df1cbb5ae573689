import asyncio
import logging

import pytest
from redis.exceptions import LockError

from shelfwatch.core.run_lock import RunLock, RunLockTimeout


class FakeRedisLock:
    def __init__(self, client: "FakeRedis", name: str):
        self.client = client
        self.name = name

    async def acquire(self) -> bool:
        if self.name in self.client.held:
            return False
        self.client.held.add(self.name)
        self.client.acquired += 1
        return True

    async def release(self) -> None:
        if self.name not in self.client.held:
            raise LockError("Cannot release a lock that's no longer owned")
        self.client.held.discard(self.name)


class FakeRedis:
    """只实现 RunLock 用到的 lock() 接口"""

    def __init__(self):
        self.held: set[str] = set()
        self.acquired = 0
        self.lock_kwargs: dict = {}

    def lock(self, name, timeout=None, blocking_timeout=None):
        self.lock_kwargs = {"timeout": timeout, "blocking_timeout": blocking_timeout}
        return FakeRedisLock(self, name)


@pytest.mark.asyncio
async def test_local_lock_serializes_holders():
    lock = RunLock()
    order: list[str] = []

    async def worker(tag: str):
        async with lock.hold():
            order.append(f"{tag}-in")
            await asyncio.sleep(0.05)
            order.append(f"{tag}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert order == ["a-in", "a-out", "b-in", "b-out"]
    assert not lock.locked


@pytest.mark.asyncio
async def test_redis_lock_acquired_and_released():
    client = FakeRedis()
    lock = RunLock(client, name="shelfwatch:test", timeout=30)

    async with lock.hold():
        assert lock.locked
        assert client.held == {"shelfwatch:test"}

    assert client.held == set()
    assert client.acquired == 1
    assert client.lock_kwargs == {"timeout": 30, "blocking_timeout": 30}


@pytest.mark.asyncio
async def test_redis_lock_held_elsewhere_raises_timeout():
    client = FakeRedis()
    client.held.add("shelfwatch:test")
    lock = RunLock(client, name="shelfwatch:test", timeout=1)

    with pytest.raises(RunLockTimeout):
        async with lock.hold():
            pytest.fail("body must not run without the redis lock")

    assert not lock.locked


@pytest.mark.asyncio
async def test_release_error_is_logged_not_raised(caplog):
    client = FakeRedis()
    lock = RunLock(client, name="shelfwatch:test")

    with caplog.at_level(logging.WARNING, logger="shelfwatch.core.run_lock"):
        async with lock.hold():
            # 锁在持有期间过期
            client.held.clear()

    assert "Failed to release shelfwatch:test" in caplog.text
    assert not lock.locked


@pytest.mark.asyncio
async def test_wait_released_blocks_until_holder_finishes():
    lock = RunLock()
    released = asyncio.Event()

    async def holder():
        async with lock.hold():
            await asyncio.sleep(0.05)
        released.set()

    task = asyncio.create_task(holder())
    await asyncio.sleep(0)
    await lock.wait_released()

    assert released.is_set()
    await task
