"""串行化检查任务：进程内 asyncio.Lock，启用 Redis 时再叠加分布式锁"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import redis.asyncio as redis
from redis.exceptions import LockError

logger = logging.getLogger(__name__)


class RunLockTimeout(RuntimeError):
    pass


class RunLock:
    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        name: str = "shelfwatch:expiry-check",
        timeout: float = 600,
    ):
        self.name = name
        self.timeout = timeout
        self._redis = redis_client
        self._local = asyncio.Lock()

    @property
    def locked(self) -> bool:
        return self._local.locked()

    async def wait_released(self) -> None:
        """等待进程内锁释放（不获取 Redis 锁）"""
        async with self._local:
            pass

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[None]:
        if self._local.locked():
            logger.info("Another expiry check is running in this process, waiting")

        async with self._local:
            if self._redis is None:
                yield
                return

            lock = self._redis.lock(self.name, timeout=self.timeout, blocking_timeout=self.timeout)
            if not await lock.acquire():
                raise RunLockTimeout(f"could not acquire {self.name} within {self.timeout}s")
            try:
                yield
            finally:
                try:
                    await lock.release()
                except LockError as e:
                    logger.warning(f"Failed to release {self.name}: {e}")
