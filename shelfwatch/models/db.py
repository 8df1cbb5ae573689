import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import redis.asyncio as redis
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from shelfwatch.core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

Base = declarative_base()


class Database:
    """存储句柄：进程启动时 open()，关闭时 close()，显式注入到各组件。"""

    def __init__(self, url: str, db_type: str = "sqlite", redis_url: Optional[str] = None):
        self.url = url
        self.db_type = db_type
        self.redis_url = redis_url
        self.engine: Optional[AsyncEngine] = None
        self.redis_client: Optional[redis.Redis] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @classmethod
    def from_settings(cls, cfg: Settings = default_settings) -> "Database":
        return cls(
            cfg.DATABASE_URL,
            db_type=cfg.DB_TYPE,
            redis_url=cfg.REDIS_URL if cfg.REDIS_ENABLED else None,
        )

    @property
    def is_open(self) -> bool:
        return self.engine is not None

    def open(self) -> "Database":
        if self.engine is not None:
            return self

        engine_kwargs = {"echo": False, "future": True}
        # 如果是 SQLite 内存库，所有会话必须共享同一个连接
        if self.db_type == "mysql":
            engine_kwargs.update({
                "pool_pre_ping": True,
                "pool_recycle": 3600,
                "pool_size": 10,
                "max_overflow": 20,
            })
        elif ":memory:" in self.url:
            engine_kwargs.update({
                "poolclass": StaticPool,
                "connect_args": {"check_same_thread": False},
            })

        self.engine = create_async_engine(self.url, **engine_kwargs)
        self._session_factory = async_sessionmaker(
            self.engine,
            expire_on_commit=False,
            class_=AsyncSession,
        )

        if self.redis_url:
            self.redis_client = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )

        logger.info("Database opened (%s)", self.db_type)
        return self

    async def close(self) -> None:
        if self.redis_client is not None:
            await self.redis_client.aclose()
            self.redis_client = None
            logger.info("Redis connection closed")

        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None
            self._session_factory = None
            logger.info("Database engine disposed")

    async def create_all(self) -> None:
        """按 ORM 模型建表（已存在的表保持不变）"""
        # 导入模型以注册到 Base.metadata
        from shelfwatch.models import item, notification, webhook_config  # noqa: F401

        async with self._require_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        if self._session_factory is None:
            raise RuntimeError("Database is not open. Call open() first.")
        async with self._session_factory() as session:
            yield session

    def _require_engine(self) -> AsyncEngine:
        if self.engine is None:
            raise RuntimeError("Database is not open. Call open() first.")
        return self.engine


def get_database(request: Request) -> Database:
    return request.app.state.db


async def get_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """获取数据库异步会话的依赖项"""
    async with get_database(request).session() as session:
        yield session
