"""过期检查服务

与触发方式解耦的核心流程，定时任务与 HTTP 触发接口都只调用 run()：
1. 查询缺货 / 临期 / 过期物品并按用户分组
2. 按通知日志去重
3. 加载用户启用的 Webhook 并并发投递
4. 所有投递得到确定结果后写入通知日志
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from typing import Optional

import httpx
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shelfwatch.core.config import Settings, settings as default_settings
from shelfwatch.core.run_lock import RunLock
from shelfwatch.models.db import Database
from shelfwatch.models.webhook_config import WebhookConfig
from shelfwatch.services.item_selector import ExpiryCandidate, ItemSelector
from shelfwatch.services.notification_dedup import Deduplicator
from shelfwatch.services.notification_log_service import NotificationLogService
from shelfwatch.services.webhook_dispatcher import (
    DeliveryResult,
    DispatchJob,
    WebhookDispatcher,
    WebhookTarget,
)

logger = logging.getLogger(__name__)


class ExpiryCheckError(RuntimeError):
    """运行级失败（查询或日志写入异常），本次运行中止"""


@dataclass
class ExpiryCheckResult:
    checked: int = 0
    expiring_found: int = 0
    notified: int = 0
    failed: int = 0
    skipped: int = 0
    users_notified: int = 0
    duration_ms: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


class ExpiryCheckService:
    def __init__(
        self,
        database: Database,
        dispatcher: WebhookDispatcher,
        run_lock: Optional[RunLock] = None,
        cooldown: timedelta = timedelta(hours=24),
        retry_failed: bool = True,
        run_timeout: Optional[float] = 300,
    ):
        self.database = database
        self.dispatcher = dispatcher
        self.run_lock = run_lock or RunLock()
        self.cooldown = cooldown
        self.retry_failed = retry_failed
        self.run_timeout = run_timeout

    @classmethod
    def from_settings(
        cls,
        database: Database,
        cfg: Settings = default_settings,
        client: Optional[httpx.AsyncClient] = None,
    ) -> "ExpiryCheckService":
        dispatcher = WebhookDispatcher(
            timeout=cfg.webhook_timeout_seconds,
            concurrency=cfg.WEBHOOK_CONCURRENCY,
            client=client,
        )
        return cls(
            database,
            dispatcher,
            run_lock=RunLock(database.redis_client, timeout=max(cfg.RUN_TIMEOUT_SECONDS * 2, 60)),
            cooldown=timedelta(hours=cfg.NOTIFY_COOLDOWN_HOURS),
            retry_failed=cfg.NOTIFY_RETRY_FAILED,
            run_timeout=cfg.RUN_TIMEOUT_SECONDS,
        )

    @property
    def is_running(self) -> bool:
        return self.run_lock.locked

    async def run(self, now: Optional[datetime] = None) -> ExpiryCheckResult:
        """执行一次完整的检查与通知流程（与其它运行串行）"""
        async with self.run_lock.hold():
            return await self._run(now or datetime.utcnow())

    async def _run(self, now: datetime) -> ExpiryCheckResult:
        started = time.monotonic()
        result = ExpiryCheckResult()
        logger.info(f"Expiry check started at {now:%Y-%m-%d %H:%M:%S}")

        try:
            async with self.database.session() as session:
                selection = await ItemSelector(session).select(now)
                result.checked = selection.checked
                result.expiring_found = len(selection.candidates)

                dedup = Deduplicator(session, self.cooldown, retry_failed=self.retry_failed)
                eligible, result.skipped = await dedup.filter(selection.by_user, now)
                targets = await self._load_targets(session, list(eligible))
        except SQLAlchemyError as e:
            logger.error(f"Expiry check aborted, query failed: {e}", exc_info=True)
            raise ExpiryCheckError(f"query failed: {e}") from e

        jobs: list[DispatchJob] = []
        for user_id, candidates in eligible.items():
            user_targets = targets.get(user_id)
            if not user_targets:
                logger.debug(f"User {user_id} has no enabled webhooks, skipping {len(candidates)} items")
                continue
            result.users_notified += 1
            jobs.extend(DispatchJob(t, c) for c in candidates for t in user_targets)

        deadline = None
        if self.run_timeout is not None:
            deadline = max(self.run_timeout - (time.monotonic() - started), 0)

        deliveries: list[DeliveryResult] = []
        try:
            await self.dispatcher.dispatch(jobs, deadline=deadline, collected=deliveries)
        except asyncio.CancelledError:
            # 已送达的通知必须落库，否则下次运行会重复发送
            logger.warning(f"Expiry check cancelled, recording {len(deliveries)} finished deliveries")
            await asyncio.shield(self._record(deliveries, now))
            raise

        grouped = await asyncio.shield(self._record(deliveries, now))
        for delivery in deliveries:
            if delivery.success:
                result.notified += 1
            else:
                result.failed += 1
                result.errors.append(
                    f"[{delivery.job.candidate.name}] Webhook({delivery.webhook_id}): "
                    f"{delivery.error or delivery.status.value}"
                )

        result.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"Expiry check completed: {result.checked} checked, "
            f"{result.expiring_found} found, {result.notified} sent, "
            f"{result.failed} failed, {result.skipped} skipped, "
            f"{result.users_notified} users, {grouped} logged, took {result.duration_ms}ms"
        )
        return result

    async def _record(self, deliveries: list[DeliveryResult], now: datetime) -> int:
        """按 (item, condition) 分组写入通知日志，返回写入的日志条数"""
        grouped: dict[tuple[int, str], list[DeliveryResult]] = defaultdict(list)
        candidates_by_key: dict[tuple[int, str], ExpiryCandidate] = {}
        for delivery in deliveries:
            candidate = delivery.job.candidate
            grouped[candidate.key].append(delivery)
            candidates_by_key[candidate.key] = candidate

        if not grouped:
            return 0

        try:
            async with self.database.session() as session:
                log_svc = NotificationLogService(session)
                for key, results in grouped.items():
                    log_svc.add(candidates_by_key[key], results, now)
                await log_svc.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to write notification logs: {e}", exc_info=True)
            raise ExpiryCheckError(f"notification log write failed: {e}") from e
        return len(grouped)

    async def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """等待本进程内正在执行的检查结束；超时返回 False"""
        try:
            await asyncio.wait_for(self.run_lock.wait_released(), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Expiry check still running after {timeout}s")
            return False
        return True

    async def _load_targets(self, session: AsyncSession, user_ids: list[str]) -> dict[str, list[WebhookTarget]]:
        if not user_ids:
            return {}
        stmt = (
            select(WebhookConfig)
            .where(WebhookConfig.user_id.in_(user_ids), WebhookConfig.enabled.is_(True))
            .order_by(WebhookConfig.id)
        )
        rows = await session.execute(stmt)
        targets: dict[str, list[WebhookTarget]] = defaultdict(list)
        for config in rows.scalars().all():
            targets[config.user_id].append(WebhookTarget.from_model(config))
        return dict(targets)
