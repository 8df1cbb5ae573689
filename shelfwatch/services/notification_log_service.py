"""通知日志：写入投递记录、查询历史、按保留期清理"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable

from sqlalchemy import select, delete, desc
from sqlalchemy.ext.asyncio import AsyncSession

from shelfwatch.models.notification import (
    NotificationLog,
    WebhookDelivery,
    LOG_STATUS_DELIVERED,
    LOG_STATUS_FAILED,
)
from shelfwatch.services.item_selector import ExpiryCandidate
from shelfwatch.services.webhook_dispatcher import DeliveryResult

logger = logging.getLogger(__name__)


class NotificationLogService:
    def __init__(self, session: AsyncSession):
        self.session = session

    def add(self, candidate: ExpiryCandidate, results: Iterable[DeliveryResult], now: datetime) -> NotificationLog:
        """为一个 (item, condition) 追加一条日志及其各 Webhook 的投递明细（不提交）"""
        results = list(results)
        delivered = sum(1 for r in results if r.success)

        log = NotificationLog(
            item_id=candidate.item_id,
            user_id=candidate.user_id,
            condition=candidate.condition.value,
            status=LOG_STATUS_DELIVERED if delivered else LOG_STATUS_FAILED,
            days_left=candidate.days_left,
            expiry_date=candidate.expiry_date,
            delivered_count=delivered,
            failed_count=len(results) - delivered,
            sent_at=now,
        )
        log.deliveries = [
            WebhookDelivery(
                webhook_id=r.webhook_id,
                status=r.status.value,
                http_status=r.http_status,
                error=r.error,
                duration_ms=r.duration_ms,
            )
            for r in results
        ]
        self.session.add(log)
        return log

    async def commit(self) -> None:
        await self.session.commit()

    async def history(self, user_id: str, limit: int = 20) -> list[NotificationLog]:
        stmt = (
            select(NotificationLog)
            .where(NotificationLog.user_id == user_id)
            .order_by(desc(NotificationLog.sent_at), desc(NotificationLog.id))
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def prune(self, older_than: datetime) -> int:
        """删除 sent_at 早于 older_than 的日志及其投递明细，返回删除的日志数"""
        old_ids = select(NotificationLog.id).where(NotificationLog.sent_at < older_than)
        await self.session.execute(
            delete(WebhookDelivery).where(WebhookDelivery.log_id.in_(old_ids))
        )
        result = await self.session.execute(
            delete(NotificationLog).where(NotificationLog.sent_at < older_than)
        )
        await self.session.commit()
        deleted = result.rowcount or 0
        logger.info(f"Pruned {deleted} notification logs older than {older_than:%Y-%m-%d %H:%M:%S}")
        return deleted
