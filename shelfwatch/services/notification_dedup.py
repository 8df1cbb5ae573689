"""通知去重：冷却窗口内已通知过的 (item, condition) 不再发送"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shelfwatch.models.notification import NotificationLog, LOG_STATUS_DELIVERED
from shelfwatch.services.item_selector import ExpiryCandidate

logger = logging.getLogger(__name__)


class Deduplicator:
    """滚动窗口去重。

    Args:
        session: 数据库会话
        cooldown: 冷却窗口，sent_at > now - cooldown 的记录视为已通知
        retry_failed: True 时只有投递成功的记录参与去重，失败的下次运行会重试
    """

    def __init__(self, session: AsyncSession, cooldown: timedelta, retry_failed: bool = True):
        self.session = session
        self.cooldown = cooldown
        self.retry_failed = retry_failed

    async def recently_notified(self, item_ids: list[int], now: datetime) -> set[tuple[int, str]]:
        if not item_ids:
            return set()

        stmt = select(NotificationLog.item_id, NotificationLog.condition).where(
            NotificationLog.item_id.in_(item_ids),
            NotificationLog.sent_at > now - self.cooldown,
        )
        if self.retry_failed:
            stmt = stmt.where(NotificationLog.status == LOG_STATUS_DELIVERED)

        result = await self.session.execute(stmt.distinct())
        return {(row.item_id, row.condition) for row in result.all()}

    async def filter(
        self,
        by_user: dict[str, list[ExpiryCandidate]],
        now: datetime,
    ) -> tuple[dict[str, list[ExpiryCandidate]], int]:
        """返回 (可发送的候选, 被跳过的数量)"""
        item_ids = sorted({c.item_id for items in by_user.values() for c in items})
        notified = await self.recently_notified(item_ids, now)

        eligible: dict[str, list[ExpiryCandidate]] = {}
        skipped = 0
        for user_id, candidates in by_user.items():
            keep = [c for c in candidates if c.key not in notified]
            skipped += len(candidates) - len(keep)
            if keep:
                eligible[user_id] = keep

        if skipped:
            logger.info(f"Dedup skipped {skipped} notifications within {self.cooldown} cooldown")
        return eligible, skipped
