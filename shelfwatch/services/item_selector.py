"""物品筛选：找出需要通知的缺货 / 临期 / 过期物品（只读，无副作用）"""
from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shelfwatch.models.item import Item

logger = logging.getLogger(__name__)


class NotifyCondition(str, Enum):
    OUT_OF_STOCK = "out_of_stock"
    EXPIRING = "expiring"
    EXPIRED = "expired"


class ExpirySource(str, Enum):
    EXPIRATION_DATE = "expiration_date"
    SHELF_LIFE = "shelf_life"
    LIFESPAN = "lifespan"


@dataclass(frozen=True)
class ExpiryCandidate:
    item_id: int
    user_id: str
    name: str
    stock: int
    condition: NotifyCondition
    brand: Optional[str] = None
    category_name: Optional[str] = None
    expiry_date: Optional[datetime] = None
    days_left: Optional[int] = None
    source: Optional[ExpirySource] = None

    @property
    def key(self) -> tuple[int, str]:
        return self.item_id, self.condition.value


@dataclass
class SelectionResult:
    checked: int
    by_user: dict[str, list[ExpiryCandidate]]

    @property
    def candidates(self) -> list[ExpiryCandidate]:
        return [c for items in self.by_user.values() for c in items]


def days_until(target: datetime, now: datetime) -> int:
    """target - now 的天数差，向下取整（负数表示已过期）"""
    return math.floor((target - now).total_seconds() / 86400)


def effective_expiry(item: Item) -> tuple[Optional[datetime], Optional[ExpirySource]]:
    """优先使用绝对过期日期，其次 开封时间 + 保质期，最后 开封时间 + 使用寿命"""
    if item.expiration_date is not None:
        return item.expiration_date, ExpirySource.EXPIRATION_DATE
    if item.last_opened_at is not None:
        if item.shelf_life_days:
            return item.last_opened_at + timedelta(days=item.shelf_life_days), ExpirySource.SHELF_LIFE
        if item.lifespan_days:
            return item.last_opened_at + timedelta(days=item.lifespan_days), ExpirySource.LIFESPAN
    return None, None


def evaluate_item(item: Item, now: datetime) -> Optional[ExpiryCandidate]:
    """判断单个物品是否需要通知，返回候选或 None"""
    category_name = item.category.name if item.category is not None else None
    base = dict(
        item_id=item.id,
        user_id=item.user_id,
        name=item.name,
        stock=item.stock,
        brand=item.brand,
        category_name=category_name,
    )

    if item.stock <= 0:
        return ExpiryCandidate(condition=NotifyCondition.OUT_OF_STOCK, **base)

    if not item.notify_enabled:
        return None

    expiry, source = effective_expiry(item)
    if expiry is None:
        return None

    days_left = days_until(expiry, now)
    if days_left > (item.notify_advance_days or 0):
        return None

    condition = NotifyCondition.EXPIRED if days_left < 0 else NotifyCondition.EXPIRING
    return ExpiryCandidate(
        condition=condition,
        expiry_date=expiry,
        days_left=days_left,
        source=source,
        **base,
    )


class ItemSelector:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def select(self, now: datetime, user_ids: Optional[list[str]] = None) -> SelectionResult:
        """返回按用户分组的待通知物品；查询异常直接向上抛出"""
        stmt = select(Item).where(Item.is_archived.is_(False))
        if user_ids:
            stmt = stmt.where(Item.user_id.in_(user_ids))
        stmt = stmt.order_by(Item.user_id, Item.id)

        result = await self.session.execute(stmt)
        items = list(result.scalars().unique().all())

        by_user: dict[str, list[ExpiryCandidate]] = defaultdict(list)
        for item in items:
            candidate = evaluate_item(item, now)
            if candidate is not None:
                by_user[candidate.user_id].append(candidate)

        selected = sum(len(v) for v in by_user.values())
        logger.info(f"Item selection: {len(items)} checked, {selected} candidates, {len(by_user)} users")
        return SelectionResult(checked=len(items), by_user=dict(by_user))
