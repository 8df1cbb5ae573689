"""物品 / 分类管理与仪表盘统计（按用户隔离）"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import select, and_, desc
from sqlalchemy.ext.asyncio import AsyncSession

from shelfwatch.models.item import Category, Item
from shelfwatch.services.item_selector import days_until, effective_expiry

logger = logging.getLogger(__name__)

# 仪表盘 / 列表展示用阈值，与通知的 notify_advance_days 相互独立
THRESHOLD_EXPIRING_SOON_DAYS = 7
THRESHOLD_LOW_STOCK = 2


class ItemStatus(str, Enum):
    OUT_OF_STOCK = "out_of_stock"
    EXPIRED = "expired"
    EXPIRING_SOON = "expiring_soon"
    LOW_STOCK = "low_stock"
    HEALTHY = "healthy"


class CategoryNotFound(ValueError):
    pass


def remaining_days(item: Item, now: datetime) -> Optional[int]:
    expiry, _ = effective_expiry(item)
    return days_until(expiry, now) if expiry is not None else None


def item_status(item: Item, now: datetime) -> ItemStatus:
    """物品展示状态

    优先级: 缺货 > 已过期 > 即将过期(7 天内) > 库存不足(<2) > 正常
    """
    stock = item.stock or 0
    if stock <= 0:
        return ItemStatus.OUT_OF_STOCK

    days_left = remaining_days(item, now)
    if days_left is not None and days_left < 0:
        return ItemStatus.EXPIRED
    if days_left is not None and days_left <= THRESHOLD_EXPIRING_SOON_DAYS:
        return ItemStatus.EXPIRING_SOON
    if stock < THRESHOLD_LOW_STOCK:
        return ItemStatus.LOW_STOCK
    return ItemStatus.HEALTHY


@dataclass
class DashboardStats:
    total_items: int = 0
    expiring_soon: int = 0
    low_stock: int = 0
    notifications_enabled: int = 0


class ItemService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_items(
        self,
        user_id: str,
        include_archived: bool = False,
        category_id: Optional[int] = None,
    ) -> list[Item]:
        stmt = select(Item).where(Item.user_id == user_id)
        if not include_archived:
            stmt = stmt.where(Item.is_archived.is_(False))
        if category_id is not None:
            stmt = stmt.where(Item.category_id == category_id)
        stmt = stmt.order_by(desc(Item.is_pinned), desc(Item.updated_at), desc(Item.id))
        result = await self.session.execute(stmt)
        return list(result.scalars().unique().all())

    async def get_item(self, item_id: int, user_id: str) -> Optional[Item]:
        stmt = select(Item).where(and_(Item.id == item_id, Item.user_id == user_id))
        result = await self.session.execute(stmt)
        return result.scalars().unique().first()

    async def create_item(self, user_id: str, payload: dict) -> Item:
        await self._check_category(user_id, payload.get("category_id"))
        item = Item(user_id=user_id, **payload)
        self.session.add(item)
        await self.session.commit()
        await self._reload(item)
        logger.info(f"Item created: {item.id} ({item.name}) for user {user_id}")
        return item

    async def update_item(self, item_id: int, user_id: str, payload: dict) -> Optional[Item]:
        """payload 只包含请求中显式给出的字段，None 表示清空该字段"""
        item = await self.get_item(item_id, user_id)
        if not item:
            return None
        if "category_id" in payload:
            await self._check_category(user_id, payload["category_id"])
        for key, value in payload.items():
            if hasattr(item, key):
                setattr(item, key, value)
        await self.session.commit()
        await self._reload(item)
        return item

    async def delete_item(self, item_id: int, user_id: str) -> bool:
        item = await self.get_item(item_id, user_id)
        if not item:
            return False
        await self.session.delete(item)
        await self.session.commit()
        logger.info(f"Item deleted: {item_id} for user {user_id}")
        return True

    async def pinned_items(self, user_id: str) -> list[Item]:
        """仪表盘跟踪的置顶物品（不含已归档）"""
        stmt = (
            select(Item)
            .where(Item.user_id == user_id, Item.is_pinned.is_(True), Item.is_archived.is_(False))
            .order_by(desc(Item.updated_at), desc(Item.id))
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().unique().all())

    async def dashboard_stats(self, user_id: str, now: datetime) -> DashboardStats:
        items = await self.list_items(user_id)
        stats = DashboardStats(total_items=len(items))
        for item in items:
            status = item_status(item, now)
            if status in (ItemStatus.EXPIRING_SOON, ItemStatus.EXPIRED):
                stats.expiring_soon += 1
            if status in (ItemStatus.LOW_STOCK, ItemStatus.OUT_OF_STOCK):
                stats.low_stock += 1
            if item.notify_enabled:
                stats.notifications_enabled += 1
        return stats

    async def _check_category(self, user_id: str, category_id: Optional[int]) -> None:
        if category_id is None:
            return
        if not await CategoryService(self.session).get_category(category_id, user_id):
            raise CategoryNotFound(f"category not found: {category_id}")

    async def _reload(self, item: Item) -> None:
        await self.session.refresh(item)
        await self.session.refresh(item, attribute_names=["category"])


class CategoryService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_categories(self, user_id: str) -> list[Category]:
        stmt = select(Category).where(Category.user_id == user_id).order_by(Category.name, Category.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_category(self, category_id: int, user_id: str) -> Optional[Category]:
        stmt = select(Category).where(and_(Category.id == category_id, Category.user_id == user_id))
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def create_category(self, user_id: str, name: str) -> Category:
        name = (name or "").strip()
        if not name:
            raise ValueError("Category name is required")
        category = Category(user_id=user_id, name=name)
        self.session.add(category)
        await self.session.commit()
        await self.session.refresh(category)
        return category
