"""
数据库初始化脚本

创建所有必需的数据库表，可选填充演示用户的分类、物品与 Webhook 配置

用法:
    python scripts/init_db.py
    python scripts/init_db.py --demo --user demo --webhook-url https://example.com/hook
"""
import argparse
import asyncio
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shelfwatch.core.config import settings
from shelfwatch.models.db import Database
from shelfwatch.models.item import Category, Item
from shelfwatch.models.webhook_config import WebhookConfig

DEMO_ITEMS = [
    # expires_in: 距到期天数；opened_days_ago: 开封天数（配合保质期 / 使用寿命）
    {"name": "牛奶", "category": "食品", "stock": 2, "expires_in": 2},
    {"name": "酸奶", "category": "食品", "stock": 1, "expires_in": -1},
    {"name": "洗发水", "category": "日用品", "stock": 0, "expires_in": None},
    {"name": "隐形眼镜护理液", "category": "日用品", "stock": 1, "expires_in": None,
     "opened_days_ago": 80, "shelf_life_days": 90},
    {"name": "牙刷", "category": "日用品", "stock": 3, "expires_in": None,
     "opened_days_ago": 88, "lifespan_days": 90},
    {"name": "大米", "category": "食品", "stock": 1, "expires_in": 120},
]


async def seed_demo_data(session: AsyncSession, user_id: str, webhook_url: Optional[str]) -> None:
    existing = await session.execute(select(Item).where(Item.user_id == user_id))
    if existing.scalars().first():
        print(f"用户 {user_id} 已有物品数据，跳过演示数据填充")
        return

    now = datetime.utcnow()
    categories: dict[str, Category] = {}
    for entry in DEMO_ITEMS:
        cat_name = entry["category"]
        if cat_name not in categories:
            categories[cat_name] = Category(user_id=user_id, name=cat_name)
            session.add(categories[cat_name])

        opened_days_ago = entry.get("opened_days_ago")
        session.add(Item(
            user_id=user_id,
            category=categories[cat_name],
            name=entry["name"],
            stock=entry["stock"],
            expiration_date=now + timedelta(days=entry["expires_in"]) if entry["expires_in"] is not None else None,
            last_opened_at=now - timedelta(days=opened_days_ago) if opened_days_ago else None,
            shelf_life_days=entry.get("shelf_life_days"),
            lifespan_days=entry.get("lifespan_days"),
            notify_advance_days=3,
            notify_enabled=True,
        ))

    if webhook_url:
        session.add(WebhookConfig(user_id=user_id, name="默认通知", url=webhook_url))

    await session.commit()
    print(f"已为用户 {user_id} 填充 {len(DEMO_ITEMS)} 个演示物品")


async def init_database(demo: bool, user_id: str, webhook_url: Optional[str]):
    print(f"正在初始化数据库 ({settings.DB_TYPE})...")
    print(f"连接地址: {settings.DATABASE_URL.split('@')[-1]}")  # 隐藏密码

    database = Database.from_settings(settings).open()
    try:
        await database.create_all()
        if demo:
            async with database.session() as session:
                await seed_demo_data(session, user_id, webhook_url)
    finally:
        await database.close()

    print("数据库初始化完成")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Initialize shelfwatch database")
    parser.add_argument("--demo", action="store_true", help="填充演示数据")
    parser.add_argument("--user", default=settings.ADMIN_USERNAME, help="演示数据所属用户 ID")
    parser.add_argument("--webhook-url", default=None, help="演示 Webhook 地址")
    args = parser.parse_args()

    asyncio.run(init_database(args.demo, args.user, args.webhook_url))
