"""Webhook 配置管理（按用户隔离）"""
from __future__ import annotations

from typing import Optional

from sqlalchemy import select, and_, desc
from sqlalchemy.ext.asyncio import AsyncSession

from shelfwatch.models.webhook_config import WebhookConfig
from shelfwatch.services.webhook_dispatcher import DeliveryResult, WebhookDispatcher, WebhookTarget


class WebhookConfigService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_configs(self, user_id: str) -> list[WebhookConfig]:
        stmt = select(WebhookConfig).where(
            WebhookConfig.user_id == user_id
        ).order_by(desc(WebhookConfig.created_at), desc(WebhookConfig.id))
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def create_config(self, user_id: str, payload: dict) -> WebhookConfig:
        config = WebhookConfig(user_id=user_id, **payload)
        self.session.add(config)
        await self.session.commit()
        await self.session.refresh(config)
        return config

    async def update_config(self, config_id: int, user_id: str, payload: dict) -> Optional[WebhookConfig]:
        config = await self.get_config(config_id, user_id)
        if not config:
            return None
        for key, value in payload.items():
            if value is not None and hasattr(config, key):
                setattr(config, key, value)
        await self.session.commit()
        await self.session.refresh(config)
        return config

    async def delete_config(self, config_id: int, user_id: str) -> bool:
        config = await self.get_config(config_id, user_id)
        if not config:
            return False
        await self.session.delete(config)
        await self.session.commit()
        return True

    async def test_config(self, config_id: int, user_id: str, dispatcher: WebhookDispatcher) -> Optional[DeliveryResult]:
        """用示例物品数据发送测试消息；配置不存在时返回 None"""
        config = await self.get_config(config_id, user_id)
        if not config:
            return None
        return await dispatcher.send_test(WebhookTarget.from_model(config))

    async def get_config(self, config_id: int, user_id: str) -> Optional[WebhookConfig]:
        stmt = select(WebhookConfig).where(
            and_(WebhookConfig.id == config_id, WebhookConfig.user_id == user_id)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()
