"""Webhook 通知配置模型"""
from sqlalchemy import Column, BigInteger, Integer, String, DateTime, Boolean, Text, text, Index

from shelfwatch.models.db import Base

DEFAULT_TITLE_TEMPLATE = "{{itemName}} 即将过期"
DEFAULT_CONTENT_TEMPLATE = "{{itemName}}（{{categoryName}}）剩余 {{daysLeft}}，到期日 {{expiryDate}}，库存 {{stock}}"


class WebhookConfig(Base):
    __tablename__ = "webhook_configs"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False)
    name = Column(String(50), nullable=False)
    url = Column(String(512), nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    title_template = Column(String(200), nullable=False, default=DEFAULT_TITLE_TEMPLATE)
    content_template = Column(Text, nullable=False, default=DEFAULT_CONTENT_TEMPLATE)
    # 请求体 JSON 中标题 / 内容使用的字段名
    title_key = Column(String(50), nullable=False, default="title")
    content_key = Column(String(50), nullable=False, default="content")
    created_at = Column(DateTime, server_default=text("CURRENT_TIMESTAMP"))
    updated_at = Column(DateTime, server_default=text("CURRENT_TIMESTAMP"), onupdate=text("CURRENT_TIMESTAMP"))

    __table_args__ = (
        Index("idx_webhook_user_enabled", "user_id", "enabled"),
    )
