"""通知记录模型

NotificationLog 每次运行对每个 (item, condition) 最多写一条，
WebhookDelivery 记录该条通知在各个 Webhook 上的投递结果。
"""
from sqlalchemy import Column, BigInteger, Integer, String, DateTime, Text, ForeignKey, text, Index
from sqlalchemy.orm import relationship

from shelfwatch.models.db import Base

LOG_STATUS_DELIVERED = "DELIVERED"
LOG_STATUS_FAILED = "FAILED"


class NotificationLog(Base):
    __tablename__ = "notification_log"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    item_id = Column(BigInteger, nullable=False)
    user_id = Column(String(64), nullable=False)
    condition = Column(String(16), nullable=False)
    status = Column(String(16), nullable=False, default=LOG_STATUS_DELIVERED)
    days_left = Column(Integer, nullable=True)
    expiry_date = Column(DateTime, nullable=True)
    delivered_count = Column(Integer, nullable=False, default=0)
    failed_count = Column(Integer, nullable=False, default=0)
    sent_at = Column(DateTime, nullable=False)

    deliveries = relationship(
        "WebhookDelivery",
        back_populates="log",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        Index("idx_notif_item_condition_time", "item_id", "condition", "sent_at"),
        Index("idx_notif_user_time", "user_id", "sent_at"),
    )


class WebhookDelivery(Base):
    __tablename__ = "webhook_deliveries"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    log_id = Column(BigInteger, ForeignKey("notification_log.id", ondelete="CASCADE"), nullable=False)
    webhook_id = Column(BigInteger, nullable=False)
    status = Column(String(16), nullable=False)
    http_status = Column(Integer, nullable=True)
    error = Column(Text, nullable=True)
    duration_ms = Column(Integer, nullable=True)
    created_at = Column(DateTime, server_default=text("CURRENT_TIMESTAMP"))

    log = relationship(NotificationLog, back_populates="deliveries")

    __table_args__ = (
        Index("idx_delivery_log", "log_id"),
    )
