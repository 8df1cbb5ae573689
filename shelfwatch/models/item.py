"""物品与分类模型（通知流程只读）"""
from sqlalchemy import Column, BigInteger, Integer, String, DateTime, Boolean, ForeignKey, text, Index
from sqlalchemy.orm import relationship

from shelfwatch.models.db import Base


class Category(Base):
    __tablename__ = "categories"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False)
    name = Column(String(64), nullable=False)
    created_at = Column(DateTime, server_default=text("CURRENT_TIMESTAMP"))

    __table_args__ = (
        Index("idx_category_user", "user_id"),
    )


class Item(Base):
    __tablename__ = "items"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False)
    category_id = Column(BigInteger, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True)
    name = Column(String(128), nullable=False)
    brand = Column(String(64), nullable=True)
    stock = Column(Integer, nullable=False, default=1)

    # 到期判定：优先绝对日期，其次 开封时间 + 开封后保质期 / 使用寿命
    expiration_date = Column(DateTime, nullable=True)
    shelf_life_days = Column(Integer, nullable=True)
    lifespan_days = Column(Integer, nullable=True)
    last_opened_at = Column(DateTime, nullable=True)

    notify_advance_days = Column(Integer, nullable=False, default=3)
    notify_enabled = Column(Boolean, nullable=False, default=True)
    is_archived = Column(Boolean, nullable=False, default=False)
    is_pinned = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, server_default=text("CURRENT_TIMESTAMP"))
    updated_at = Column(DateTime, server_default=text("CURRENT_TIMESTAMP"), onupdate=text("CURRENT_TIMESTAMP"))

    category = relationship(Category, lazy="joined")

    __table_args__ = (
        Index("idx_item_user_archived", "user_id", "is_archived"),
        Index("idx_item_expiration", "expiration_date"),
    )
