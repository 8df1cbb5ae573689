"""Item / category / dashboard schemas"""
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from shelfwatch.models.item import Item
from shelfwatch.services.item_service import DashboardStats, item_status, remaining_days
from shelfwatch.services.item_selector import effective_expiry

# 请求中允许置空的字段以外，其余字段传 null 视为未修改
_NON_NULLABLE_FIELDS = {"name", "stock", "notify_advance_days", "notify_enabled", "is_archived", "is_pinned"}
_DATETIME_FIELDS = ("expiration_date", "last_opened_at")


def _to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    # 数据库统一存 naive UTC
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class ItemCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=128)
    category_id: Optional[int] = None
    brand: Optional[str] = Field(None, max_length=64)
    stock: int = Field(1, ge=0, description="库存数量，0 表示缺货")
    expiration_date: Optional[datetime] = None
    shelf_life_days: Optional[int] = Field(None, ge=1, description="开封后保质期（天）")
    lifespan_days: Optional[int] = Field(None, ge=1, description="使用寿命（天）")
    last_opened_at: Optional[datetime] = None
    notify_advance_days: int = Field(3, ge=0, le=10, description="提前几天提醒")
    notify_enabled: bool = True
    is_pinned: bool = False
    is_archived: bool = False

    normalize_datetimes = field_validator(*_DATETIME_FIELDS)(_to_naive_utc)

    def to_model_fields(self) -> dict:
        return self.model_dump()


class ItemUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=128)
    category_id: Optional[int] = None
    brand: Optional[str] = Field(None, max_length=64)
    stock: Optional[int] = Field(None, ge=0)
    expiration_date: Optional[datetime] = None
    shelf_life_days: Optional[int] = Field(None, ge=1)
    lifespan_days: Optional[int] = Field(None, ge=1)
    last_opened_at: Optional[datetime] = None
    notify_advance_days: Optional[int] = Field(None, ge=0, le=10)
    notify_enabled: Optional[bool] = None
    is_pinned: Optional[bool] = None
    is_archived: Optional[bool] = None

    normalize_datetimes = field_validator(*_DATETIME_FIELDS)(_to_naive_utc)

    def to_model_fields(self) -> dict:
        data = self.model_dump(exclude_unset=True)
        return {k: v for k, v in data.items() if v is not None or k not in _NON_NULLABLE_FIELDS}


class ItemView(BaseModel):
    id: int
    user_id: str
    name: str
    brand: Optional[str] = None
    stock: int
    category_id: Optional[int] = None
    category_name: Optional[str] = None
    expiration_date: Optional[datetime] = None
    shelf_life_days: Optional[int] = None
    lifespan_days: Optional[int] = None
    last_opened_at: Optional[datetime] = None
    notify_advance_days: int
    notify_enabled: bool
    is_archived: bool
    is_pinned: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # 计算字段
    status: str
    days_left: Optional[int] = None
    effective_expiry: Optional[datetime] = None

    @classmethod
    def from_item(cls, item: Item, now: datetime) -> "ItemView":
        expiry, _ = effective_expiry(item)
        return cls(
            id=item.id,
            user_id=item.user_id,
            name=item.name,
            brand=item.brand,
            stock=item.stock,
            category_id=item.category_id,
            category_name=item.category.name if item.category is not None else None,
            expiration_date=item.expiration_date,
            shelf_life_days=item.shelf_life_days,
            lifespan_days=item.lifespan_days,
            last_opened_at=item.last_opened_at,
            notify_advance_days=item.notify_advance_days,
            notify_enabled=item.notify_enabled,
            is_archived=item.is_archived,
            is_pinned=item.is_pinned,
            created_at=item.created_at,
            updated_at=item.updated_at,
            status=item_status(item, now).value,
            days_left=remaining_days(item, now),
            effective_expiry=expiry,
        )


class ItemListResponse(BaseModel):
    status: str = "ok"
    total: int = 0
    items: list[ItemView] = []


class CategoryCreateRequest(BaseModel):
    name: str = Field(..., max_length=64)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Category name is required")
        return value


class CategoryView(BaseModel):
    id: int
    name: str
    created_at: Optional[datetime] = None


class CategoryListResponse(BaseModel):
    status: str = "ok"
    total: int = 0
    items: list[CategoryView] = []


class DashboardStatsView(BaseModel):
    total_items: int
    expiring_soon: int
    low_stock: int
    notifications_enabled: int

    @classmethod
    def from_stats(cls, stats: DashboardStats) -> "DashboardStatsView":
        return cls(
            total_items=stats.total_items,
            expiring_soon=stats.expiring_soon,
            low_stock=stats.low_stock,
            notifications_enabled=stats.notifications_enabled,
        )
