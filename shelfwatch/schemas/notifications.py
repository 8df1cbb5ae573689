"""Notification log / expiry check schemas"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class DeliveryView(BaseModel):
    webhook_id: int
    status: str
    http_status: Optional[int] = None
    error: Optional[str] = None
    duration_ms: Optional[int] = None


class NotificationLogView(BaseModel):
    id: int
    item_id: int
    condition: str
    status: str
    days_left: Optional[int] = None
    expiry_date: Optional[datetime] = None
    delivered_count: int
    failed_count: int
    sent_at: datetime
    deliveries: list[DeliveryView] = []


class NotificationHistoryResponse(BaseModel):
    status: str = "ok"
    total: int = 0
    items: list[NotificationLogView] = []


class ExpiryCheckResponse(BaseModel):
    success: bool = True
    checked: int
    expiring_found: int
    notified: int
    failed: int
    skipped: int
    users_notified: int
    duration_ms: int
    errors: list[str] = []
