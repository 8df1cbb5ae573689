"""通知历史路由"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from shelfwatch.core.auth import get_current_user
from shelfwatch.models.db import get_session
from shelfwatch.schemas.notifications import NotificationHistoryResponse, NotificationLogView
from shelfwatch.services.notification_log_service import NotificationLogService

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("/history", response_model=NotificationHistoryResponse)
async def get_notification_history(
    limit: int = Query(20, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
    current_user: str = Depends(get_current_user),
):
    """获取当前用户的通知发送历史"""
    svc = NotificationLogService(session)
    logs = await svc.history(current_user, limit)
    items = [NotificationLogView.model_validate(log, from_attributes=True) for log in logs]
    return NotificationHistoryResponse(items=items, total=len(items))
