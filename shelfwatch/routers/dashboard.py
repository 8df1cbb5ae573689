"""仪表盘路由"""
from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from shelfwatch.core.auth import get_current_user
from shelfwatch.models.db import get_session
from shelfwatch.schemas.items import DashboardStatsView, ItemListResponse, ItemView
from shelfwatch.services.item_service import ItemService

router = APIRouter(prefix="/dashboard", tags=["Dashboard"])


@router.get("/stats", response_model=DashboardStatsView)
async def get_dashboard_stats(
    session: AsyncSession = Depends(get_session),
    current_user: str = Depends(get_current_user),
):
    """统计：物品总数、即将过期（含已过期）、库存不足（含缺货）、开启提醒的物品数"""
    stats = await ItemService(session).dashboard_stats(current_user, datetime.utcnow())
    return DashboardStatsView.from_stats(stats)


@router.get("/pinned", response_model=ItemListResponse)
async def get_pinned_items(
    session: AsyncSession = Depends(get_session),
    current_user: str = Depends(get_current_user),
):
    """置顶跟踪的物品"""
    items = await ItemService(session).pinned_items(current_user)
    now = datetime.utcnow()
    views = [ItemView.from_item(item, now) for item in items]
    return ItemListResponse(items=views, total=len(views))
