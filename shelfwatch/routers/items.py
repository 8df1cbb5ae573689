"""物品与分类路由"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from shelfwatch.core.auth import get_current_user
from shelfwatch.models.db import get_session
from shelfwatch.schemas.items import (
    ItemCreateRequest, ItemUpdateRequest, ItemView, ItemListResponse,
    CategoryCreateRequest, CategoryView, CategoryListResponse,
)
from shelfwatch.services.item_service import CategoryNotFound, CategoryService, ItemService

router = APIRouter(tags=["Items"])


@router.get("/items", response_model=ItemListResponse)
async def list_items(
    include_archived: bool = Query(False, description="是否包含已归档物品"),
    category_id: Optional[int] = Query(None),
    session: AsyncSession = Depends(get_session),
    current_user: str = Depends(get_current_user),
):
    """获取当前用户的物品列表（置顶优先）"""
    items = await ItemService(session).list_items(current_user, include_archived, category_id)
    now = datetime.utcnow()
    views = [ItemView.from_item(item, now) for item in items]
    return ItemListResponse(items=views, total=len(views))


@router.post("/items", response_model=ItemView, status_code=201)
async def create_item(
    payload: ItemCreateRequest,
    session: AsyncSession = Depends(get_session),
    current_user: str = Depends(get_current_user),
):
    try:
        item = await ItemService(session).create_item(current_user, payload.to_model_fields())
    except CategoryNotFound as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ItemView.from_item(item, datetime.utcnow())


@router.get("/items/{item_id}", response_model=ItemView)
async def get_item(
    item_id: int,
    session: AsyncSession = Depends(get_session),
    current_user: str = Depends(get_current_user),
):
    item = await ItemService(session).get_item(item_id, current_user)
    if not item:
        raise HTTPException(status_code=404, detail="Item not found")
    return ItemView.from_item(item, datetime.utcnow())


@router.put("/items/{item_id}", response_model=ItemView)
async def update_item(
    item_id: int,
    payload: ItemUpdateRequest,
    session: AsyncSession = Depends(get_session),
    current_user: str = Depends(get_current_user),
):
    """更新物品；显式传 null 可清空过期日期等可选字段"""
    try:
        item = await ItemService(session).update_item(item_id, current_user, payload.to_model_fields())
    except CategoryNotFound as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not item:
        raise HTTPException(status_code=404, detail="Item not found")
    return ItemView.from_item(item, datetime.utcnow())


@router.delete("/items/{item_id}")
async def delete_item(
    item_id: int,
    session: AsyncSession = Depends(get_session),
    current_user: str = Depends(get_current_user),
):
    ok = await ItemService(session).delete_item(item_id, current_user)
    if not ok:
        raise HTTPException(status_code=404, detail="Item not found")
    return {"status": "ok"}


@router.get("/categories", response_model=CategoryListResponse)
async def list_categories(
    session: AsyncSession = Depends(get_session),
    current_user: str = Depends(get_current_user),
):
    categories = await CategoryService(session).list_categories(current_user)
    items = [CategoryView.model_validate(c, from_attributes=True) for c in categories]
    return CategoryListResponse(items=items, total=len(items))


@router.post("/categories", response_model=CategoryView, status_code=201)
async def create_category(
    payload: CategoryCreateRequest,
    session: AsyncSession = Depends(get_session),
    current_user: str = Depends(get_current_user),
):
    category = await CategoryService(session).create_category(current_user, payload.name)
    return CategoryView.model_validate(category, from_attributes=True)
