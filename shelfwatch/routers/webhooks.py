"""Webhook 配置路由"""
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from shelfwatch.core.auth import get_current_user
from shelfwatch.models.db import get_session
from shelfwatch.schemas.webhooks import (
    WebhookCreateRequest, WebhookUpdateRequest, WebhookView,
    WebhookListResponse, WebhookTestResponse,
)
from shelfwatch.services.webhook_config_service import WebhookConfigService

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.get("", response_model=WebhookListResponse)
async def list_webhooks(
    session: AsyncSession = Depends(get_session),
    current_user: str = Depends(get_current_user),
):
    """获取当前用户的 Webhook 配置列表"""
    svc = WebhookConfigService(session)
    configs = await svc.list_configs(current_user)
    items = [WebhookView.model_validate(c, from_attributes=True) for c in configs]
    return WebhookListResponse(items=items, total=len(items))


@router.post("", response_model=WebhookView, status_code=201)
async def create_webhook(
    payload: WebhookCreateRequest,
    session: AsyncSession = Depends(get_session),
    current_user: str = Depends(get_current_user),
):
    """创建 Webhook 配置"""
    svc = WebhookConfigService(session)
    config = await svc.create_config(current_user, payload.to_model_fields())
    return WebhookView.model_validate(config, from_attributes=True)


@router.put("/{config_id}", response_model=WebhookView)
async def update_webhook(
    config_id: int,
    payload: WebhookUpdateRequest,
    session: AsyncSession = Depends(get_session),
    current_user: str = Depends(get_current_user),
):
    """更新 Webhook 配置"""
    svc = WebhookConfigService(session)
    config = await svc.update_config(config_id, current_user, payload.to_model_fields())
    if not config:
        raise HTTPException(status_code=404, detail="Webhook config not found")
    return WebhookView.model_validate(config, from_attributes=True)


@router.delete("/{config_id}")
async def delete_webhook(
    config_id: int,
    session: AsyncSession = Depends(get_session),
    current_user: str = Depends(get_current_user),
):
    """删除 Webhook 配置"""
    svc = WebhookConfigService(session)
    ok = await svc.delete_config(config_id, current_user)
    if not ok:
        raise HTTPException(status_code=404, detail="Webhook config not found")
    return {"status": "ok"}


@router.post("/{config_id}/test", response_model=WebhookTestResponse)
async def test_webhook(
    config_id: int,
    request: Request,
    session: AsyncSession = Depends(get_session),
    current_user: str = Depends(get_current_user),
):
    """使用示例数据发送一条测试通知"""
    svc = WebhookConfigService(session)
    dispatcher = request.app.state.expiry_service.dispatcher
    result = await svc.test_config(config_id, current_user, dispatcher)
    if result is None:
        raise HTTPException(status_code=404, detail="Webhook config not found")
    return WebhookTestResponse(
        success=result.success,
        status=result.status.value,
        http_status=result.http_status,
        error=result.error,
        duration_ms=result.duration_ms,
    )
