"""定时触发接口：过期物品检查

薄触发层，仅负责：
1. 验证 CRON_SECRET
2. 调用 ExpiryCheckService
3. 返回执行结果

GET 兼容只支持 GET 的平台调度器，POST 供手动 / 外部调度器调用。
"""
import logging

from fastapi import APIRouter, Request
from fastapi.responses import ORJSONResponse

from shelfwatch.core.auth import get_settings, is_cron_request_authorized
from shelfwatch.core.run_lock import RunLockTimeout
from shelfwatch.schemas.notifications import ExpiryCheckResponse
from shelfwatch.services.expiry_check_service import ExpiryCheckError, ExpiryCheckService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cron", tags=["Cron"])


@router.api_route("/check-expiry", methods=["GET", "POST"], response_model=ExpiryCheckResponse)
async def check_expiry(request: Request):
    """执行一次过期检查并返回统计摘要"""
    if not is_cron_request_authorized(request):
        if not get_settings(request).CRON_SECRET:
            logger.error("CRON_SECRET is not configured, rejecting cron request")
        return ORJSONResponse({"error": "Unauthorized"}, status_code=401)

    service: ExpiryCheckService = request.app.state.expiry_service
    try:
        result = await service.run()
    except (ExpiryCheckError, RunLockTimeout) as e:
        logger.error(f"Expiry check failed: {e}")
        return ORJSONResponse({"error": "Internal server error"}, status_code=500)

    return ExpiryCheckResponse(success=True, **result.to_dict())
