import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from fastapi.security import OAuth2PasswordRequestForm

from shelfwatch.core.auth import get_current_user, get_settings, login_for_access_token
from shelfwatch.core.config import Settings, settings
from shelfwatch.core.logging_config import setup_logging
from shelfwatch.jobs.expiry_jobs import register_expiry_jobs
from shelfwatch.jobs.scheduler import ExpiryScheduler
from shelfwatch.models.db import Database
from shelfwatch.routers import cron, dashboard, items, notifications, scheduler_admin, webhooks
from shelfwatch.services.expiry_check_service import ExpiryCheckService

logger = logging.getLogger(__name__)


def start_scheduler(service: ExpiryCheckService, cfg: Settings) -> Optional[ExpiryScheduler]:
    """按配置启动内置调度器；禁用或 cron 表达式非法时返回 None"""
    if not cfg.CRON_ENABLED:
        logger.info("Scheduler disabled (CRON_ENABLED=false)")
        return None

    scheduler = ExpiryScheduler(timezone=cfg.CRON_TIMEZONE)
    try:
        register_expiry_jobs(scheduler, service, cfg)
    except ValueError as e:
        logger.error(f"Invalid CRON_SCHEDULE '{cfg.CRON_SCHEDULE}' / CRON_TIMEZONE '{cfg.CRON_TIMEZONE}': {e}. Scheduler not started.")
        return None

    scheduler.start()
    logger.info(f"Scheduler started - schedule: '{cfg.CRON_SCHEDULE}', timezone: '{cfg.CRON_TIMEZONE}'")
    return scheduler


async def shutdown_pipeline(
    scheduler: Optional[ExpiryScheduler],
    service: ExpiryCheckService,
    database: Database,
    grace: float,
) -> None:
    """按顺序关闭：暂停调度 -> 等待进行中的检查写完日志 -> 停止调度器 -> 关闭数据库"""
    if scheduler is not None:
        scheduler.pause()

    await service.wait_idle(grace)

    if scheduler is not None:
        # 超时仍未结束的任务在此被取消，取消时已完成的投递仍会落库
        await scheduler.stop()
        await service.wait_idle(10)
    await database.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理：启动时打开数据库与调度器，关闭时按相反顺序清理"""
    cfg: Settings = app.state.settings

    database = Database.from_settings(cfg).open()
    await database.create_all()
    service = ExpiryCheckService.from_settings(database, cfg)

    app.state.db = database
    app.state.expiry_service = service
    app.state.scheduler = start_scheduler(service, cfg)

    yield

    await shutdown_pipeline(
        app.state.scheduler,
        service,
        database,
        grace=cfg.RUN_TIMEOUT_SECONDS + cfg.webhook_timeout_seconds,
    )


def create_app(cfg: Settings = settings) -> FastAPI:
    app = FastAPI(title=cfg.APP_NAME, lifespan=lifespan, default_response_class=ORJSONResponse)
    app.state.settings = cfg
    app.state.scheduler = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 定时触发接口使用共享密钥鉴权，其余接口需要用户 JWT
    app.include_router(cron.router)
    app.include_router(items.router, prefix="/api/v1")
    app.include_router(dashboard.router, prefix="/api/v1")
    app.include_router(webhooks.router, prefix="/api/v1")
    app.include_router(notifications.router, prefix="/api/v1")
    app.include_router(scheduler_admin.router, prefix="/api/v1")

    @app.get("/health")
    async def health():
        scheduler = app.state.scheduler
        service = getattr(app.state, "expiry_service", None)
        return {
            "status": "ok",
            "scheduler_running": bool(scheduler and scheduler.is_running),
            "expiry_check_running": bool(service and service.is_running),
        }

    @app.post("/api/v1/login")
    async def login(form_data: OAuth2PasswordRequestForm = Depends(), cfg: Settings = Depends(get_settings)):
        """管理员通过用户名/密码换取 Bearer token（JWT）。"""
        return await login_for_access_token(form_data, cfg)

    @app.get("/api/v1/me")
    async def me(current_user: str = Depends(get_current_user)):
        return {"user_id": current_user}

    return app


setup_logging(settings.LOG_LEVEL)
app = create_app()
