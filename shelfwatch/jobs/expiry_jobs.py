"""
定时任务

1. 过期检查 & Webhook 通知 - CRON_SCHEDULE（默认每天 09:00）
2. 通知日志清理 - 每天凌晨 3 点
"""

import logging
from datetime import datetime, timedelta

from shelfwatch.core.config import Settings
from shelfwatch.jobs.scheduler import ExpiryScheduler
from shelfwatch.services.expiry_check_service import ExpiryCheckService
from shelfwatch.services.notification_log_service import NotificationLogService

logger = logging.getLogger(__name__)

EXPIRY_CHECK_JOB_ID = "expiry_check"
LOG_CLEANUP_JOB_ID = "notification_log_cleanup"


async def expiry_check_job(service: ExpiryCheckService):
    """任务1: 过期检查

    功能: 查询临期 / 过期 / 缺货物品并通过 Webhook 通知用户
    """
    try:
        result = await service.run()
        if result.errors:
            logger.warning(f"Expiry check finished with {len(result.errors)} delivery errors: {result.errors}")
    except Exception as e:
        logger.error(f"Expiry check job failed: {str(e)}", exc_info=True)


async def cleanup_notification_logs_job(service: ExpiryCheckService, retention_days: int):
    """任务2: 清理过期的通知日志

    功能: 删除超过保留天数的通知日志及其投递明细
    """
    try:
        cutoff = datetime.utcnow() - timedelta(days=retention_days)
        async with service.database.session() as session:
            deleted = await NotificationLogService(session).prune(cutoff)
        logger.info(f"Notification log cleanup completed: {deleted} deleted")
    except Exception as e:
        logger.error(f"Notification log cleanup job failed: {str(e)}", exc_info=True)


def register_expiry_jobs(scheduler: ExpiryScheduler, service: ExpiryCheckService, cfg: Settings):
    """注册所有定时任务；cron 表达式非法时抛出 ValueError"""
    scheduler.add_cron_job(
        expiry_check_job,
        job_id=EXPIRY_CHECK_JOB_ID,
        name="Expiry check & webhook notification",
        cron_expr=cfg.CRON_SCHEDULE,
        timezone=cfg.CRON_TIMEZONE,
        service=service,
    )
    scheduler.add_cron_job(
        cleanup_notification_logs_job,
        job_id=LOG_CLEANUP_JOB_ID,
        name="Notification log cleanup",
        cron_expr="0 3 * * *",
        timezone=cfg.CRON_TIMEZONE,
        service=service,
        retention_days=cfg.NOTIFY_LOG_RETENTION_DAYS,
    )
