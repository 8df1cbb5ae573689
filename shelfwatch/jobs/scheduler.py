"""
APScheduler 调度器封装

调度器对象由应用生命周期持有，负责启动 / 停止 / 暂停 / 重设定时任务
"""

import asyncio
import logging
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

logger = logging.getLogger(__name__)


def parse_crontab(cron_expr: str, timezone: str) -> CronTrigger:
    """按 Linux crontab 表达式构造触发器。

    说明：
    - cron_expr 必须为 5 段格式：minute hour day month day_of_week
    - timezone 用于解释 cron_expr
    """
    if not cron_expr or not cron_expr.strip():
        raise ValueError("cron_expr is required")

    parts = cron_expr.strip().split()
    if len(parts) != 5:
        raise ValueError(
            "cron_expr must be Linux crontab 5-field format: 'min hour day month dow'"
        )

    try:
        tz = ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"unknown timezone: {timezone}") from e

    return CronTrigger.from_crontab(" ".join(parts), timezone=tz)


def format_job(job) -> dict:
    # 调度器启动前加入的任务尚未计算 next_run_time
    next_run = getattr(job, "next_run_time", None)
    return {
        "id": job.id,
        "name": job.name,
        "next_run_time": next_run.strftime("%Y-%m-%d %H:%M:%S %Z") if next_run else None,
        "trigger": str(job.trigger),
    }


class ExpiryScheduler:
    """
    配置:
    - AsyncIOScheduler 支持异步任务
    - MemoryJobStore 存储任务信息
    - 每个任务最多 1 个实例，避免与上次运行重叠
    """

    def __init__(self, timezone: str = "Asia/Shanghai"):
        self.timezone = timezone
        self._started = False
        self._scheduler = AsyncIOScheduler(
            jobstores={"default": MemoryJobStore()},
            executors={"default": AsyncIOExecutor()},
            job_defaults={
                "coalesce": True,  # 合并错过的任务
                "max_instances": 1,
                "misfire_grace_time": 300,  # 错过任务的容忍时间（秒）
            },
            timezone=ZoneInfo(timezone),
        )

    @property
    def is_running(self) -> bool:
        # APScheduler 3.11 的 shutdown 通过 call_soon_threadsafe 延迟执行，running 不会立即变为 False
        return self._started and self._scheduler.running

    def add_cron_job(self, func, job_id: str, name: str, cron_expr: str, timezone: Optional[str] = None, **kwargs):
        """添加 crontab 定时任务（同 ID 任务会被替换）"""
        trigger = parse_crontab(cron_expr, timezone or self.timezone)
        self._scheduler.add_job(
            func,
            trigger=trigger,
            id=job_id,
            name=name,
            replace_existing=True,
            kwargs=kwargs or None,
        )
        logger.info(f"Job added: {name} (ID: {job_id}), cron='{cron_expr}'")

    def start(self):
        if self._started:
            logger.warning("Scheduler already running")
            return
        self._scheduler.start()
        self._started = True
        logger.info("Scheduler started")

    def pause(self):
        """暂停触发新任务，正在执行的任务不受影响"""
        if self._started:
            self._scheduler.pause()
            logger.info("Scheduler paused")

    async def stop(self):
        """关闭调度器

        AsyncIOExecutor 会取消仍在执行的协程任务；需要等待任务完成时，
        先 pause() 并等待业务侧空闲，再调用 stop()
        """
        if not self._started:
            return
        self._started = False
        self._scheduler.shutdown(wait=False)
        # 让 shutdown 回调在事件循环中执行完毕
        await asyncio.sleep(0)
        logger.info("Scheduler shut down")

    def pause_job(self, job_id: str):
        self._scheduler.pause_job(job_id)
        logger.info(f"Job paused: {job_id}")

    def resume_job(self, job_id: str):
        self._scheduler.resume_job(job_id)
        logger.info(f"Job resumed: {job_id}")

    def reschedule_job(self, job_id: str, cron_expr: str, timezone: Optional[str] = None):
        trigger = parse_crontab(cron_expr, timezone or self.timezone)
        if not self._scheduler.get_job(job_id):
            raise ValueError(f"job not found: {job_id}")
        self._scheduler.reschedule_job(job_id, trigger=trigger)
        logger.info(f"Job rescheduled: {job_id}, cron='{cron_expr}', tz='{timezone or self.timezone}'")

    def get_job(self, job_id: str):
        """获取指定任务对象（不存在则返回 None）。"""
        return self._scheduler.get_job(job_id)

    def get_jobs(self) -> list[dict]:
        return [format_job(job) for job in self._scheduler.get_jobs()]


__all__ = ["ExpiryScheduler", "JobLookupError", "format_job", "parse_crontab"]
