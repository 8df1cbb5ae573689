"""调度器管理路由"""
from fastapi import APIRouter, Depends, HTTPException, Request

from shelfwatch.core.auth import get_current_user, get_settings
from shelfwatch.jobs.scheduler import ExpiryScheduler, JobLookupError, format_job
from shelfwatch.schemas.scheduler import JobScheduleRequest

router = APIRouter(prefix="/admin/scheduler", tags=["Scheduler"], dependencies=[Depends(get_current_user)])


def _require_scheduler(request: Request) -> ExpiryScheduler:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=409, detail="Scheduler disabled (CRON_ENABLED=false)")
    return scheduler


@router.get("/jobs")
async def get_scheduled_jobs(request: Request):
    """获取所有定时任务状态"""
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        return {"status": "ok", "running": False, "total_jobs": 0, "jobs": []}
    jobs = scheduler.get_jobs()
    return {
        "status": "ok",
        "running": scheduler.is_running,
        "total_jobs": len(jobs),
        "jobs": jobs,
    }


@router.post("/jobs/{job_id}/pause")
async def pause_scheduled_job(job_id: str, request: Request):
    """暂停指定的定时任务"""
    scheduler = _require_scheduler(request)
    try:
        scheduler.pause_job(job_id)
    except JobLookupError:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    return {"status": "ok", "message": f"Job {job_id} paused"}


@router.post("/jobs/{job_id}/resume")
async def resume_scheduled_job(job_id: str, request: Request):
    """恢复指定的定时任务"""
    scheduler = _require_scheduler(request)
    try:
        scheduler.resume_job(job_id)
    except JobLookupError:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    return {"status": "ok", "message": f"Job {job_id} resumed"}


@router.put("/jobs/{job_id}/schedule")
async def update_job_schedule(job_id: str, payload: JobScheduleRequest, request: Request):
    """按小时/分钟/时区更新定时任务的触发 cron"""
    scheduler = _require_scheduler(request)
    if not scheduler.get_job(job_id):
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")

    cron_expr = payload.cron_expr
    try:
        timezone = payload.timezone or get_settings(request).CRON_TIMEZONE
        scheduler.reschedule_job(job_id, cron_expr=cron_expr, timezone=timezone)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    job_info = format_job(scheduler.get_job(job_id))
    next_run = job_info.get("next_run_time") or "soon"
    return {
        "status": "success",
        "message": f"Job schedule updated successfully. Next run: {next_run}",
        "job": job_info,
    }
