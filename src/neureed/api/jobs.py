"""定时任务 API."""

from fastapi import APIRouter, Depends, Query

from neureed.api.deps import get_scheduler, require_admin
from neureed.models.job_run import JobRun
from neureed.scheduler import JobScheduler

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


def _run_to_dict(run: JobRun | None) -> dict | None:
    if run is None:
        return None
    return {
        "id": run.id,
        "job_name": run.job_name,
        "status": run.status,
        "triggered_by": run.triggered_by,
        "stats": run.stats,
        "error_message": run.error_message,
        "started_at": run.started_at.isoformat(),
        "completed_at": run.completed_at.isoformat() if run.completed_at else None,
        "duration_ms": run.duration_ms,
    }


@router.get("")
async def job_status(
    _admin: str = Depends(require_admin),
    scheduler: JobScheduler = Depends(get_scheduler),
) -> dict:
    """各任务的计划与最近一次执行."""
    items = await scheduler.get_status()
    for item in items:
        item["last_run"] = _run_to_dict(item["last_run"])
    return {"items": items}


@router.get("/history")
async def job_history(
    job_name: str | None = Query(None, description="按任务筛选"),
    limit: int = Query(20, ge=1, le=100),
    _admin: str = Depends(require_admin),
    scheduler: JobScheduler = Depends(get_scheduler),
) -> dict:
    """执行历史."""
    runs = await scheduler.get_history(job_name, limit=limit)
    return {"items": [_run_to_dict(r) for r in runs]}


@router.post("/{job_name}/run", status_code=202)
async def trigger_job(
    job_name: str,
    _admin: str = Depends(require_admin),
    scheduler: JobScheduler = Depends(get_scheduler),
) -> dict:
    """手动触发任务（后台执行）."""
    run = await scheduler.trigger(job_name)
    return {"run": _run_to_dict(run)}
