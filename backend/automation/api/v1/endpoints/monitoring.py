from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from automation.api.deps import get_db, get_organization_id, get_runtime
from automation.schemas.execution import SchedulerStatusResponse
from automation.services.runtime import AutomationRuntime

router = APIRouter()


@router.get("/metrics", summary="Engine counters")
async def get_metrics(runtime: AutomationRuntime = Depends(get_runtime)):
    """
    Snapshot of every counter, one entry per tag combination.
    """
    return runtime.metrics.snapshot()


@router.get("/scheduler", response_model=SchedulerStatusResponse, summary="Scheduler and log sink status")
async def get_scheduler_status(
    organization_id: str = Depends(get_organization_id),
    db: AsyncSession = Depends(get_db),
    runtime: AutomationRuntime = Depends(get_runtime),
):
    scheduler = runtime.scheduler
    return SchedulerStatusResponse(
        running=scheduler.is_running,
        scan_interval_seconds=scheduler.settings.scan_interval_seconds,
        max_workers=scheduler.settings.max_workers,
        last_sweep_at=scheduler.last_sweep_at,
        last_cleanup_at=scheduler.last_cleanup_at,
        executions_by_status=await scheduler.status_counts(db, organization_id),
        log_queue_depth=runtime.log_sink.queue_depth,
        logs_dropped=runtime.log_sink.dropped,
    )
