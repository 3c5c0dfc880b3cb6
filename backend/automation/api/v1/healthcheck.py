import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from automation.api.deps import get_db, get_runtime
from automation.core.config import settings
from automation.services.runtime import AutomationRuntime

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health", tags=["Health"])
async def healthcheck(
    db: AsyncSession = Depends(get_db),
    runtime: AutomationRuntime = Depends(get_runtime),
):
    """
    Health check covering the database, the scheduler loop and the log writer.
    """
    try:
        await db.execute(text("SELECT 1"))
        database = "ok"
    except Exception as e:
        logger.error(f"Database health check failed: {str(e)}")
        database = "unavailable"

    body = {
        "status": "ok" if database == "ok" else "degraded",
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT,
        "database": database,
        "scheduler_running": runtime.scheduler.is_running,
        "log_writer_running": runtime.log_sink.is_running,
    }
    return JSONResponse(content=body, status_code=200 if database == "ok" else 503)
