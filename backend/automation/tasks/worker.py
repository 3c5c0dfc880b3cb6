import asyncio
import logging

from celery import Celery
from celery.schedules import crontab

from automation.core.config import settings


logger = logging.getLogger(__name__)


def beat_schedule() -> dict:
    """
    Maintenance that replaces the in-process scheduler loop when
    SCHEDULER_ENABLED is off in the API process.
    """
    scan_interval = settings.SCHEDULER_SCAN_INTERVAL_SECONDS
    return {
        "process-due-executions": {
            "task": "automation.tasks.executions.process_due_executions_task",
            "schedule": float(scan_interval),
            # expire before the next sweep is queued
            "options": {"expires": max(1, scan_interval - 5)},
        },
        "fail-stuck-executions": {
            "task": "automation.tasks.executions.fail_stuck_executions_task",
            "schedule": crontab(minute="*/5"),
            "options": {"expires": 240},
        },
        "cleanup-old-executions": {
            "task": "automation.tasks.executions.cleanup_old_executions_task",
            "schedule": crontab(hour=3, minute=0),
            "options": {"expires": 3600},
        },
    }


def create_celery() -> Celery:
    """Create the Celery app for the automation maintenance tasks."""
    app = Celery("automation", broker=settings.CELERY_BROKER_URL, backend=settings.REDIS_URI)
    app.conf.update(
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        enable_utc=True,
        # one sweep at a time per worker process
        worker_prefetch_multiplier=1,
        task_acks_late=True,
        worker_redirect_stdouts=False,
        include=["automation.tasks.executions"],
        beat_schedule=beat_schedule(),
    )
    return app


def run_async(async_func, *args, **kwargs):
    """Run a coroutine function to completion from a synchronous Celery task."""
    return asyncio.run(async_func(*args, **kwargs))


celery_app = create_celery()
