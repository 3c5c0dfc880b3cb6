import logging
from typing import Any, Dict

from automation.core.config import settings
from automation.db.session import create_engine, create_session_factory
from automation.services.runtime import AutomationRuntime
from automation.tasks.worker import celery_app, run_async


logger = logging.getLogger(__name__)


async def run_with_runtime(operation: str) -> int:
    """
    Build a runtime for one task run, call one scheduler operation, and tear it down.

    The engine and its pool live only inside the loop ``asyncio.run`` provides.
    """
    engine = create_engine(settings.DATABASE_URI)
    runtime = AutomationRuntime(settings, create_session_factory(engine))
    await runtime.start(run_scheduler=False)
    try:
        return await getattr(runtime.scheduler, operation)()
    finally:
        await runtime.stop()
        await engine.dispose()


@celery_app.task(bind=True, name="automation.tasks.executions.process_due_executions_task")
def process_due_executions_task(self) -> Dict[str, Any]:
    """
    Celery task to run every due PENDING execution once.
    Scheduled by beat for deployments that keep SCHEDULER_ENABLED off in the API process.
    """
    logger.info("Running due execution sweep")
    try:
        processed = run_async(run_with_runtime, "run_sweep")
        return {"status": "success", "processed": processed}
    except Exception as e:
        logger.error(f"Error processing due executions: {str(e)}")
        raise


@celery_app.task(bind=True, name="automation.tasks.executions.fail_stuck_executions_task")
def fail_stuck_executions_task(self) -> Dict[str, Any]:
    logger.info("Checking for stuck executions")
    try:
        failed = run_async(run_with_runtime, "fail_stuck_executions")
        return {"status": "success", "failed": failed}
    except Exception as e:
        logger.error(f"Error failing stuck executions: {str(e)}")
        raise


@celery_app.task(bind=True, name="automation.tasks.executions.cleanup_old_executions_task")
def cleanup_old_executions_task(self) -> Dict[str, Any]:
    """
    Celery task to delete completed executions past the retention window.
    """
    logger.info(f"Cleaning up completed executions older than {settings.EXECUTION_RETENTION_DAYS} days")
    try:
        deleted = run_async(run_with_runtime, "cleanup_old_executions")
        return {"status": "success", "deleted": deleted}
    except Exception as e:
        logger.error(f"Error cleaning up old executions: {str(e)}")
        raise
