import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Any

import pytz
from pydantic import BaseModel
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from automation.core.clock import utcnow
from automation.core.exceptions import InvalidStateError, NotFoundError
from automation.models import Customer, ExecutionLog, ExecutionStatus, Workflow, WorkflowExecution
from automation.services import metrics as metric_names
from automation.services.actions import TriggerConfig, parse_trigger_config
from automation.services.executor import ExecutionEngine
from automation.services.metrics import MetricsRegistry

logger = logging.getLogger(__name__)


class SchedulerSettings(BaseModel):
    """Configuration settings for the WorkflowScheduler."""
    scan_interval_seconds: float = 300
    batch_size: int = 100
    max_workers: int = 4
    timezone: str = "UTC"
    business_hours_start: int = 9
    business_hours_end: int = 17
    stuck_execution_minutes: int = 15
    retention_days: int = 30
    cleanup_interval_seconds: float = 24 * 60 * 60

    @classmethod
    def from_settings(cls, settings) -> "SchedulerSettings":
        return cls(
            scan_interval_seconds=settings.SCHEDULER_SCAN_INTERVAL_SECONDS,
            batch_size=settings.SCHEDULER_BATCH_SIZE,
            max_workers=settings.SCHEDULER_MAX_WORKERS,
            timezone=settings.BUSINESS_TIMEZONE,
            business_hours_start=settings.BUSINESS_HOURS_START,
            business_hours_end=settings.BUSINESS_HOURS_END,
            stuck_execution_minutes=settings.STUCK_EXECUTION_MINUTES,
            retention_days=settings.EXECUTION_RETENTION_DAYS,
        )


def adjust_for_business_hours(when: datetime, timezone: str = "UTC", start_hour: int = 9, end_hour: int = 17) -> datetime:
    """
    Move a naive-UTC time into business hours of ``timezone``.

    Before opening it moves to opening time the same day; at or after closing
    it moves to opening time the next day.
    """
    tz = pytz.timezone(timezone)
    local = pytz.utc.localize(when).astimezone(tz).replace(tzinfo=None)

    if local.hour < start_hour:
        local = local.replace(hour=start_hour, minute=0, second=0, microsecond=0)
    elif local.hour >= end_hour:
        local = (local + timedelta(days=1)).replace(hour=start_hour, minute=0, second=0, microsecond=0)
    else:
        return when

    return tz.localize(local).astimezone(pytz.utc).replace(tzinfo=None)


def calculate_execution_time(
    trigger_config: TriggerConfig,
    now: Optional[datetime] = None,
    timezone: str = "UTC",
    business_hours_start: int = 9,
    business_hours_end: int = 17,
) -> Optional[datetime]:
    """When an execution should run, or None to run on the next sweep."""
    delay = trigger_config.delay()
    if delay is None:
        return None

    execute_at = (now or utcnow()) + delay
    if trigger_config.business_hours_only:
        execute_at = adjust_for_business_hours(execute_at, timezone, business_hours_start, business_hours_end)
    return execute_at


class WorkflowScheduler:
    """
    Persists pending executions and runs them when they are due.

    A single background loop sweeps due PENDING executions every
    ``scan_interval_seconds`` (or sooner after ``wake()``). Each execution is
    claimed by flipping it to RUNNING with a conditional update before it is
    handed to the execution engine, so a row is only ever processed once
    even when sweeps overlap. Claimed executions run concurrently, bounded by
    ``max_workers``, each in its own session.
    """

    def __init__(
        self,
        session_factory,
        engine: ExecutionEngine,
        settings: SchedulerSettings = None,
        metrics: Optional[MetricsRegistry] = None,
    ):
        self.session_factory = session_factory
        self.engine = engine
        self.settings = settings or SchedulerSettings()
        self.metrics = metrics or MetricsRegistry()
        self.is_running = False
        self.task: Optional[asyncio.Task] = None
        self.stop_event = asyncio.Event()
        self.wake_event = asyncio.Event()
        self.last_sweep_at: Optional[datetime] = None
        self.last_cleanup_at: Optional[datetime] = None

        logger.info(
            f"Scheduler initialized with scan interval of {self.settings.scan_interval_seconds} seconds "
            f"and {self.settings.max_workers} workers"
        )

    # --- Scheduling ---------------------------------------------------------

    def calculate_execution_time(self, trigger_config: TriggerConfig, now: Optional[datetime] = None) -> Optional[datetime]:
        return calculate_execution_time(
            trigger_config,
            now=now,
            timezone=self.settings.timezone,
            business_hours_start=self.settings.business_hours_start,
            business_hours_end=self.settings.business_hours_end,
        )

    async def schedule_from_trigger_config(
        self,
        db: AsyncSession,
        workflow: Workflow,
        customer: Customer,
        trigger_event: str,
        trigger_data: Optional[Dict[str, Any]] = None,
    ) -> WorkflowExecution:
        """
        Create a PENDING execution timed by the workflow's trigger configuration.

        Raises:
            ConfigurationError: if the trigger configuration is invalid
        """
        config = parse_trigger_config(workflow.trigger_config)
        execute_at = self.calculate_execution_time(config)
        return await self.schedule_execution(
            db,
            workflow,
            customer,
            trigger_event,
            execute_at=execute_at,
            trigger_data=trigger_data,
            business_hours_only=config.business_hours_only,
        )

    async def schedule_execution(
        self,
        db: AsyncSession,
        workflow: Workflow,
        customer: Customer,
        trigger_event: str,
        execute_at: Optional[datetime] = None,
        trigger_data: Optional[Dict[str, Any]] = None,
        business_hours_only: bool = False,
    ) -> WorkflowExecution:
        """
        Create a PENDING execution and bump the workflow's execution counter.

        Runs inside the caller's transaction; nothing is committed here.
        """
        if customer.organization_id != workflow.organization_id:
            raise NotFoundError("Customer", customer.id)

        now = utcnow()
        execution = WorkflowExecution(
            organization_id=workflow.organization_id,
            workflow_id=workflow.id,
            customer_id=customer.id,
            business_id=customer.business_id,
            trigger_event=trigger_event,
            trigger_data=trigger_data or {},
            status=ExecutionStatus.PENDING.value,
            current_step=1,
            scheduled_for=execute_at,
            started_at=None,
            completed_at=None,
            error_message=None,
            results=None,
            execution_data={
                "executeAt": execute_at.isoformat() if execute_at else None,
                "business_hours_only": business_hours_only,
                "scheduled_at": now.isoformat(),
            },
            created_at=now,
            updated_at=now,
        )
        db.add(execution)

        await db.execute(
            update(Workflow)
            .where(Workflow.id == workflow.id)
            .values(execution_count=Workflow.execution_count + 1)
        )
        await db.flush()

        self.metrics.increment(metric_names.EXECUTIONS_SCHEDULED, workflow_id=workflow.id, trigger_event=trigger_event)
        logger.info(
            f"Scheduled execution {execution.id} of workflow {workflow.id} for customer {customer.id} "
            f"at {execute_at.isoformat() if execute_at else 'next sweep'}"
        )
        return execution

    @staticmethod
    def is_due(execution: WorkflowExecution, now: Optional[datetime] = None) -> bool:
        return execution.scheduled_for is None or execution.scheduled_for <= (now or utcnow())

    # --- Sweep --------------------------------------------------------------

    async def run_sweep(self) -> int:
        """
        Process every due PENDING execution once.

        Returns:
            Number of executions this sweep claimed and ran
        """
        now = utcnow()
        async with self.session_factory() as db:
            result = await db.execute(
                select(WorkflowExecution.id)
                .where(
                    WorkflowExecution.status == ExecutionStatus.PENDING.value,
                    or_(WorkflowExecution.scheduled_for.is_(None), WorkflowExecution.scheduled_for <= now),
                )
                .order_by(WorkflowExecution.created_at)
                .limit(self.settings.batch_size)
            )
            due_ids = list(result.scalars().all())

        self.last_sweep_at = now
        if not due_ids:
            return 0

        logger.info(f"Found {len(due_ids)} due executions")
        semaphore = asyncio.Semaphore(max(1, self.settings.max_workers))

        async def worker(execution_id: str) -> Optional[bool]:
            async with semaphore:
                return await self.process_execution(execution_id)

        outcomes = await asyncio.gather(*(worker(execution_id) for execution_id in due_ids))
        processed = sum(1 for outcome in outcomes if outcome is not None)

        self.metrics.increment(metric_names.SCHEDULER_RUNS, processed=processed > 0)
        logger.info(f"Sweep processed {processed} of {len(due_ids)} due executions")
        return processed

    async def process_execution(self, execution_id: str) -> Optional[bool]:
        """
        Claim, run and finalize a single execution.

        Returns:
            True or False for the run's outcome, None when the execution was
            not PENDING (already claimed elsewhere, cancelled or finished)
        """
        try:
            async with self.session_factory() as db:
                if not await self._claim(db, execution_id):
                    logger.debug(f"Execution {execution_id} already claimed, skipping")
                    return None

                result = await db.execute(select(WorkflowExecution).where(WorkflowExecution.id == execution_id))
                execution = result.scalars().first()

                outcome = await self.engine.run(execution)

                finished_at = utcnow()
                execution.status = (
                    ExecutionStatus.COMPLETED.value if outcome.success else ExecutionStatus.FAILED.value
                )
                execution.completed_at = finished_at
                execution.updated_at = finished_at
                execution.results = outcome.as_dict()
                if not outcome.success:
                    execution.error_message = outcome.error or "All workflow actions failed"
                await db.commit()

                logger.info(f"Execution {execution_id} finished with status {execution.status}")
                return outcome.success
        except Exception as e:
            logger.exception(f"Error processing execution {execution_id}: {str(e)}")
            await self._mark_failed(execution_id, f"Execution error: {str(e)}")
            return False

    async def _claim(self, db: AsyncSession, execution_id: str) -> bool:
        now = utcnow()
        result = await db.execute(
            update(WorkflowExecution)
            .where(
                WorkflowExecution.id == execution_id,
                WorkflowExecution.status == ExecutionStatus.PENDING.value,
            )
            .values(status=ExecutionStatus.RUNNING.value, started_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        return result.rowcount == 1

    async def _mark_failed(self, execution_id: str, message: str):
        try:
            async with self.session_factory() as db:
                now = utcnow()
                await db.execute(
                    update(WorkflowExecution)
                    .where(
                        WorkflowExecution.id == execution_id,
                        WorkflowExecution.status == ExecutionStatus.RUNNING.value,
                    )
                    .values(
                        status=ExecutionStatus.FAILED.value,
                        error_message=message,
                        completed_at=now,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                await db.commit()
        except Exception as e:
            logger.error(f"Could not mark execution {execution_id} as failed: {str(e)}")

    # --- Maintenance --------------------------------------------------------

    async def fail_stuck_executions(self) -> int:
        """Fail executions that have been RUNNING longer than the stuck threshold."""
        now = utcnow()
        threshold = now - timedelta(minutes=self.settings.stuck_execution_minutes)
        async with self.session_factory() as db:
            result = await db.execute(
                update(WorkflowExecution)
                .where(
                    WorkflowExecution.status == ExecutionStatus.RUNNING.value,
                    WorkflowExecution.started_at < threshold,
                )
                .values(
                    status=ExecutionStatus.FAILED.value,
                    error_message="Execution timeout - marked as failed",
                    completed_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()

        count = result.rowcount or 0
        if count:
            self.metrics.increment(metric_names.EXECUTIONS_STUCK, count)
            logger.warning(f"Marked {count} stuck executions as failed")
        return count

    async def cleanup_old_executions(self) -> int:
        """Delete COMPLETED executions, and their logs, past the retention window."""
        cutoff = utcnow() - timedelta(days=self.settings.retention_days)
        async with self.session_factory() as db:
            result = await db.execute(
                select(WorkflowExecution.id).where(
                    WorkflowExecution.status == ExecutionStatus.COMPLETED.value,
                    WorkflowExecution.completed_at < cutoff,
                )
            )
            old_ids = list(result.scalars().all())
            if old_ids:
                await db.execute(delete(ExecutionLog).where(ExecutionLog.execution_id.in_(old_ids)))
                await db.execute(delete(WorkflowExecution).where(WorkflowExecution.id.in_(old_ids)))
                await db.commit()

        self.last_cleanup_at = utcnow()
        if old_ids:
            self.metrics.increment(metric_names.EXECUTIONS_CLEANED, len(old_ids))
            logger.info(f"Cleaned up {len(old_ids)} old executions")
        return len(old_ids)

    async def cancel_execution(
        self,
        db: AsyncSession,
        execution_id: str,
        organization_id: Optional[str] = None,
        reason: str = "Cancelled by user",
    ) -> WorkflowExecution:
        """
        Cancel an execution that has not started yet.

        Raises:
            NotFoundError: if the execution does not exist for the organization
            InvalidStateError: if the execution is no longer PENDING
        """
        query = select(WorkflowExecution).where(WorkflowExecution.id == execution_id)
        if organization_id is not None:
            query = query.where(WorkflowExecution.organization_id == organization_id)
        execution = (await db.execute(query)).scalars().first()
        if execution is None:
            raise NotFoundError("Execution", execution_id)

        now = utcnow()
        result = await db.execute(
            update(WorkflowExecution)
            .where(
                WorkflowExecution.id == execution_id,
                WorkflowExecution.status == ExecutionStatus.PENDING.value,
            )
            .values(
                status=ExecutionStatus.CANCELLED.value,
                error_message=reason,
                completed_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidStateError(f"Execution {execution_id} is {execution.status} and cannot be cancelled")

        await db.flush()
        await db.refresh(execution)
        logger.info(f"Cancelled execution {execution_id}: {reason}")
        return execution

    async def status_counts(self, db: AsyncSession, organization_id: Optional[str] = None) -> Dict[str, int]:
        query = select(WorkflowExecution.status, func.count(WorkflowExecution.id)).group_by(WorkflowExecution.status)
        if organization_id is not None:
            query = query.where(WorkflowExecution.organization_id == organization_id)
        rows = (await db.execute(query)).all()
        counts = {status.value: 0 for status in ExecutionStatus}
        counts.update({status: count for status, count in rows})
        return counts

    # --- Background loop ----------------------------------------------------

    async def start(self):
        """Start the scheduler background task."""
        if self.is_running:
            logger.warning("Scheduler is already running")
            return

        logger.info("Starting workflow scheduler")
        self.is_running = True
        self.stop_event.clear()
        self.task = asyncio.create_task(self._run_scheduler_loop())

    async def stop(self):
        """Stop the scheduler background task."""
        if not self.is_running:
            logger.warning("Scheduler is not running")
            return

        logger.info("Stopping workflow scheduler")
        self.is_running = False
        self.stop_event.set()
        self.wake_event.set()

        if self.task:
            try:
                await asyncio.wait_for(self.task, timeout=10.0)
            except asyncio.TimeoutError:
                logger.warning("Scheduler task did not terminate gracefully, cancelling")
                self.task.cancel()
                try:
                    await self.task
                except asyncio.CancelledError:
                    logger.info("Scheduler task cancelled")

            self.task = None

    def wake(self):
        """Run the next sweep now instead of waiting for the interval."""
        self.wake_event.set()

    async def _run_scheduler_loop(self):
        """Sweep due executions until stopped."""
        while not self.stop_event.is_set():
            try:
                await self.run_sweep()
                await self.fail_stuck_executions()
                if self._cleanup_due():
                    await self.cleanup_old_executions()
            except Exception as e:
                logger.exception(f"Error in scheduler loop: {str(e)}")

            # Wait for the next scan interval, a wake-up or stop
            try:
                await asyncio.wait_for(self.wake_event.wait(), timeout=self.settings.scan_interval_seconds)
            except asyncio.TimeoutError:
                pass
            self.wake_event.clear()

    def _cleanup_due(self) -> bool:
        if self.last_cleanup_at is None:
            return True
        elapsed = (utcnow() - self.last_cleanup_at).total_seconds()
        return elapsed >= self.settings.cleanup_interval_seconds
