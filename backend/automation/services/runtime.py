import logging
from typing import Optional

from automation.services.delivery import (
    EmailSender,
    LoggingEmailSender,
    LoggingSmsSender,
    SmsSender,
    WebhookCaller,
)
from automation.services.executor import ExecutionEngine
from automation.services.log_sink import ExecutionLogSink
from automation.services.metrics import MetricsRegistry
from automation.services.scheduler import SchedulerSettings, WorkflowScheduler
from automation.services.triggers import TriggerDispatcher
from automation.services.workflows import WorkflowRunner

logger = logging.getLogger(__name__)


class AutomationRuntime:
    """
    The engine components wired together for one process.

    Built once at application start (or per Celery task) from settings and a
    session factory. ``start()`` launches the log writer and, when enabled,
    the scheduler loop; ``stop()`` shuts both down and drains pending logs.
    """

    def __init__(
        self,
        settings,
        session_factory,
        email_sender: Optional[EmailSender] = None,
        sms_sender: Optional[SmsSender] = None,
        webhook_caller: Optional[WebhookCaller] = None,
        metrics: Optional[MetricsRegistry] = None,
    ):
        self.settings = settings
        self.session_factory = session_factory
        self.metrics = metrics or MetricsRegistry()

        if email_sender is None or sms_sender is None:
            if not settings.DELIVERY_DRY_RUN:
                raise ValueError("Email and SMS senders are required when DELIVERY_DRY_RUN is off")
            logger.info("Using dry-run email and SMS senders")

        self.log_sink = ExecutionLogSink(
            session_factory,
            metrics=self.metrics,
            queue_size=settings.EXECUTION_LOG_QUEUE_SIZE,
            batch_size=settings.EXECUTION_LOG_BATCH_SIZE,
        )
        self.webhook_caller = webhook_caller or WebhookCaller.from_settings(settings)
        self.engine = ExecutionEngine(
            email_sender=email_sender or LoggingEmailSender(),
            sms_sender=sms_sender or LoggingSmsSender(),
            webhook_caller=self.webhook_caller,
            log_sink=self.log_sink,
            metrics=self.metrics,
        )
        self.scheduler = WorkflowScheduler(
            session_factory,
            self.engine,
            settings=SchedulerSettings.from_settings(settings),
            metrics=self.metrics,
        )
        self.dispatcher = TriggerDispatcher(
            self.scheduler, metrics=self.metrics, timezone=settings.BUSINESS_TIMEZONE
        )
        self.runner = WorkflowRunner(self.scheduler, timezone=settings.BUSINESS_TIMEZONE)

    async def start(self, run_scheduler: Optional[bool] = None):
        await self.log_sink.start()
        if run_scheduler is None:
            run_scheduler = self.settings.SCHEDULER_ENABLED
        if run_scheduler:
            await self.scheduler.start()

    async def stop(self):
        if self.scheduler.is_running:
            await self.scheduler.stop()
        await self.log_sink.stop()
        await self.webhook_caller.aclose()
