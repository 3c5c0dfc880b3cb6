import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from automation.core.clock import utcnow
from automation.models.workflow import ExecutionLog, LogLevel
from automation.services.metrics import LOGS_DROPPED, MetricsRegistry

logger = logging.getLogger(__name__)


@dataclass
class LogEntry:
    execution_id: str
    workflow_id: str
    level: str
    message: str
    step_number: Optional[int] = None
    details: Optional[Dict[str, Any]] = None
    timestamp: datetime = field(default_factory=utcnow)


class ExecutionLogSink:
    """
    Write-behind sink for execution-scoped log lines.

    Callers hand entries to ``log()``, which only ever enqueues. A single
    writer task persists them in batches with its own session. When the
    queue is full the entry is dropped and counted; a batch that fails to
    write is logged and discarded. Neither case reaches the caller.
    """

    def __init__(
        self,
        session_factory,
        metrics: Optional[MetricsRegistry] = None,
        queue_size: int = 1000,
        batch_size: int = 50,
    ):
        self.session_factory = session_factory
        self.metrics = metrics or MetricsRegistry()
        self.batch_size = max(1, batch_size)
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.task: Optional[asyncio.Task] = None
        self.dropped = 0
        self.written = 0

    @property
    def is_running(self) -> bool:
        return self.task is not None and not self.task.done()

    @property
    def queue_depth(self) -> int:
        return self.queue.qsize()

    def log(
        self,
        execution_id: str,
        workflow_id: str,
        level: str,
        message: str,
        step_number: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        level = level.value if isinstance(level, LogLevel) else str(level)
        entry = LogEntry(
            execution_id=execution_id,
            workflow_id=workflow_id,
            level=level,
            message=message,
            step_number=step_number,
            details=details,
        )
        try:
            self.queue.put_nowait(entry)
        except asyncio.QueueFull:
            self.dropped += 1
            self.metrics.increment(LOGS_DROPPED)
            logger.warning(f"Execution log queue full, dropped entry for execution {execution_id}")

    async def start(self):
        if self.is_running:
            logger.warning("Execution log writer is already running")
            return
        logger.info("Starting execution log writer")
        self.task = asyncio.create_task(self._run_writer_loop())

    async def drain(self):
        """Wait until every entry queued so far has been written or discarded."""
        if self.is_running:
            await self.queue.join()
        else:
            while not self.queue.empty():
                await self._write_batch(self._take_batch(self.queue.get_nowait()))

    async def stop(self, timeout: float = 10.0):
        if self.task is None:
            return

        logger.info("Stopping execution log writer")
        try:
            await asyncio.wait_for(self.queue.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Execution log writer did not drain in time, {self.queue_depth} entries lost")

        self.task.cancel()
        try:
            await self.task
        except asyncio.CancelledError:
            pass
        self.task = None

    def _take_batch(self, first: LogEntry) -> List[LogEntry]:
        batch = [first]
        while len(batch) < self.batch_size:
            try:
                batch.append(self.queue.get_nowait())
            except asyncio.QueueEmpty:
                break
        return batch

    async def _run_writer_loop(self):
        while True:
            entry = await self.queue.get()
            await self._write_batch(self._take_batch(entry))

    async def _write_batch(self, batch: List[LogEntry]):
        try:
            async with self.session_factory() as session:
                session.add_all([
                    ExecutionLog(
                        execution_id=entry.execution_id,
                        workflow_id=entry.workflow_id,
                        level=entry.level,
                        step_number=entry.step_number,
                        message=entry.message,
                        details=entry.details,
                        timestamp=entry.timestamp,
                    )
                    for entry in batch
                ])
                await session.commit()
            self.written += len(batch)
        except Exception as e:
            logger.error(f"Failed to write {len(batch)} execution log entries: {str(e)}")
        finally:
            for _ in batch:
                self.queue.task_done()
