"""
Scheduler: resumes suspended executions whose due time has passed
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from ..models.workflow import utcnow
from ..models.execution import ExecutionStatus
from ..exceptions import LeadAutomationError
from ..storage.repository import ExecutionRepository
from .engine import WorkflowEngine


logger = logging.getLogger(__name__)


@dataclass
class TickResult:
    """Summary of one scheduler tick"""
    started_at: datetime
    due: int = 0
    resumed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    statuses: Dict[str, ExecutionStatus] = field(default_factory=dict)

    @property
    def resumed_count(self) -> int:
        return len(self.resumed)

    def to_dict(self) -> Dict[str, object]:
        return {
            "started_at": self.started_at.isoformat(),
            "due": self.due,
            "resumed": self.resumed,
            "skipped": self.skipped,
            "failed": self.failed,
            "statuses": {k: v.value for k, v in self.statuses.items()},
        }


class ExecutionScheduler:
    """
    Finds due executions and hands them back to the engine.

    ``tick`` is meant to be called by something external (cron, the CLI
    ``poll`` command, the API tick endpoint); ``start``/``stop`` wrap it in
    a polling loop for long running processes.
    """

    def __init__(
        self,
        engine: WorkflowEngine,
        execution_repository: Optional[ExecutionRepository] = None,
        batch_size: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.engine = engine
        self.execution_repository = execution_repository or engine.execution_repository
        self.batch_size = batch_size or engine.settings.tick_batch_size
        self.clock = clock or engine.clock or utcnow
        self._poll_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    async def tick(self, now: Optional[datetime] = None) -> TickResult:
        """
        Resume every due execution once. Executions another worker holds are
        skipped; one that cannot be resumed is logged and does not stop the
        others.
        """
        now = now or self.clock()
        result = TickResult(started_at=now)

        due = await self.execution_repository.list_due(now, self.batch_size)
        result.due = len(due)

        for execution in due:
            try:
                resumed = await self.engine.resume(execution.id, now)
            except LeadAutomationError as e:
                logger.error(f"Could not resume execution {execution.id}: {e}", exc_info=True)
                result.failed.append(execution.id)
                continue

            if resumed is None:
                result.skipped.append(execution.id)
                continue
            result.resumed.append(execution.id)
            result.statuses[execution.id] = resumed.status

        if due:
            logger.info(
                f"Scheduler tick: {result.due} due, {result.resumed_count} resumed, "
                f"{len(result.skipped)} skipped, {len(result.failed)} failed"
            )
        return result

    async def start(self, interval: float = 60.0):
        """Start polling in the background"""
        if self._poll_task:
            return

        self._stop_event.clear()
        self._poll_task = asyncio.create_task(self._poll_loop(interval))
        logger.info(f"Scheduler polling every {interval}s")

    async def stop(self):
        if not self._poll_task:
            return

        self._stop_event.set()
        await self._poll_task
        self._poll_task = None
        logger.info("Scheduler stopped")

    async def run_forever(self, interval: float = 60.0, max_ticks: Optional[int] = None):
        """Poll in the foreground until stopped or ``max_ticks`` ticks ran"""
        await self._poll_loop(interval, max_ticks)

    async def _poll_loop(self, interval: float, max_ticks: Optional[int] = None):
        ticks = 0
        while not self._stop_event.is_set():
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Scheduler tick failed: {e}", exc_info=True)

            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                return

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
