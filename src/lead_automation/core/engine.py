"""
Execution coordinator: owns the execution record and drives traversal
"""
import logging
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
from uuid import uuid4

from ..config import EngineSettings
from ..models.workflow import Workflow, utcnow
from ..models.execution import (
    Execution, ExecutionStatus, ExecutionEvent, ExecutionEventType, NextStep, StepKind
)
from ..exceptions import (
    WorkflowNotFoundError, WorkflowNotPublishedError, WorkflowValidationError,
    ExecutionNotFoundError, NodeExecutionError, StepLimitExceededError,
    PersistenceError, ExecutionClaimLostError
)
from ..storage.repository import WorkflowRepository, ExecutionRepository
from ..monitoring import MetricsRecorder, EventLogger
from .executor import NodeExecutor
from .parser import WorkflowParser


logger = logging.getLogger(__name__)


TERMINAL_EVENTS = {
    ExecutionStatus.COMPLETED: (ExecutionEventType.EXECUTION_COMPLETED, "executions_completed"),
    ExecutionStatus.STOPPED: (ExecutionEventType.EXECUTION_STOPPED, "executions_stopped"),
    ExecutionStatus.FAILED: (ExecutionEventType.EXECUTION_FAILED, "executions_failed"),
}


class WorkflowEngine:
    """
    Execution coordinator.

    The engine is the only writer of an execution's position, due time and
    status. Every write made while running is fenced on the claim token the
    run holds, so a worker whose lease was taken over stops without further
    side effects. Advance writes push the lease out, and the lease is
    renewed again right before a node sends a message or disables
    automation. In-memory state only moves forward after the write that
    records it succeeded.
    """

    def __init__(
        self,
        workflow_repository: WorkflowRepository,
        execution_repository: ExecutionRepository,
        node_executor: NodeExecutor,
        settings: Optional[EngineSettings] = None,
        clock: Callable[[], datetime] = utcnow,
        metrics: Optional[MetricsRecorder] = None,
        event_logger: Optional[EventLogger] = None
    ):
        self.workflow_repository = workflow_repository
        self.execution_repository = execution_repository
        self.node_executor = node_executor
        self.settings = settings or EngineSettings()
        self.clock = clock
        self.metrics = metrics or MetricsRecorder()
        self.event_logger = event_logger or EventLogger()
        self.parser = WorkflowParser()

    @property
    def max_steps_per_run(self) -> int:
        return self.settings.max_steps_per_run

    # Workflow definitions

    async def create_workflow(self, definition: Union[str, Path, Dict[str, Any]]) -> Workflow:
        """Parse, validate and store a workflow definition"""
        workflow = self.parser.parse(definition)
        await self.workflow_repository.save(workflow)
        logger.info(f"Created workflow {workflow.id} ({workflow.name})")
        return workflow

    async def get_workflow(self, workflow_id: str) -> Workflow:
        workflow = await self.workflow_repository.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        return workflow

    async def publish_workflow(self, workflow_id: str, is_published: bool = True) -> Workflow:
        workflow = await self.get_workflow(workflow_id)
        if is_published:
            errors = self.parser.validate(workflow)
            if errors:
                raise WorkflowValidationError(
                    f"Workflow {workflow_id} cannot be published: {'; '.join(errors)}", errors
                )

        updated = await self.workflow_repository.set_published(workflow_id, is_published)
        logger.info(f"Workflow {workflow_id} published={is_published}")
        return updated

    # Executions

    async def start_execution(
        self,
        workflow_id: str,
        subject_id: str,
        channel_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        require_published: bool = True
    ) -> Execution:
        """
        Create an execution at the trigger node and run it until it suspends
        or terminates.

        The new row is written already claimed and due now, so a crash before
        the first suspension is picked up by the scheduler once the lease
        expires.
        """
        workflow = await self.get_workflow(workflow_id)
        if require_published and not workflow.is_published:
            raise WorkflowNotPublishedError(workflow_id)

        trigger = workflow.trigger_node
        if trigger is None:
            raise WorkflowValidationError(f"Workflow {workflow_id} has no trigger node")

        context_data = dict(context or {})
        if channel_id is not None:
            context_data["channel_id"] = channel_id

        now = self.clock()
        claim_token = str(uuid4())
        execution = Execution(
            workflow_id=workflow.id,
            subject_id=subject_id,
            current_node_id=trigger.id,
            status=ExecutionStatus.PENDING,
            scheduled_for=now,
            context_data=context_data,
            claim_token=claim_token,
            claimed_until=now + self.settings.claim_lease,
            created_at=now,
            updated_at=now
        )
        await self.execution_repository.save(execution)

        self.metrics.inc("executions_started")
        self.event_logger.log(
            "execution.started",
            execution_id=execution.id,
            workflow_id=workflow.id,
            subject_id=subject_id
        )
        await self._record_event(execution, ExecutionEventType.EXECUTION_STARTED)

        return await self.run_until_suspended(execution, claim_token, workflow)

    async def resume(self, execution_id: str, now: Optional[datetime] = None) -> Optional[Execution]:
        """
        Claim a due execution and run it.

        Returns None when the execution is not due or another worker holds it.
        """
        now = now or self.clock()
        claim_token = str(uuid4())
        claimed = await self.execution_repository.claim(
            execution_id, claim_token, now, now + self.settings.claim_lease
        )
        if not claimed:
            logger.debug(f"Execution {execution_id} not claimed")
            return None

        execution = await self.execution_repository.get(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)

        self.metrics.inc("executions_resumed")
        await self._record_event(execution, ExecutionEventType.EXECUTION_RESUMED, execution.current_node_id)

        workflow = await self.workflow_repository.get(execution.workflow_id)
        if workflow is None:
            return await self._fail(execution, claim_token, f"Workflow not found: {execution.workflow_id}")

        return await self.run_until_suspended(execution, claim_token, workflow)

    async def run_until_suspended(
        self,
        execution: Execution,
        claim_token: str,
        workflow: Optional[Workflow] = None
    ) -> Execution:
        """
        Advance a claimed execution step by step until it suspends or
        terminates. A non-pending execution is returned unchanged.
        """
        if execution.status is not ExecutionStatus.PENDING:
            return execution

        if workflow is None:
            workflow = await self.workflow_repository.get(execution.workflow_id)
            if workflow is None:
                return await self._fail(execution, claim_token, f"Workflow not found: {execution.workflow_id}")

        current = execution
        steps = 0
        try:
            while True:
                if steps >= self.max_steps_per_run:
                    raise StepLimitExceededError(current.id, self.max_steps_per_run)

                current, done = await self._step(current, workflow, claim_token)
                steps += 1
                if done:
                    return current

        except ExecutionClaimLostError as e:
            logger.warning(str(e))
            self.metrics.inc("claims_lost")
            return current

        except (NodeExecutionError, StepLimitExceededError) as e:
            logger.error(f"Execution {current.id} failed: {e}")
            return await self._fail(current, claim_token, str(e))

        except PersistenceError as e:
            logger.error(f"Could not persist execution {current.id}: {e}", exc_info=True)
            return await self._fail(current, claim_token, f"Persistence error: {e}")

    async def _step(
        self,
        execution: Execution,
        workflow: Workflow,
        claim_token: str
    ) -> Tuple[Execution, bool]:
        """Run the current node and persist its outcome"""
        node = workflow.get_node(execution.current_node_id)
        if node is None:
            if execution.current_node_id is not None:
                logger.warning(
                    f"Execution {execution.id} points at missing node "
                    f"{execution.current_node_id}, completing"
                )
            return await self._terminate(execution, claim_token, ExecutionStatus.COMPLETED), True

        async def checkpoint():
            await self._renew_lease(execution, claim_token)

        step: NextStep = await self.node_executor.execute(node, execution, workflow, checkpoint)
        executed = replace(execution, steps_taken=execution.steps_taken + 1)
        await self._record_event(
            execution,
            ExecutionEventType.NODE_EXECUTED,
            node.id,
            {"kind": node.kind.value, "outcome": step.kind.value}
        )

        if step.kind is StepKind.ADVANCE:
            advanced = replace(
                executed,
                current_node_id=step.next_node_id,
                claimed_until=self.clock() + self.settings.claim_lease
            )
            await self._persist(advanced, claim_token)
            return advanced, False

        if step.kind is StepKind.SUSPEND:
            suspended = replace(
                executed,
                current_node_id=step.next_node_id,
                scheduled_for=step.resume_at,
                claim_token=None,
                claimed_until=None
            )
            await self._persist(suspended, claim_token)
            self.event_logger.log(
                "execution.suspended",
                execution_id=execution.id,
                resume_at=step.resume_at.isoformat(),
                next_node_id=step.next_node_id
            )
            await self._record_event(
                suspended,
                ExecutionEventType.EXECUTION_SUSPENDED,
                node.id,
                {"resume_at": step.resume_at.isoformat(), "next_node_id": step.next_node_id}
            )
            return suspended, True

        return await self._terminate(executed, claim_token, step.terminal_status), True

    async def _terminate(
        self,
        execution: Execution,
        claim_token: str,
        status: ExecutionStatus,
        error_message: Optional[str] = None
    ) -> Execution:
        finished = replace(
            execution,
            status=status,
            scheduled_for=None,
            error_message=error_message,
            claim_token=None,
            claimed_until=None
        )
        await self._persist(finished, claim_token)

        event_type, counter = TERMINAL_EVENTS[status]
        self.metrics.inc(counter)
        self.event_logger.log(
            f"execution.{status.value}",
            execution_id=execution.id,
            workflow_id=execution.workflow_id,
            subject_id=execution.subject_id
        )
        data = {"error": error_message} if error_message else {}
        await self._record_event(finished, event_type, execution.current_node_id, data)
        return finished

    async def _fail(self, execution: Execution, claim_token: str, message: str) -> Execution:
        """
        Mark an execution failed. When even that write fails the execution
        stays pending at its last persisted node and is retried after the
        lease expires.
        """
        try:
            return await self._terminate(execution, claim_token, ExecutionStatus.FAILED, message)
        except ExecutionClaimLostError as e:
            logger.warning(str(e))
            self.metrics.inc("claims_lost")
        except PersistenceError as e:
            logger.error(
                f"Could not mark execution {execution.id} failed, leaving it pending: {e}",
                exc_info=True
            )
        return execution

    async def _renew_lease(self, execution: Execution, claim_token: str) -> Execution:
        """Push the lease out from now; raises ExecutionClaimLostError if another worker holds it"""
        renewed = replace(execution, claimed_until=self.clock() + self.settings.claim_lease)
        await self._persist(renewed, claim_token)
        return renewed

    async def _persist(self, execution: Execution, claim_token: str):
        written = await self.execution_repository.update(execution, claim_token=claim_token)
        if not written:
            raise ExecutionClaimLostError(execution.id)

    async def _record_event(
        self,
        execution: Execution,
        event_type: ExecutionEventType,
        node_id: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None
    ):
        event = ExecutionEvent(
            execution_id=execution.id,
            event_type=event_type,
            node_id=node_id,
            data=data or {},
            timestamp=self.clock()
        )
        try:
            await self.execution_repository.record_event(event)
        except PersistenceError as e:
            logger.warning(f"Could not record {event_type.value} for execution {execution.id}: {e}")

    # Read access

    async def get_execution(self, execution_id: str) -> Execution:
        execution = await self.execution_repository.get(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)
        return execution

    async def list_executions(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
        offset: int = 0,
        limit: int = 100
    ) -> List[Execution]:
        if workflow_id:
            return await self.execution_repository.list_by_workflow(workflow_id, status, offset, limit)
        return await self.execution_repository.list_by_status(
            status or ExecutionStatus.PENDING, offset, limit
        )

    async def list_events(self, execution_id: str) -> List[ExecutionEvent]:
        await self.get_execution(execution_id)
        return await self.execution_repository.list_events(execution_id)
