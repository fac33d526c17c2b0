"""
Trigger dispatch: turns CRM events into new executions
"""
import logging
from typing import Any, Dict, List, Optional

from ..models.workflow import TriggerType, Workflow
from ..models.execution import Execution
from ..exceptions import LeadAutomationError
from .engine import WorkflowEngine


logger = logging.getLogger(__name__)


class TriggerDispatcher:
    """Starts every published workflow listening to an event"""

    def __init__(self, engine: WorkflowEngine):
        self.engine = engine

    async def stage_changed(
        self,
        stage_id: str,
        subject_id: str,
        channel_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ) -> List[Execution]:
        workflows = await self.engine.workflow_repository.find_published(
            TriggerType.STAGE_CHANGE, stage_id=stage_id
        )
        return await self._start_all(workflows, subject_id, channel_id, context)

    async def product_purchased(
        self,
        product_id: str,
        subject_id: str,
        channel_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ) -> List[Execution]:
        workflows = await self.engine.workflow_repository.find_published(
            TriggerType.DIGITAL_PRODUCT_PURCHASED, product_id=product_id
        )
        context = dict(context or {}, product_id=product_id)
        return await self._start_all(workflows, subject_id, channel_id, context)

    async def appointment_booked(
        self,
        subject_id: str,
        channel_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ) -> List[Execution]:
        workflows = await self.engine.workflow_repository.find_published(
            TriggerType.APPOINTMENT_BOOKED
        )
        return await self._start_all(workflows, subject_id, channel_id, context)

    async def test_run(
        self,
        workflow_id: str,
        subject_id: str,
        channel_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ) -> Execution:
        """Run one workflow for one subject, published or not"""
        return await self.engine.start_execution(
            workflow_id,
            subject_id,
            channel_id,
            context=dict(context or {}, test_run=True),
            require_published=False
        )

    async def _start_all(
        self,
        workflows: List[Workflow],
        subject_id: str,
        channel_id: Optional[str],
        context: Optional[Dict[str, Any]]
    ) -> List[Execution]:
        executions = []
        for workflow in workflows:
            try:
                execution = await self.engine.start_execution(
                    workflow.id, subject_id, channel_id, context=context
                )
            except LeadAutomationError as e:
                logger.error(
                    f"Could not start workflow {workflow.id} for subject {subject_id}: {e}",
                    exc_info=True
                )
                continue
            executions.append(execution)

        logger.info(f"Started {len(executions)} of {len(workflows)} workflows for subject {subject_id}")
        return executions
