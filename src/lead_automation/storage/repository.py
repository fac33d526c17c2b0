"""
Repository interfaces and in-memory implementations
"""
import asyncio
import copy
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional

from ..models.workflow import Workflow, TriggerType, utcnow
from ..models.execution import Execution, ExecutionStatus, ExecutionEvent


class WorkflowRepository(ABC):
    """Workflow definition storage"""

    @abstractmethod
    async def save(self, workflow: Workflow) -> str:
        """Insert a workflow"""
        pass

    @abstractmethod
    async def get(self, workflow_id: str) -> Optional[Workflow]:
        """Fetch a workflow"""
        pass

    @abstractmethod
    async def list(
        self,
        offset: int = 0,
        limit: int = 100,
        published: Optional[bool] = None
    ) -> List[Workflow]:
        """List workflows"""
        pass

    @abstractmethod
    async def update(self, workflow: Workflow) -> bool:
        """Replace a stored workflow"""
        pass

    @abstractmethod
    async def find_published(
        self,
        trigger_type: TriggerType,
        stage_id: Optional[str] = None,
        product_id: Optional[str] = None
    ) -> List[Workflow]:
        """
        Published workflows started by a trigger.

        ``stage_id`` must match exactly for stage changes; for purchases a
        workflow without a product matches any product.
        """
        pass

    async def set_published(self, workflow_id: str, is_published: bool) -> Optional[Workflow]:
        """Publish or unpublish a workflow"""
        workflow = await self.get(workflow_id)
        if workflow is None:
            return None

        updated = replace(workflow, is_published=is_published, updated_at=utcnow())
        await self.update(updated)
        return updated


class ExecutionRepository(ABC):
    """Execution record storage"""

    @abstractmethod
    async def save(self, execution: Execution) -> str:
        """Insert an execution"""
        pass

    @abstractmethod
    async def get(self, execution_id: str) -> Optional[Execution]:
        """Fetch an execution"""
        pass

    @abstractmethod
    async def list_by_workflow(
        self,
        workflow_id: str,
        status: Optional[ExecutionStatus] = None,
        offset: int = 0,
        limit: int = 100
    ) -> List[Execution]:
        """List executions of a workflow"""
        pass

    @abstractmethod
    async def list_by_status(
        self,
        status: ExecutionStatus,
        offset: int = 0,
        limit: int = 100
    ) -> List[Execution]:
        """List executions in a status"""
        pass

    @abstractmethod
    async def list_due(self, now: datetime, limit: int = 100) -> List[Execution]:
        """Pending, unclaimed executions with scheduled_for <= now, oldest first"""
        pass

    @abstractmethod
    async def claim(
        self,
        execution_id: str,
        claim_token: str,
        now: datetime,
        lease_until: datetime
    ) -> bool:
        """
        Atomically claim a due pending execution whose lease is free or expired.

        Returns True only for the single caller that won the claim.
        """
        pass

    @abstractmethod
    async def update(self, execution: Execution, claim_token: Optional[str] = None) -> bool:
        """
        Write the mutable fields of an execution.

        With ``claim_token`` the write only applies while the stored row is
        still held by that token; False means nothing was written.
        """
        pass

    @abstractmethod
    async def record_event(self, event: ExecutionEvent) -> None:
        """Append to an execution's history"""
        pass

    @abstractmethod
    async def list_events(self, execution_id: str) -> List[ExecutionEvent]:
        """History of an execution, oldest first"""
        pass


class InMemoryWorkflowRepository(WorkflowRepository):
    """In-memory workflow repository"""

    def __init__(self):
        self.workflows: Dict[str, Workflow] = {}

    async def save(self, workflow: Workflow) -> str:
        self.workflows[workflow.id] = workflow
        return workflow.id

    async def get(self, workflow_id: str) -> Optional[Workflow]:
        return self.workflows.get(workflow_id)

    async def list(
        self,
        offset: int = 0,
        limit: int = 100,
        published: Optional[bool] = None
    ) -> List[Workflow]:
        workflows = [
            w for w in self.workflows.values()
            if published is None or w.is_published == published
        ]
        workflows.sort(key=lambda w: w.created_at, reverse=True)
        return workflows[offset:offset + limit]

    async def update(self, workflow: Workflow) -> bool:
        if workflow.id in self.workflows:
            self.workflows[workflow.id] = workflow
            return True
        return False

    async def find_published(
        self,
        trigger_type: TriggerType,
        stage_id: Optional[str] = None,
        product_id: Optional[str] = None
    ) -> List[Workflow]:
        results = []
        for workflow in self.workflows.values():
            if not workflow.is_published or workflow.trigger.type is not trigger_type:
                continue
            if trigger_type is TriggerType.STAGE_CHANGE and workflow.trigger.stage_id != stage_id:
                continue
            if (
                trigger_type is TriggerType.DIGITAL_PRODUCT_PURCHASED
                and workflow.trigger.product_id is not None
                and workflow.trigger.product_id != product_id
            ):
                continue
            results.append(workflow)
        return results


class InMemoryExecutionRepository(ExecutionRepository):
    """In-memory execution repository; hands out copies like a real store would"""

    def __init__(self):
        self.executions: Dict[str, Execution] = {}
        self.events: Dict[str, List[ExecutionEvent]] = {}
        self._lock = asyncio.Lock()

    async def save(self, execution: Execution) -> str:
        async with self._lock:
            self.executions[execution.id] = copy.deepcopy(execution)
        return execution.id

    async def get(self, execution_id: str) -> Optional[Execution]:
        execution = self.executions.get(execution_id)
        return copy.deepcopy(execution) if execution else None

    async def list_by_workflow(
        self,
        workflow_id: str,
        status: Optional[ExecutionStatus] = None,
        offset: int = 0,
        limit: int = 100
    ) -> List[Execution]:
        results = [
            e for e in self.executions.values()
            if e.workflow_id == workflow_id and (status is None or e.status is status)
        ]
        results.sort(key=lambda e: e.created_at, reverse=True)
        return [copy.deepcopy(e) for e in results[offset:offset + limit]]

    async def list_by_status(
        self,
        status: ExecutionStatus,
        offset: int = 0,
        limit: int = 100
    ) -> List[Execution]:
        results = [e for e in self.executions.values() if e.status is status]
        results.sort(key=lambda e: e.created_at, reverse=True)
        return [copy.deepcopy(e) for e in results[offset:offset + limit]]

    async def list_due(self, now: datetime, limit: int = 100) -> List[Execution]:
        due = [
            e for e in self.executions.values()
            if e.is_due(now) and not (e.claimed_until is not None and e.claimed_until >= now)
        ]
        due.sort(key=lambda e: e.scheduled_for)
        return [copy.deepcopy(e) for e in due[:limit]]

    async def claim(
        self,
        execution_id: str,
        claim_token: str,
        now: datetime,
        lease_until: datetime
    ) -> bool:
        async with self._lock:
            stored = self.executions.get(execution_id)
            if stored is None or not stored.is_due(now):
                return False
            if stored.claimed_until is not None and stored.claimed_until >= now:
                return False

            stored.claim_token = claim_token
            stored.claimed_until = lease_until
            stored.updated_at = utcnow()
            return True

    async def update(self, execution: Execution, claim_token: Optional[str] = None) -> bool:
        async with self._lock:
            stored = self.executions.get(execution.id)
            if stored is None:
                return False
            if claim_token is not None and stored.claim_token != claim_token:
                return False

            updated = copy.deepcopy(execution)
            updated.updated_at = utcnow()
            self.executions[execution.id] = updated
            return True

    async def record_event(self, event: ExecutionEvent) -> None:
        self.events.setdefault(event.execution_id, []).append(event)

    async def list_events(self, execution_id: str) -> List[ExecutionEvent]:
        return list(self.events.get(execution_id, []))
