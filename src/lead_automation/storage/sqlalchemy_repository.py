"""
SQLAlchemy repository implementations
"""
import logging
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update, and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from ..exceptions import PersistenceError
from ..models.workflow import Workflow, TriggerType, utcnow
from ..models.execution import (
    Execution, ExecutionStatus, ExecutionEvent, ExecutionEventType
)
from ..core.parser import WorkflowParser
from .repository import WorkflowRepository, ExecutionRepository
from .sqlalchemy_models import (
    WorkflowRecord,
    ExecutionRecord,
    ExecutionEventRecord,
    Base
)


logger = logging.getLogger(__name__)


class DatabaseManager:
    """Owns the async engine and hands out sessions"""

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = database_url
        self.echo = echo
        self.engine: Optional[AsyncEngine] = None
        self.async_session_maker = None

    async def initialize(self, create_tables: bool = True):
        """Create the engine (and tables)"""
        engine_kwargs = {"echo": self.echo, "pool_pre_ping": True}
        if not self.database_url.startswith("sqlite"):
            engine_kwargs.update(pool_size=20, max_overflow=10)

        self.engine = create_async_engine(self.database_url, **engine_kwargs)
        self.async_session_maker = sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        if create_tables:
            await self.create_tables()

    async def create_tables(self):
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not create tables: {e}") from e

    async def close(self):
        if self.engine:
            await self.engine.dispose()

    @asynccontextmanager
    async def get_session(self):
        """Session committed on success, rolled back on error"""
        if self.async_session_maker is None:
            raise PersistenceError("Database is not initialized")

        async with self.async_session_maker() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise PersistenceError(str(e)) from e
            except Exception:
                await session.rollback()
                raise


class SQLAlchemyWorkflowRepository(WorkflowRepository):
    """Workflows stored as a JSON definition plus indexed trigger columns"""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager
        self.parser = WorkflowParser()

    async def save(self, workflow: Workflow) -> str:
        async with self.db.get_session() as session:
            session.add(WorkflowRecord(
                id=workflow.id,
                name=workflow.name,
                trigger_type=workflow.trigger.type.value,
                trigger_stage_id=workflow.trigger.stage_id,
                trigger_product_id=workflow.trigger.product_id,
                is_published=workflow.is_published,
                definition=self._definition(workflow),
                created_at=workflow.created_at,
                updated_at=workflow.updated_at
            ))
        return workflow.id

    async def get(self, workflow_id: str) -> Optional[Workflow]:
        async with self.db.get_session() as session:
            record = await session.get(WorkflowRecord, workflow_id)
            return self._to_workflow(record) if record else None

    async def list(
        self,
        offset: int = 0,
        limit: int = 100,
        published: Optional[bool] = None
    ) -> List[Workflow]:
        async with self.db.get_session() as session:
            query = select(WorkflowRecord)
            if published is not None:
                query = query.where(WorkflowRecord.is_published == published)
            query = query.order_by(WorkflowRecord.created_at.desc()).offset(offset).limit(limit)

            result = await session.execute(query)
            return [self._to_workflow(r) for r in result.scalars().all()]

    async def update(self, workflow: Workflow) -> bool:
        async with self.db.get_session() as session:
            result = await session.execute(
                update(WorkflowRecord)
                .where(WorkflowRecord.id == workflow.id)
                .values(
                    name=workflow.name,
                    trigger_type=workflow.trigger.type.value,
                    trigger_stage_id=workflow.trigger.stage_id,
                    trigger_product_id=workflow.trigger.product_id,
                    is_published=workflow.is_published,
                    definition=self._definition(workflow),
                    updated_at=utcnow()
                )
            )
            return result.rowcount > 0

    async def find_published(
        self,
        trigger_type: TriggerType,
        stage_id: Optional[str] = None,
        product_id: Optional[str] = None
    ) -> List[Workflow]:
        async with self.db.get_session() as session:
            query = select(WorkflowRecord).where(
                and_(
                    WorkflowRecord.is_published.is_(True),
                    WorkflowRecord.trigger_type == trigger_type.value
                )
            )
            if trigger_type is TriggerType.STAGE_CHANGE:
                query = query.where(WorkflowRecord.trigger_stage_id == stage_id)
            elif trigger_type is TriggerType.DIGITAL_PRODUCT_PURCHASED:
                query = query.where(or_(
                    WorkflowRecord.trigger_product_id.is_(None),
                    WorkflowRecord.trigger_product_id == product_id
                ))

            result = await session.execute(query.order_by(WorkflowRecord.created_at))
            return [self._to_workflow(r) for r in result.scalars().all()]

    def _definition(self, workflow: Workflow) -> dict:
        data = self.parser.to_dict(workflow)["workflow"]
        return {"nodes": data["nodes"], "edges": data["edges"]}

    def _to_workflow(self, record: WorkflowRecord) -> Workflow:
        workflow = self.parser.parse_dict({
            "id": record.id,
            "name": record.name,
            "is_published": record.is_published,
            "trigger": {
                "type": record.trigger_type,
                "stage_id": record.trigger_stage_id,
                "product_id": record.trigger_product_id,
            },
            "nodes": record.definition.get("nodes", []),
            "edges": record.definition.get("edges", []),
        })
        return replace(workflow, created_at=record.created_at, updated_at=record.updated_at)


class SQLAlchemyExecutionRepository(ExecutionRepository):
    """Execution rows with conditional updates for claiming and fencing"""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    async def save(self, execution: Execution) -> str:
        async with self.db.get_session() as session:
            session.add(ExecutionRecord(
                id=execution.id,
                workflow_id=execution.workflow_id,
                created_at=execution.created_at,
                **self._mutable_fields(execution)
            ))
        return execution.id

    async def get(self, execution_id: str) -> Optional[Execution]:
        async with self.db.get_session() as session:
            record = await session.get(ExecutionRecord, execution_id)
            return self._to_execution(record) if record else None

    async def list_by_workflow(
        self,
        workflow_id: str,
        status: Optional[ExecutionStatus] = None,
        offset: int = 0,
        limit: int = 100
    ) -> List[Execution]:
        async with self.db.get_session() as session:
            query = select(ExecutionRecord).where(ExecutionRecord.workflow_id == workflow_id)
            if status:
                query = query.where(ExecutionRecord.status == status.value)
            query = query.order_by(ExecutionRecord.created_at.desc()).offset(offset).limit(limit)

            result = await session.execute(query)
            return [self._to_execution(r) for r in result.scalars().all()]

    async def list_by_status(
        self,
        status: ExecutionStatus,
        offset: int = 0,
        limit: int = 100
    ) -> List[Execution]:
        async with self.db.get_session() as session:
            query = (
                select(ExecutionRecord)
                .where(ExecutionRecord.status == status.value)
                .order_by(ExecutionRecord.created_at.desc())
                .offset(offset)
                .limit(limit)
            )
            result = await session.execute(query)
            return [self._to_execution(r) for r in result.scalars().all()]

    async def list_due(self, now: datetime, limit: int = 100) -> List[Execution]:
        async with self.db.get_session() as session:
            query = (
                select(ExecutionRecord)
                .where(self._claimable(now))
                .order_by(ExecutionRecord.scheduled_for)
                .limit(limit)
            )
            result = await session.execute(query)
            return [self._to_execution(r) for r in result.scalars().all()]

    async def claim(
        self,
        execution_id: str,
        claim_token: str,
        now: datetime,
        lease_until: datetime
    ) -> bool:
        async with self.db.get_session() as session:
            result = await session.execute(
                update(ExecutionRecord)
                .where(and_(ExecutionRecord.id == execution_id, self._claimable(now)))
                .values(claim_token=claim_token, claimed_until=lease_until, updated_at=utcnow())
            )
            return result.rowcount == 1

    async def update(self, execution: Execution, claim_token: Optional[str] = None) -> bool:
        async with self.db.get_session() as session:
            query = update(ExecutionRecord).where(ExecutionRecord.id == execution.id)
            if claim_token is not None:
                query = query.where(ExecutionRecord.claim_token == claim_token)

            result = await session.execute(query.values(**self._mutable_fields(execution)))
            return result.rowcount == 1

    async def record_event(self, event: ExecutionEvent) -> None:
        async with self.db.get_session() as session:
            session.add(ExecutionEventRecord(
                id=event.id,
                execution_id=event.execution_id,
                event_type=event.event_type.value,
                node_id=event.node_id,
                event_data=event.data,
                timestamp=event.timestamp
            ))

    async def list_events(self, execution_id: str) -> List[ExecutionEvent]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(ExecutionEventRecord)
                .where(ExecutionEventRecord.execution_id == execution_id)
                .order_by(ExecutionEventRecord.timestamp)
            )
            return [
                ExecutionEvent(
                    id=r.id,
                    execution_id=r.execution_id,
                    event_type=ExecutionEventType(r.event_type),
                    node_id=r.node_id,
                    data=r.event_data or {},
                    timestamp=r.timestamp
                )
                for r in result.scalars().all()
            ]

    def _claimable(self, now: datetime):
        return and_(
            ExecutionRecord.status == ExecutionStatus.PENDING.value,
            ExecutionRecord.scheduled_for.is_not(None),
            ExecutionRecord.scheduled_for <= now,
            or_(ExecutionRecord.claimed_until.is_(None), ExecutionRecord.claimed_until < now)
        )

    def _mutable_fields(self, execution: Execution) -> dict:
        return {
            "subject_id": execution.subject_id,
            "current_node_id": execution.current_node_id,
            "status": execution.status.value,
            "scheduled_for": execution.scheduled_for,
            "context_data": execution.context_data,
            "error_message": execution.error_message,
            "steps_taken": execution.steps_taken,
            "claim_token": execution.claim_token,
            "claimed_until": execution.claimed_until,
            "updated_at": utcnow(),
        }

    def _to_execution(self, record: ExecutionRecord) -> Execution:
        return Execution(
            id=record.id,
            workflow_id=record.workflow_id,
            subject_id=record.subject_id,
            current_node_id=record.current_node_id,
            status=ExecutionStatus(record.status),
            scheduled_for=record.scheduled_for,
            context_data=dict(record.context_data or {}),
            error_message=record.error_message,
            steps_taken=record.steps_taken or 0,
            claim_token=record.claim_token,
            claimed_until=record.claimed_until,
            created_at=record.created_at,
            updated_at=record.updated_at
        )
