"""
SQLAlchemy table definitions
"""
from datetime import timezone
import uuid

from sqlalchemy import (
    Column, String, Text, Boolean, Integer, DateTime, ForeignKey, Index, JSON
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator


Base = declarative_base()


def generate_uuid():
    return str(uuid.uuid4())


class UTCDateTime(TypeDecorator):
    """Stores naive UTC, hands back timezone-aware UTC (SQLite drops tzinfo)"""
    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class WorkflowRecord(Base):
    """Workflow definition row"""
    __tablename__ = 'workflows'

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(255), nullable=False, default='')
    trigger_type = Column(String(50), nullable=False)
    trigger_stage_id = Column(String(255))
    trigger_product_id = Column(String(255))
    is_published = Column(Boolean, nullable=False, default=False)
    definition = Column(JSON, nullable=False)
    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False)

    __table_args__ = (
        Index('idx_workflows_trigger', 'trigger_type', 'is_published'),
    )


class ExecutionRecord(Base):
    """Execution row; claim_token/claimed_until form the worker lease"""
    __tablename__ = 'workflow_executions'

    id = Column(String(36), primary_key=True, default=generate_uuid)
    workflow_id = Column(String(36), ForeignKey('workflows.id'), nullable=False)
    subject_id = Column(String(255), nullable=False)
    current_node_id = Column(String(255))
    status = Column(String(20), nullable=False)
    scheduled_for = Column(UTCDateTime)
    context_data = Column(JSON, nullable=False, default=dict)
    error_message = Column(Text)
    steps_taken = Column(Integer, nullable=False, default=0)
    claim_token = Column(String(36))
    claimed_until = Column(UTCDateTime)
    created_at = Column(UTCDateTime, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False)

    __table_args__ = (
        Index('idx_executions_due', 'status', 'scheduled_for'),
        Index('idx_executions_workflow', 'workflow_id'),
    )


class ExecutionEventRecord(Base):
    """Execution history row"""
    __tablename__ = 'execution_events'

    id = Column(String(36), primary_key=True, default=generate_uuid)
    execution_id = Column(String(36), ForeignKey('workflow_executions.id', ondelete='CASCADE'), nullable=False)
    event_type = Column(String(50), nullable=False)
    node_id = Column(String(255))
    event_data = Column(JSON, nullable=False, default=dict)
    timestamp = Column(UTCDateTime, nullable=False)

    __table_args__ = (
        Index('idx_execution_events_execution', 'execution_id', 'timestamp'),
    )
