"""
API request and response models
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models.workflow import Workflow
from ..models.execution import Execution, ExecutionEvent


class ExecutionStatusEnum(str, Enum):
    """Execution status (API)"""
    PENDING = "pending"
    COMPLETED = "completed"
    STOPPED = "stopped"
    FAILED = "failed"


class TriggerTypeEnum(str, Enum):
    """Trigger type (API)"""
    STAGE_CHANGE = "stage_change"
    APPOINTMENT_BOOKED = "appointment_booked"
    DIGITAL_PRODUCT_PURCHASED = "digital_product_purchased"


# Workflows

class TriggerResponse(BaseModel):
    type: TriggerTypeEnum
    stage_id: Optional[str] = None
    product_id: Optional[str] = None


class WorkflowResponse(BaseModel):
    """Workflow summary"""
    id: str = Field(..., description="Workflow ID")
    name: str = Field(..., description="Workflow name")
    trigger: TriggerResponse
    is_published: bool = Field(False, description="Whether triggers start this workflow")
    node_count: int = Field(..., description="Number of nodes")
    unreachable_nodes: List[str] = Field(default_factory=list, description="Nodes the trigger cannot reach")
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_workflow(cls, workflow: Workflow, **extra: Any) -> "WorkflowResponse":
        return cls(
            id=workflow.id,
            name=workflow.name,
            trigger=TriggerResponse(
                type=workflow.trigger.type.value,
                stage_id=workflow.trigger.stage_id,
                product_id=workflow.trigger.product_id
            ),
            is_published=workflow.is_published,
            node_count=len(workflow.nodes),
            unreachable_nodes=sorted(workflow.unreachable_nodes()),
            created_at=workflow.created_at,
            updated_at=workflow.updated_at,
            **extra
        )


class WorkflowDetailResponse(WorkflowResponse):
    """Workflow with its graph in the plain definition shape"""
    definition: Dict[str, Any] = Field(..., description="Nodes and edges")


class WorkflowListResponse(BaseModel):
    items: List[WorkflowResponse]
    total: int
    offset: int
    limit: int


class PublishRequest(BaseModel):
    is_published: bool = Field(True, description="Publish (true) or unpublish (false)")


class ValidationResponse(BaseModel):
    valid: bool
    errors: List[str] = Field(default_factory=list)
    unreachable_nodes: List[str] = Field(default_factory=list)


# Executions

class ExecutionStartRequest(BaseModel):
    """Start a workflow for one subject"""
    workflow_id: str = Field(..., description="Workflow ID")
    subject_id: str = Field(..., description="Lead ID")
    channel_id: Optional[str] = Field(None, description="Subject's messaging channel ID")
    context: Dict[str, Any] = Field(default_factory=dict, description="Seed context data")


class ExecutionResponse(BaseModel):
    """Execution state"""
    id: str
    workflow_id: str
    subject_id: str
    current_node_id: Optional[str] = None
    status: ExecutionStatusEnum
    scheduled_for: Optional[datetime] = None
    context_data: Dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None
    steps_taken: int = 0
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_execution(cls, execution: Execution) -> "ExecutionResponse":
        return cls(
            id=execution.id,
            workflow_id=execution.workflow_id,
            subject_id=execution.subject_id,
            current_node_id=execution.current_node_id,
            status=execution.status.value,
            scheduled_for=execution.scheduled_for,
            context_data=execution.context_data,
            error_message=execution.error_message,
            steps_taken=execution.steps_taken,
            created_at=execution.created_at,
            updated_at=execution.updated_at
        )


class ExecutionEventResponse(BaseModel):
    id: str
    execution_id: str
    event_type: str
    node_id: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime

    @classmethod
    def from_event(cls, event: ExecutionEvent) -> "ExecutionEventResponse":
        return cls(
            id=event.id,
            execution_id=event.execution_id,
            event_type=event.event_type.value,
            node_id=event.node_id,
            data=event.data,
            timestamp=event.timestamp
        )


# Triggers

class TriggerEventRequest(BaseModel):
    subject_id: str = Field(..., description="Lead ID")
    channel_id: Optional[str] = Field(None, description="Subject's messaging channel ID")
    context: Dict[str, Any] = Field(default_factory=dict)


class StageChangedRequest(TriggerEventRequest):
    stage_id: str = Field(..., description="Pipeline stage the lead moved to")


class ProductPurchasedRequest(TriggerEventRequest):
    product_id: str = Field(..., description="Purchased digital product")


class TriggerDispatchResponse(BaseModel):
    started: int
    executions: List[ExecutionResponse]


# Scheduler

class TickResponse(BaseModel):
    started_at: datetime
    due: int
    resumed: List[str]
    skipped: List[str]
    failed: List[str] = []
    statuses: Dict[str, ExecutionStatusEnum]


# Subjects

class InboundMessageRequest(BaseModel):
    """A message the subject sent on a channel"""
    channel_id: str
    content: str
    received_at: Optional[datetime] = None


# Monitoring

class HealthCheckResponse(BaseModel):
    status: str = Field(..., description="healthy or unhealthy")
    version: str
    timestamp: datetime
    checks: Dict[str, Any] = Field(default_factory=dict)
    metrics: Dict[str, float] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    error: str
    message: str
    errors: Optional[List[str]] = None
