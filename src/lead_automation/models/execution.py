"""
Execution model: the persisted traversal state of one subject through one workflow
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from .workflow import utcnow


class ExecutionStatus(Enum):
    """Execution status"""
    PENDING = "pending"
    COMPLETED = "completed"
    STOPPED = "stopped"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not ExecutionStatus.PENDING


@dataclass
class Execution:
    """One activation of a workflow for one subject"""
    id: str = field(default_factory=lambda: str(uuid4()))
    workflow_id: str = ""
    subject_id: str = ""
    current_node_id: Optional[str] = None
    status: ExecutionStatus = ExecutionStatus.PENDING
    scheduled_for: Optional[datetime] = None
    context_data: Dict[str, Any] = field(default_factory=dict)
    error_message: Optional[str] = None
    steps_taken: int = 0
    claim_token: Optional[str] = None
    claimed_until: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def channel_id(self) -> Optional[str]:
        return self.context_data.get("channel_id")

    def is_terminal_state(self) -> bool:
        return self.status.is_terminal

    def is_due(self, now: datetime) -> bool:
        return (
            self.status is ExecutionStatus.PENDING
            and self.scheduled_for is not None
            and self.scheduled_for <= now
        )

    def is_claimed(self, now: datetime) -> bool:
        return self.claimed_until is not None and self.claimed_until >= now


class StepKind(Enum):
    """Outcome of executing one node"""
    ADVANCE = "advance"
    SUSPEND = "suspend"
    TERMINATE = "terminate"


@dataclass(frozen=True)
class NextStep:
    """What the coordinator should do after a node ran"""
    kind: StepKind
    next_node_id: Optional[str] = None
    resume_at: Optional[datetime] = None
    terminal_status: ExecutionStatus = ExecutionStatus.COMPLETED

    @classmethod
    def advance(cls, node_id: str) -> "NextStep":
        return cls(StepKind.ADVANCE, next_node_id=node_id)

    @classmethod
    def advance_or_terminate(cls, node_id: Optional[str]) -> "NextStep":
        if node_id is None:
            return cls.terminate()
        return cls.advance(node_id)

    @classmethod
    def suspend(cls, resume_at: datetime, next_node_id: Optional[str]) -> "NextStep":
        return cls(StepKind.SUSPEND, next_node_id=next_node_id, resume_at=resume_at)

    @classmethod
    def terminate(cls, status: ExecutionStatus = ExecutionStatus.COMPLETED) -> "NextStep":
        return cls(StepKind.TERMINATE, terminal_status=status)


class ExecutionEventType(Enum):
    """Execution history event types"""
    EXECUTION_STARTED = "execution_started"
    EXECUTION_RESUMED = "execution_resumed"
    NODE_EXECUTED = "node_executed"
    EXECUTION_SUSPENDED = "execution_suspended"
    EXECUTION_COMPLETED = "execution_completed"
    EXECUTION_STOPPED = "execution_stopped"
    EXECUTION_FAILED = "execution_failed"


@dataclass
class ExecutionEvent:
    """Entry in an execution's history"""
    execution_id: str
    event_type: ExecutionEventType
    node_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=utcnow)
