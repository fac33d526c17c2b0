"""Workflow and execution models"""

from .workflow import (
    Workflow, Node, Edge, NodeKind, TriggerType, TriggerSpec,
    TriggerNode, MessageNode, WaitNode, SmartConditionNode,
    StopAutomationNode, UnknownNode, MessageMode, WaitUnit, ConditionKind,
    TRUE_HANDLE, FALSE_HANDLE, utcnow
)
from .execution import (
    Execution, ExecutionStatus, ExecutionEvent, ExecutionEventType,
    NextStep, StepKind
)

__all__ = [
    "Workflow",
    "Node",
    "Edge",
    "NodeKind",
    "TriggerType",
    "TriggerSpec",
    "TriggerNode",
    "MessageNode",
    "WaitNode",
    "SmartConditionNode",
    "StopAutomationNode",
    "UnknownNode",
    "MessageMode",
    "WaitUnit",
    "ConditionKind",
    "TRUE_HANDLE",
    "FALSE_HANDLE",
    "utcnow",
    "Execution",
    "ExecutionStatus",
    "ExecutionEvent",
    "ExecutionEventType",
    "NextStep",
    "StepKind"
]
