"""Core automation engine components"""

from .engine import WorkflowEngine
from .executor import NodeExecutor
from .conditions import ConditionEvaluator
from .scheduler import ExecutionScheduler, TickResult
from .triggers import TriggerDispatcher
from .parser import WorkflowParser

__all__ = [
    "WorkflowEngine",
    "NodeExecutor",
    "ConditionEvaluator",
    "ExecutionScheduler",
    "TickResult",
    "TriggerDispatcher",
    "WorkflowParser"
]
