"""
Lead Automation Runtime - workflow automation engine for CRM leads
"""

__version__ = "0.1.0"

from .core.engine import WorkflowEngine
from .core.executor import NodeExecutor
from .core.scheduler import ExecutionScheduler
from .core.triggers import TriggerDispatcher
from .core.parser import WorkflowParser
from .models.workflow import Workflow, Node, Edge
from .models.execution import Execution, ExecutionStatus

__all__ = [
    "WorkflowEngine",
    "NodeExecutor",
    "ExecutionScheduler",
    "TriggerDispatcher",
    "WorkflowParser",
    "Workflow",
    "Node",
    "Edge",
    "Execution",
    "ExecutionStatus"
]
