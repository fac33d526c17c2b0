"""Storage and repository interfaces"""

from .repository import (
    WorkflowRepository,
    ExecutionRepository,
    InMemoryWorkflowRepository,
    InMemoryExecutionRepository
)
from .sqlalchemy_repository import (
    DatabaseManager,
    SQLAlchemyWorkflowRepository,
    SQLAlchemyExecutionRepository
)

__all__ = [
    "WorkflowRepository",
    "ExecutionRepository",
    "InMemoryWorkflowRepository",
    "InMemoryExecutionRepository",
    "DatabaseManager",
    "SQLAlchemyWorkflowRepository",
    "SQLAlchemyExecutionRepository"
]
