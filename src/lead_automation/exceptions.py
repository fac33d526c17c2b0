"""
Lead automation engine exceptions
"""
from typing import List, Optional


class LeadAutomationError(Exception):
    """Base exception for the automation engine"""
    pass


class WorkflowParseError(LeadAutomationError):
    """Workflow definition could not be decoded"""
    pass


class WorkflowValidationError(LeadAutomationError):
    """Workflow definition is structurally invalid"""
    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.errors = errors or [message]
        super().__init__(message)


class WorkflowNotFoundError(LeadAutomationError):
    """Workflow does not exist"""
    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow not found: {workflow_id}")


class WorkflowNotPublishedError(LeadAutomationError):
    """Workflow exists but is not published"""
    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow is not published: {workflow_id}")


class ExecutionNotFoundError(LeadAutomationError):
    """Execution does not exist"""
    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(f"Execution not found: {execution_id}")


class NodeExecutionError(LeadAutomationError):
    """Unexpected fault while executing a node"""
    def __init__(self, node_id: str, message: str, cause: Optional[Exception] = None):
        self.node_id = node_id
        self.cause = cause
        super().__init__(f"Node '{node_id}' execution failed: {message}")


class StepLimitExceededError(LeadAutomationError):
    """A single run advanced through more nodes than allowed"""
    def __init__(self, execution_id: str, limit: int):
        self.execution_id = execution_id
        self.limit = limit
        super().__init__(
            f"Execution '{execution_id}' exceeded {limit} steps in one run"
        )


class PersistenceError(LeadAutomationError):
    """Storage layer could not read or write a record"""
    pass


class ExecutionClaimLostError(LeadAutomationError):
    """The claim on an execution expired or was taken by another worker"""
    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(f"Claim lost for execution: {execution_id}")


class CollaboratorError(LeadAutomationError):
    """An external collaborator (messaging, text generation, ...) failed"""
    def __init__(self, collaborator: str, message: str):
        self.collaborator = collaborator
        super().__init__(f"{collaborator}: {message}")
