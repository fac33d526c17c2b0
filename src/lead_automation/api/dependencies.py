"""
FastAPI dependencies
"""
import logging

from fastapi import HTTPException, status

from .state import get_app_state
from ..core import WorkflowEngine, ExecutionScheduler, TriggerDispatcher
from ..runtime import AutomationRuntime


logger = logging.getLogger(__name__)


def get_runtime() -> AutomationRuntime:
    """The runtime installed by the app lifespan"""
    runtime = get_app_state().get("runtime")

    if not runtime:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "error": "service_unavailable",
                "message": "Automation runtime not initialized"
            }
        )

    return runtime


def get_workflow_engine() -> WorkflowEngine:
    return get_runtime().engine


def get_scheduler() -> ExecutionScheduler:
    return get_runtime().scheduler


def get_dispatcher() -> TriggerDispatcher:
    return get_runtime().dispatcher
