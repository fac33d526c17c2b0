"""
Execution routes
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..models import (
    ExecutionStartRequest, ExecutionResponse, ExecutionEventResponse, ExecutionStatusEnum
)
from ..dependencies import get_workflow_engine, get_dispatcher
from ...core import WorkflowEngine, TriggerDispatcher
from ...models.execution import ExecutionStatus


logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("", response_model=ExecutionResponse, status_code=status.HTTP_201_CREATED)
async def start_execution(
    request: ExecutionStartRequest,
    engine: WorkflowEngine = Depends(get_workflow_engine)
) -> ExecutionResponse:
    """Start a published workflow for a subject and run it until it waits or ends"""
    execution = await engine.start_execution(
        request.workflow_id,
        request.subject_id,
        request.channel_id,
        context=request.context
    )
    return ExecutionResponse.from_execution(execution)


@router.post("/test-run", response_model=ExecutionResponse, status_code=status.HTTP_201_CREATED)
async def test_run(
    request: ExecutionStartRequest,
    dispatcher: TriggerDispatcher = Depends(get_dispatcher)
) -> ExecutionResponse:
    """Run a workflow for a subject even if it is not published"""
    execution = await dispatcher.test_run(
        request.workflow_id,
        request.subject_id,
        request.channel_id,
        context=request.context
    )
    return ExecutionResponse.from_execution(execution)


@router.get("", response_model=List[ExecutionResponse])
async def list_executions(
    workflow_id: Optional[str] = Query(None),
    status_filter: Optional[ExecutionStatusEnum] = Query(None, alias="status"),
    offset: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    engine: WorkflowEngine = Depends(get_workflow_engine)
) -> List[ExecutionResponse]:
    if not workflow_id and not status_filter:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": "missing_filter",
                "message": "Filter by workflow_id or status"
            }
        )

    execution_status = ExecutionStatus(status_filter.value) if status_filter else None
    executions = await engine.list_executions(workflow_id, execution_status, offset, limit)
    return [ExecutionResponse.from_execution(e) for e in executions]


@router.get("/{execution_id}", response_model=ExecutionResponse)
async def get_execution(
    execution_id: str,
    engine: WorkflowEngine = Depends(get_workflow_engine)
) -> ExecutionResponse:
    execution = await engine.get_execution(execution_id)
    return ExecutionResponse.from_execution(execution)


@router.get("/{execution_id}/events", response_model=List[ExecutionEventResponse])
async def get_execution_events(
    execution_id: str,
    engine: WorkflowEngine = Depends(get_workflow_engine)
) -> List[ExecutionEventResponse]:
    events = await engine.list_events(execution_id)
    return [ExecutionEventResponse.from_event(e) for e in events]
