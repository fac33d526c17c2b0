"""
Workflow definition routes
"""
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query, status

from ..models import (
    WorkflowResponse, WorkflowDetailResponse, WorkflowListResponse,
    PublishRequest, ValidationResponse
)
from ..dependencies import get_workflow_engine
from ...core import WorkflowEngine
from ...exceptions import WorkflowParseError, WorkflowValidationError


logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("", response_model=WorkflowResponse, status_code=status.HTTP_201_CREATED)
async def create_workflow(
    definition: Dict[str, Any] = Body(..., description="Editor or plain workflow definition"),
    engine: WorkflowEngine = Depends(get_workflow_engine)
) -> WorkflowResponse:
    """Create a workflow from its definition"""
    workflow = await engine.create_workflow(definition)
    return WorkflowResponse.from_workflow(workflow)


@router.post("/validate", response_model=ValidationResponse)
async def validate_workflow(
    definition: Dict[str, Any] = Body(...),
    engine: WorkflowEngine = Depends(get_workflow_engine)
) -> ValidationResponse:
    """Check a definition without storing it"""
    try:
        workflow = engine.parser.parse(definition)
    except WorkflowValidationError as e:
        return ValidationResponse(valid=False, errors=e.errors)
    except WorkflowParseError as e:
        return ValidationResponse(valid=False, errors=[str(e)])

    return ValidationResponse(valid=True, unreachable_nodes=sorted(workflow.unreachable_nodes()))


@router.get("", response_model=WorkflowListResponse)
async def list_workflows(
    offset: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    published: Optional[bool] = Query(None),
    engine: WorkflowEngine = Depends(get_workflow_engine)
) -> WorkflowListResponse:
    workflows = await engine.workflow_repository.list(offset=offset, limit=limit, published=published)
    items = [WorkflowResponse.from_workflow(w) for w in workflows]
    return WorkflowListResponse(items=items, total=len(items), offset=offset, limit=limit)


@router.get("/{workflow_id}", response_model=WorkflowDetailResponse)
async def get_workflow(
    workflow_id: str,
    engine: WorkflowEngine = Depends(get_workflow_engine)
) -> WorkflowDetailResponse:
    workflow = await engine.get_workflow(workflow_id)
    definition = engine.parser.to_dict(workflow)["workflow"]
    return WorkflowDetailResponse.from_workflow(
        workflow,
        definition={"nodes": definition["nodes"], "edges": definition["edges"]}
    )


@router.post("/{workflow_id}/publish", response_model=WorkflowResponse)
async def publish_workflow(
    workflow_id: str,
    request: Optional[PublishRequest] = None,
    engine: WorkflowEngine = Depends(get_workflow_engine)
) -> WorkflowResponse:
    """Publish (or unpublish) a workflow so triggers start it"""
    is_published = request.is_published if request else True
    workflow = await engine.publish_workflow(workflow_id, is_published)
    return WorkflowResponse.from_workflow(workflow)
