"""
Subject routes: inbound messages feed the replied-recently condition
"""
from fastapi import APIRouter, Depends, HTTPException, status

from ..models import InboundMessageRequest
from ..dependencies import get_runtime
from ...integrations import InMemorySubjectDirectory
from ...runtime import AutomationRuntime


router = APIRouter()


@router.post("/{subject_id}/messages", status_code=status.HTTP_202_ACCEPTED)
async def record_inbound_message(
    subject_id: str,
    request: InboundMessageRequest,
    runtime: AutomationRuntime = Depends(get_runtime)
):
    """Record a message the subject sent us"""
    if not isinstance(runtime.subjects, InMemorySubjectDirectory):
        raise HTTPException(
            status_code=status.HTTP_501_NOT_IMPLEMENTED,
            detail={
                "error": "not_supported",
                "message": "The configured subject directory is read-only"
            }
        )

    runtime.subjects.record_inbound(
        subject_id, request.channel_id, request.content, at=request.received_at
    )
    return {"subject_id": subject_id, "recorded": True}
