"""
Trigger routes called by the CRM when something happens to a lead
"""
import logging

from fastapi import APIRouter, Depends

from ..models import (
    StageChangedRequest, ProductPurchasedRequest, TriggerEventRequest,
    TriggerDispatchResponse, ExecutionResponse
)
from ..dependencies import get_dispatcher
from ...core import TriggerDispatcher


logger = logging.getLogger(__name__)
router = APIRouter()


def _response(executions) -> TriggerDispatchResponse:
    return TriggerDispatchResponse(
        started=len(executions),
        executions=[ExecutionResponse.from_execution(e) for e in executions]
    )


@router.post("/stage-changed", response_model=TriggerDispatchResponse)
async def stage_changed(
    request: StageChangedRequest,
    dispatcher: TriggerDispatcher = Depends(get_dispatcher)
) -> TriggerDispatchResponse:
    executions = await dispatcher.stage_changed(
        request.stage_id, request.subject_id, request.channel_id, request.context
    )
    return _response(executions)


@router.post("/product-purchased", response_model=TriggerDispatchResponse)
async def product_purchased(
    request: ProductPurchasedRequest,
    dispatcher: TriggerDispatcher = Depends(get_dispatcher)
) -> TriggerDispatchResponse:
    executions = await dispatcher.product_purchased(
        request.product_id, request.subject_id, request.channel_id, request.context
    )
    return _response(executions)


@router.post("/appointment-booked", response_model=TriggerDispatchResponse)
async def appointment_booked(
    request: TriggerEventRequest,
    dispatcher: TriggerDispatcher = Depends(get_dispatcher)
) -> TriggerDispatchResponse:
    executions = await dispatcher.appointment_booked(
        request.subject_id, request.channel_id, request.context
    )
    return _response(executions)
