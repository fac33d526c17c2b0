"""
Scheduler route: the external periodic trigger calls this
"""
from fastapi import APIRouter, Depends

from ..models import TickResponse
from ..dependencies import get_scheduler
from ...core import ExecutionScheduler


router = APIRouter()


@router.post("/tick", response_model=TickResponse)
async def tick(scheduler: ExecutionScheduler = Depends(get_scheduler)) -> TickResponse:
    """Resume every execution whose wait is over"""
    result = await scheduler.tick()
    return TickResponse(**result.to_dict())
