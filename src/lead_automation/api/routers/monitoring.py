"""
Health route
"""
import logging

from fastapi import APIRouter, Depends

from ..models import HealthCheckResponse
from ..dependencies import get_runtime
from ... import __version__
from ...exceptions import PersistenceError
from ...models.workflow import utcnow
from ...runtime import AutomationRuntime


logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(runtime: AutomationRuntime = Depends(get_runtime)) -> HealthCheckResponse:
    checks = {}

    try:
        await runtime.engine.workflow_repository.list(limit=1)
        checks["database"] = True
    except PersistenceError as e:
        logger.error(f"Database health check failed: {e}")
        checks["database"] = False

    checks["messaging"] = type(runtime.messaging).__name__
    checks["text_generation"] = type(runtime.text_generator).__name__

    return HealthCheckResponse(
        status="healthy" if checks["database"] else "unhealthy",
        version=__version__,
        timestamp=utcnow(),
        checks=checks,
        metrics=runtime.metrics.snapshot()
    )
