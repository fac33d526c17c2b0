"""
FastAPI application
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .routers import workflows, executions, triggers, scheduler, subjects, monitoring
from .middleware import RequestLoggingMiddleware, AuthenticationMiddleware
from .state import app_state, get_app_state
from .. import __version__
from ..config import EngineSettings
from ..exceptions import (
    LeadAutomationError, WorkflowParseError, WorkflowValidationError,
    WorkflowNotFoundError, WorkflowNotPublishedError, ExecutionNotFoundError,
    PersistenceError
)
from ..runtime import AutomationRuntime, create_database_runtime


logger = logging.getLogger(__name__)


def install_runtime(runtime: AutomationRuntime):
    """Use an already built runtime instead of creating one at startup"""
    app_state["runtime"] = runtime


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the database backed runtime unless one was installed"""
    logger.info("Starting Lead Automation API...")

    owns_runtime = "runtime" not in app_state
    if owns_runtime:
        settings = EngineSettings.from_env()
        app_state["runtime"] = await create_database_runtime(settings)

    logger.info("Lead Automation API started")

    yield

    logger.info("Shutting down Lead Automation API...")
    if owns_runtime:
        runtime = app_state.pop("runtime")
        await runtime.close()
    logger.info("Lead Automation API shut down")


def _error(status_code: int, error: str, exc: Exception, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "message": str(exc), **extra}
    )


def create_app() -> FastAPI:
    app = FastAPI(
        title="Lead Automation API",
        description="Workflow automation engine for CRM leads",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(AuthenticationMiddleware)
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(workflows.router, prefix="/api/v1/workflows", tags=["workflows"])
    app.include_router(executions.router, prefix="/api/v1/executions", tags=["executions"])
    app.include_router(triggers.router, prefix="/api/v1/triggers", tags=["triggers"])
    app.include_router(scheduler.router, prefix="/api/v1/scheduler", tags=["scheduler"])
    app.include_router(subjects.router, prefix="/api/v1/subjects", tags=["subjects"])
    app.include_router(monitoring.router, prefix="/api/v1", tags=["monitoring"])

    @app.exception_handler(WorkflowValidationError)
    async def validation_error_handler(request: Request, exc: WorkflowValidationError):
        return _error(status.HTTP_400_BAD_REQUEST, "validation_error", exc, errors=exc.errors)

    @app.exception_handler(WorkflowParseError)
    async def parse_error_handler(request: Request, exc: WorkflowParseError):
        return _error(status.HTTP_400_BAD_REQUEST, "parse_error", exc)

    @app.exception_handler(WorkflowNotFoundError)
    async def workflow_not_found_handler(request: Request, exc: WorkflowNotFoundError):
        return _error(status.HTTP_404_NOT_FOUND, "workflow_not_found", exc)

    @app.exception_handler(ExecutionNotFoundError)
    async def execution_not_found_handler(request: Request, exc: ExecutionNotFoundError):
        return _error(status.HTTP_404_NOT_FOUND, "execution_not_found", exc)

    @app.exception_handler(WorkflowNotPublishedError)
    async def not_published_handler(request: Request, exc: WorkflowNotPublishedError):
        return _error(status.HTTP_409_CONFLICT, "workflow_not_published", exc)

    @app.exception_handler(PersistenceError)
    async def persistence_error_handler(request: Request, exc: PersistenceError):
        logger.error(f"Persistence error: {exc}", exc_info=True)
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "persistence_error", exc)

    @app.exception_handler(LeadAutomationError)
    async def automation_error_handler(request: Request, exc: LeadAutomationError):
        logger.error(f"Unhandled automation error: {exc}", exc_info=True)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "automation_error", exc)

    @app.get("/", tags=["root"])
    async def root():
        return {
            "name": "Lead Automation API",
            "version": __version__,
            "status": "running",
            "docs": "/docs",
            "health": "/api/v1/health"
        }

    return app


app = create_app()


__all__ = ["app", "create_app", "install_runtime", "get_app_state", "lifespan"]
