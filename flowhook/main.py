"""FastAPI application entry point.

This module configures logging and builds the FastAPI application with
its routes, middleware and shared services.
"""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import AsyncGenerator

import httpx
import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from flowhook import __version__
from flowhook.api.deps import AppServices
from flowhook.api.routes import (
    executions_router,
    nodes_router,
    webhooks_router,
    workflows_router,
)
from flowhook.config import Settings, get_settings
from flowhook.core.encryption import CredentialEncryption
from flowhook.core.orchestrator import WorkflowOrchestrator
from flowhook.nodes.registry import NodeRegistry
from flowhook.services.code_runner import CodeRunner
from flowhook.services.credential_service import CredentialLookup, InMemoryCredentialStore
from flowhook.services.execution_service import (
    ExecutionService,
    InMemoryExecutionLog,
    poll_schedules,
)
from flowhook.services.test_listen import TestListenRegistry
from flowhook.services.workflow_service import InMemoryWorkflowSource, WorkflowSource

settings = get_settings()

# Configure structured logging
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer() if not settings.debug else structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        getattr(logging, settings.log_level)
    ),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    app_settings: Settings = app.state.settings
    logger.info(
        "application_starting",
        host=app_settings.host,
        port=app_settings.port,
        debug=app_settings.debug,
        log_level=app_settings.log_level,
    )
    logger.info(
        "configuration_loaded",
        encryption_key=app_settings.get_masked_key("encryption_key"),
        code_runner=app_settings.code_runner_command,
        template_timezone=app_settings.template_timezone,
    )

    poller = None
    if app_settings.schedule_poll_interval:
        poller = asyncio.create_task(
            poll_schedules(app.state.services.executions, app_settings.schedule_poll_interval)
        )

    yield

    if poller is not None:
        poller.cancel()
        with suppress(asyncio.CancelledError):
            await poller
    logger.info("application_shutting_down")


def build_services(
    source: WorkflowSource | None = None,
    credentials: CredentialLookup | None = None,
    registry: NodeRegistry | None = None,
    code_runner: CodeRunner | None = None,
    http_transport: httpx.AsyncBaseTransport | None = None,
    app_settings: Settings | None = None,
) -> AppServices:
    """Wire the services one application shares.

    Raises:
        EncryptionKeyError: If a configured encryption key is malformed
    """
    app_settings = app_settings or get_settings()
    if credentials is None:
        credentials = InMemoryCredentialStore(CredentialEncryption.from_settings(app_settings))
    source = source or InMemoryWorkflowSource(registry)

    orchestrator = WorkflowOrchestrator(
        registry=registry,
        credentials=credentials,
        code_runner=code_runner,
        http_transport=http_transport,
        settings=app_settings,
    )
    execution_log = InMemoryExecutionLog(app_settings.execution_log_size)
    return AppServices(
        source=source,
        credentials=credentials,
        orchestrator=orchestrator,
        executions=ExecutionService(source, orchestrator, execution_log),
        execution_log=execution_log,
        test_listeners=TestListenRegistry(settings=app_settings),
    )


def create_app(
    source: WorkflowSource | None = None,
    credentials: CredentialLookup | None = None,
    registry: NodeRegistry | None = None,
    code_runner: CodeRunner | None = None,
    http_transport: httpx.AsyncBaseTransport | None = None,
    app_settings: Settings | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        source: Workflow definitions (default: empty in-memory source)
        credentials: Credential lookup (default: in-memory store)
        registry: Node registry (default: built-in nodes)
        code_runner: External code runner for code nodes
        http_transport: Transport for outbound HTTP (tests inject mocks)
        app_settings: Application settings
    """
    app_settings = app_settings or get_settings()
    app = FastAPI(
        title="flowhook",
        description="Webhook-triggered workflow execution engine",
        version=__version__,
        docs_url="/docs" if app_settings.debug else None,
        redoc_url="/redoc" if app_settings.debug else None,
        openapi_url="/openapi.json" if app_settings.debug else None,
        lifespan=lifespan,
    )
    app.state.settings = app_settings
    app.state.services = build_services(
        source, credentials, registry, code_runner, http_transport, app_settings
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register routes
    app.include_router(webhooks_router, tags=["webhooks"])
    app.include_router(
        workflows_router,
        prefix="/api/v1/workflows",
        tags=["workflows"],
    )
    app.include_router(
        executions_router,
        prefix="/api/v1/executions",
        tags=["executions"],
    )
    app.include_router(
        nodes_router,
        prefix="/api/v1/nodes",
        tags=["nodes"],
    )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle uncaught exceptions.

        Never expose internal error details in production.
        """
        logger.exception(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
        )

        if app_settings.debug:
            detail = str(exc)
        else:
            detail = "An internal error occurred"

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": detail, "error_type": "internal_error"},
        )

    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint for load balancers and monitoring."""
        return {"status": "healthy", "version": __version__}

    return app


# Create application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "flowhook.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
