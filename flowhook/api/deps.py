"""API dependencies for FastAPI dependency injection.

Services are built once by ``create_app`` and kept on ``app.state``;
these helpers hand them to route handlers.
"""

import json
from dataclasses import dataclass
from typing import Annotated, Any

import structlog
from fastapi import Depends, Request

from flowhook.core.orchestrator import WorkflowOrchestrator
from flowhook.models.execution import TriggerEvent
from flowhook.nodes.registry import NodeRegistry
from flowhook.services.credential_service import CredentialLookup
from flowhook.services.execution_service import ExecutionService, InMemoryExecutionLog
from flowhook.services.test_listen import TestListenRegistry
from flowhook.services.workflow_service import WorkflowSource

logger = structlog.get_logger()


@dataclass
class AppServices:
    """Service instances shared by all requests of one application."""

    source: WorkflowSource
    credentials: CredentialLookup | None
    orchestrator: WorkflowOrchestrator
    executions: ExecutionService
    execution_log: InMemoryExecutionLog
    test_listeners: TestListenRegistry

    @property
    def registry(self) -> NodeRegistry:
        """Node registry used by the orchestrator."""
        return self.orchestrator.registry


def get_services(request: Request) -> AppServices:
    """Get the services attached to the running application."""
    return request.app.state.services


def get_execution_service(request: Request) -> ExecutionService:
    """Get the execution service."""
    return get_services(request).executions


def get_execution_log(request: Request) -> InMemoryExecutionLog:
    """Get the execution history."""
    return get_services(request).execution_log


def get_test_listeners(request: Request) -> TestListenRegistry:
    """Get the test-listen session registry."""
    return get_services(request).test_listeners


def get_orchestrator(request: Request) -> WorkflowOrchestrator:
    """Get the run orchestrator."""
    return get_services(request).orchestrator


async def _request_body(request: Request) -> Any:
    raw = await request.body()
    if not raw:
        return {}

    content_type = request.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            return json.loads(raw)
        except ValueError:
            logger.info("webhook_body_not_json", path=request.url.path)
            return raw.decode("utf-8", errors="replace")
    if "application/x-www-form-urlencoded" in content_type or "multipart/form-data" in content_type:
        form = await request.form()
        return {key: value for key, value in form.items() if isinstance(value, str)}
    return raw.decode("utf-8", errors="replace")


async def get_trigger_event(request: Request) -> TriggerEvent:
    """Build the trigger event for an inbound webhook request."""
    headers: dict[str, Any] = {}
    for name, value in request.headers.items():
        headers.setdefault(name, []).append(value)
    return TriggerEvent(
        method=request.method.upper(),
        url=str(request.url),
        headers=headers,
        query=dict(request.query_params),
        body=await _request_body(request),
    )


# Type aliases for dependency injection
ServicesDep = Annotated[AppServices, Depends(get_services)]
ExecutionServiceDep = Annotated[ExecutionService, Depends(get_execution_service)]
ExecutionLogDep = Annotated[InMemoryExecutionLog, Depends(get_execution_log)]
TestListenersDep = Annotated[TestListenRegistry, Depends(get_test_listeners)]
OrchestratorDep = Annotated[WorkflowOrchestrator, Depends(get_orchestrator)]
TriggerEventDep = Annotated[TriggerEvent, Depends(get_trigger_event)]
