"""Workflow run and test-listen endpoints."""

import json
from contextlib import aclosing
from typing import Any

import structlog
from fastapi import APIRouter, HTTPException, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sse_starlette.sse import EventSourceResponse

from flowhook.api.deps import ExecutionServiceDep, TestListenersDep
from flowhook.models.execution import TriggerEvent
from flowhook.services.workflow_service import WorkflowNotFoundError

logger = structlog.get_logger()

router = APIRouter()


class RunRequest(BaseModel):
    """Manual run input, shaped like a webhook request."""

    method: str = "POST"
    headers: dict[str, Any] = Field(default_factory=dict)
    query: dict[str, Any] = Field(default_factory=dict)
    body: Any = Field(default_factory=dict)

    def to_event(self, workflow_id: str) -> TriggerEvent:
        """Build the trigger event of a manual run."""
        return TriggerEvent(
            method=self.method.upper(),
            url=f"/api/v1/workflows/{workflow_id}/run",
            headers=self.headers,
            query=self.query,
            body=self.body,
        )


class TestListenRequest(BaseModel):
    """Start a test-listen session for a trigger node."""

    model_config = ConfigDict(populate_by_name=True)

    path: str
    method: str | None = None
    node_id: str | None = Field(default=None, alias="nodeId")
    auth: str | None = None
    auth_type: str | None = Field(default=None, alias="authType")
    credential_id: str | None = Field(default=None, alias="credentialId")
    auth_config: dict[str, Any] = Field(default_factory=dict, alias="authConfig")


@router.post("/{workflow_id}/run")
async def run_workflow(
    workflow_id: str,
    service: ExecutionServiceDep,
    data: RunRequest | None = None,
) -> dict[str, Any]:
    """Run a workflow to completion.

    Returns:
        The finalized execution record
    """
    data = data or RunRequest()
    try:
        record = await service.run_workflow(workflow_id, data.to_event(workflow_id))
    except WorkflowNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    return record.model_dump(mode="json")


@router.post("/{workflow_id}/run/stream")
async def stream_workflow(
    workflow_id: str,
    service: ExecutionServiceDep,
    data: RunRequest | None = None,
) -> EventSourceResponse:
    """Run a workflow, streaming execution events via SSE.

    Event types:
    - start: Execution has started
    - step: A node ran or was skipped
    - complete: Execution finished
    - error: Execution failed at engine level
    """
    data = data or RunRequest()
    # Resolve the workflow up front so a missing one is a 404, not a stream error
    try:
        await service.source.get(workflow_id)
    except WorkflowNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e

    async def event_generator():
        """Generate SSE events from the run."""
        async with aclosing(
            service.stream_workflow(workflow_id, data.to_event(workflow_id))
        ) as events:
            async for event in events:
                yield {
                    "event": event.type,
                    "data": json.dumps(event.to_dict(), default=str),
                }

    return EventSourceResponse(event_generator())


@router.post("/{workflow_id}/test-listen")
async def start_test_listen(
    workflow_id: str,
    data: TestListenRequest,
    listeners: TestListenersDep,
) -> dict[str, Any]:
    """Start listening for a test webhook request."""
    session = listeners.start(
        workflow_id,
        path=data.path,
        method=data.method,
        node_id=data.node_id,
        auth=data.auth,
        auth_type=data.auth_type,
        credential_id=data.credential_id,
        auth_config=data.auth_config,
    )
    return {"test_run_id": session.id, "message": "Listening for webhook requests"}


@router.get("/{workflow_id}/test-listen/{test_run_id}")
async def get_test_status(
    workflow_id: str,
    test_run_id: str,
    listeners: TestListenersDep,
) -> JSONResponse:
    """Poll a test-listen session."""
    result = listeners.status(test_run_id, workflow_id)
    code = status.HTTP_404_NOT_FOUND if result["status"] == "not_found" else status.HTTP_200_OK
    return JSONResponse(status_code=code, content=result)


@router.delete("/{workflow_id}/test-listen/{test_run_id}")
async def stop_test_listen(
    workflow_id: str,
    test_run_id: str,
    listeners: TestListenersDep,
) -> dict[str, str]:
    """Stop a test-listen session."""
    if not listeners.stop(test_run_id, workflow_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Test session not found"
        )
    return {"message": "Stopped listening"}
