"""Execution history endpoints."""

from typing import Annotated, Any

import structlog
from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from flowhook.api.deps import ExecutionLogDep, ExecutionServiceDep
from flowhook.core.orchestrator import ResumeError
from flowhook.models.execution import ExecutionStatus
from flowhook.models.workflow import WorkflowSnapshotError
from flowhook.services.execution_service import ExecutionNotFoundError
from flowhook.services.workflow_service import WorkflowNotFoundError

logger = structlog.get_logger()

router = APIRouter()

# HTTP status per resume refusal; anything else is a 422
RESUME_ERROR_STATUS = {
    "RESUME_ALREADY_DONE": status.HTTP_409_CONFLICT,
    "RESUME_START_NODE_NOT_FOUND": status.HTTP_404_NOT_FOUND,
}


class ResumeRequest(BaseModel):
    """Resume a failed execution."""

    model_config = ConfigDict(populate_by_name=True)

    start_node_id: str | None = Field(default=None, alias="startNodeId")


@router.get("")
async def list_executions(
    log: ExecutionLogDep,
    workflow_id: Annotated[str | None, Query()] = None,
    status_filter: Annotated[ExecutionStatus | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[dict[str, Any]]:
    """List recent executions, newest first.

    Args:
        log: Execution history
        workflow_id: Filter by workflow
        status_filter: Filter by status
        limit: Maximum results
        offset: Pagination offset

    Returns:
        Execution summaries
    """
    records = await log.list(
        workflow_id=workflow_id,
        status=status_filter,
        limit=limit,
        offset=offset,
    )
    return [record.summary() for record in records]


@router.get("/{execution_id}")
async def get_execution(execution_id: str, log: ExecutionLogDep) -> dict[str, Any]:
    """Get a full execution record."""
    try:
        record = await log.get(execution_id)
    except ExecutionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    return record.model_dump(mode="json")


@router.post("/{execution_id}/resume")
async def resume_execution(
    execution_id: str,
    service: ExecutionServiceDep,
    data: ResumeRequest | None = None,
) -> dict[str, Any]:
    """Resume a failed execution from its errored node (or ``startNodeId``).

    Returns:
        The finalized record of the new run
    """
    data = data or ResumeRequest()
    try:
        record = await service.resume_execution(execution_id, data.start_node_id)
    except (ExecutionNotFoundError, WorkflowNotFoundError) as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except (ResumeError, WorkflowSnapshotError) as e:
        code = RESUME_ERROR_STATUS.get(e.error_code, status.HTTP_422_UNPROCESSABLE_ENTITY)
        raise HTTPException(status_code=code, detail=str(e)) from e

    logger.info(
        "execution_resumed",
        execution_id=record.id,
        source_execution_id=execution_id,
        status=record.status.value,
    )
    return record.model_dump(mode="json")
