"""Node catalog and single-node test endpoints."""

from typing import Any

import structlog
from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from flowhook.api.deps import OrchestratorDep
from flowhook.models.node import NodeCategory
from flowhook.models.workflow import WorkflowEdge, WorkflowNode, WorkflowSnapshotError

logger = structlog.get_logger()

router = APIRouter()


class NodeTestRequest(BaseModel):
    """Run one node with editor-supplied inputs."""

    model_config = ConfigDict(populate_by_name=True)

    node_type: str = Field(alias="nodeType")
    config: dict[str, Any] = Field(default_factory=dict)
    input_data: list[Any] = Field(default_factory=list, alias="inputData")
    node_id: str | None = Field(default=None, alias="nodeId")
    nodes: list[dict[str, Any]] = Field(default_factory=list)
    edges: list[dict[str, Any]] = Field(default_factory=list)
    node_outputs: dict[str, Any] = Field(default_factory=dict, alias="nodeOutputs")


@router.get("")
async def list_nodes(orchestrator: OrchestratorDep) -> dict[str, Any]:
    """List available node kinds grouped by category."""
    registry = orchestrator.registry
    categories = {
        category.value: [d.to_dict() for d in registry.list_by_category(category)]
        for category in NodeCategory
    }
    return {
        "categories": categories,
        "total": sum(len(nodes) for nodes in categories.values()),
    }


@router.post("/test")
async def test_node(data: NodeTestRequest, orchestrator: OrchestratorDep) -> dict[str, Any]:
    """Run a single node outside a workflow.

    ``{{Name.field}}`` references resolve against ``nodeOutputs`` of the
    node's ancestors when ``nodeId``, ``nodes`` and ``edges`` are given.

    Returns:
        {"input": [...], "output": <node output>}
    """
    try:
        nodes = [WorkflowNode.from_dict(n) for n in data.nodes]
        edges = [WorkflowEdge.from_dict(e) for e in data.edges]
    except WorkflowSnapshotError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(e),
        ) from e

    return await orchestrator.test_node(
        data.node_type,
        data.config,
        data.input_data,
        node_id=data.node_id,
        nodes=nodes,
        edges=edges,
        node_outputs=data.node_outputs,
    )
