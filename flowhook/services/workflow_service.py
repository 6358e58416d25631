"""Workflow source.

The definition store owns workflows; the engine only reads them.
``InMemoryWorkflowSource`` is the bundled implementation used by the API
and tests.
"""

from typing import Any, Protocol

import structlog

from flowhook.models.workflow import WorkflowDefinition
from flowhook.nodes.registry import NodeRegistry

logger = structlog.get_logger()


class WorkflowServiceError(Exception):
    """Error in workflow source operations."""

    def __init__(self, message: str, error_code: str = "WORKFLOW_ERROR") -> None:
        super().__init__(message)
        self.error_code = error_code


class WorkflowNotFoundError(WorkflowServiceError):
    """Workflow not found."""

    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Workflow '{workflow_id}' not found", "WORKFLOW_NOT_FOUND")
        self.workflow_id = workflow_id


class WorkflowSource(Protocol):
    """Read-only access to stored workflow definitions."""

    async def get(self, workflow_id: str) -> WorkflowDefinition:
        """Get a workflow by id.

        Raises:
            WorkflowNotFoundError: If no such workflow exists
        """
        ...

    async def find_by_webhook_path(self, path: str) -> list[WorkflowDefinition]:
        """Get active workflows with a trigger node listening on ``path``."""
        ...

    async def list_active(self) -> list[WorkflowDefinition]:
        """Get every active workflow."""
        ...


def normalize_path(path: str | None) -> str:
    """Strip surrounding slashes so '/orders/' and 'orders' match."""
    return (path or "").strip().strip("/")


class InMemoryWorkflowSource:
    """Workflow definitions kept in process memory.

    Example usage:
        source = InMemoryWorkflowSource()
        source.add({"id": "wf-1", "nodes": [...], "edges": [...]})
        workflows = await source.find_by_webhook_path("orders")
    """

    def __init__(self, registry: NodeRegistry | None = None) -> None:
        """Initialize an empty source.

        Args:
            registry: Registry deciding which nodes are webhook triggers
        """
        self.registry = registry
        self._workflows: dict[str, WorkflowDefinition] = {}

    def add(self, workflow: WorkflowDefinition | dict[str, Any]) -> WorkflowDefinition:
        """Store (or replace) a workflow definition.

        Raises:
            WorkflowSnapshotError: If a raw graph is malformed
        """
        if not isinstance(workflow, WorkflowDefinition):
            workflow = WorkflowDefinition.from_dict(workflow)
        self._workflows[workflow.id] = workflow
        logger.info(
            "workflow_stored",
            workflow_id=workflow.id,
            nodes=len(workflow.snapshot.nodes),
            active=workflow.active,
        )
        return workflow

    def remove(self, workflow_id: str) -> None:
        """Forget a workflow."""
        self._workflows.pop(workflow_id, None)

    async def get(self, workflow_id: str) -> WorkflowDefinition:
        """Get a workflow by id.

        Raises:
            WorkflowNotFoundError: If no such workflow exists
        """
        workflow = self._workflows.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        return workflow

    async def find_by_webhook_path(self, path: str) -> list[WorkflowDefinition]:
        """Get active workflows with a trigger node listening on ``path``."""
        wanted = normalize_path(path)
        matches = [
            workflow
            for workflow in self._workflows.values()
            if workflow.active
            and any(
                normalize_path(node.config.get("path")) == wanted
                for node in workflow.trigger_nodes(self.registry)
            )
        ]
        logger.debug("webhook_path_lookup", path=wanted, matches=len(matches))
        return matches

    async def list_active(self) -> list[WorkflowDefinition]:
        """Get every active workflow."""
        return [workflow for workflow in self._workflows.values() if workflow.active]

    def __len__(self) -> int:
        return len(self._workflows)
