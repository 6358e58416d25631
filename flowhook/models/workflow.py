"""Workflow graph model.

Runtime model for the workflow snapshot the engine executes (not persisted).
The definition store owns workflows; the engine only reads a snapshot
captured once at run start.

Graph schema:
{
    "nodes": [{"id": str, "type": str, "data": {"config": dict, "customName": str, "label": str}}],
    "edges": [{"source": str, "target": str, "sourceHandle": str | None, "targetHandle": str | None}]
}
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from flowhook.nodes.registry import NodeRegistry


class WorkflowSnapshotError(Exception):
    """Workflow snapshot is missing or malformed."""

    def __init__(self, message: str, error_code: str = "INVALID_SNAPSHOT") -> None:
        super().__init__(message)
        self.error_code = error_code


class NodeKind(str, Enum):
    """Canonical node kinds understood by the engine."""

    TRIGGER = "trigger"
    SCHEDULE = "schedule"
    HTTP = "http"
    CONDITIONAL = "conditional"
    SWITCH = "switch"
    CODE_RUN = "codeRun"
    LLM_CALL = "llmCall"
    ESCAPE = "escape"
    PASSTHROUGH = "passthrough"


# Branch handles on edges leaving conditional nodes
TRUE_HANDLE = "true"
FALSE_HANDLE = "false"
FALLBACK_HANDLE = "fallback"


def switch_handle(matched_output: int) -> str:
    """Get the edge handle selected by a switch result (-1 = fallback)."""
    return f"output{matched_output}" if matched_output >= 0 else FALLBACK_HANDLE


@dataclass(frozen=True)
class WorkflowNode:
    """A single typed processing step in a workflow graph."""

    id: str
    type: str
    config: dict[str, Any] = field(default_factory=dict)
    custom_name: str | None = None
    label: str | None = None

    @property
    def display_name(self) -> str:
        """Name under which the node's output is addressable by templates."""
        return self.custom_name or self.label or self.type

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for graph storage."""
        data: dict[str, Any] = {"config": copy.deepcopy(self.config)}
        if self.custom_name is not None:
            data["customName"] = self.custom_name
        if self.label is not None:
            data["label"] = self.label
        return {"id": self.id, "type": self.type, "data": data}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WorkflowNode":
        """Create from dictionary.

        Raises:
            WorkflowSnapshotError: If the node has no id or type
        """
        if not isinstance(data, dict):
            raise WorkflowSnapshotError("Node must be an object")
        node_id = data.get("id")
        if not node_id or not isinstance(node_id, str):
            raise WorkflowSnapshotError("Node is missing a string 'id'")

        node_data = data.get("data") or {}
        if not isinstance(node_data, dict):
            raise WorkflowSnapshotError(f"Node '{node_id}' data must be an object")
        # Older graphs kept config at the node's top level
        config = node_data.get("config", data.get("config")) or {}
        if not isinstance(config, dict):
            raise WorkflowSnapshotError(f"Node '{node_id}' config must be an object")

        return cls(
            id=node_id,
            type=str(data.get("type") or NodeKind.PASSTHROUGH.value),
            config=copy.deepcopy(config),
            custom_name=node_data.get("customName") or None,
            label=node_data.get("label") or None,
        )


@dataclass(frozen=True)
class WorkflowEdge:
    """Directed connection between two nodes, optionally tagged with a branch handle."""

    source: str
    target: str
    source_handle: str | None = None
    target_handle: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for graph storage."""
        return {
            "source": self.source,
            "target": self.target,
            "sourceHandle": self.source_handle,
            "targetHandle": self.target_handle,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WorkflowEdge":
        """Create from dictionary."""
        if not isinstance(data, dict) or "source" not in data or "target" not in data:
            raise WorkflowSnapshotError("Edge must have 'source' and 'target'")
        return cls(
            source=str(data["source"]),
            target=str(data["target"]),
            source_handle=data.get("sourceHandle"),
            target_handle=data.get("targetHandle"),
        )


@dataclass(frozen=True)
class WorkflowSnapshot:
    """Immutable-for-the-run view of a workflow's nodes and edges."""

    nodes: tuple[WorkflowNode, ...] = ()
    edges: tuple[WorkflowEdge, ...] = ()

    def __post_init__(self) -> None:
        seen: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                raise WorkflowSnapshotError(f"Duplicate node id '{node.id}'")
            seen.add(node.id)

    @property
    def node_map(self) -> dict[str, WorkflowNode]:
        """Nodes keyed by id."""
        return {node.id: node for node in self.nodes}

    def get_node(self, node_id: str) -> WorkflowNode | None:
        """Get a node by id."""
        return self.node_map.get(node_id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for graph storage."""
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
        }

    @classmethod
    def from_dict(cls, data: Any) -> "WorkflowSnapshot":
        """Build a snapshot from a stored graph.

        Raises:
            WorkflowSnapshotError: If the graph is missing or malformed
        """
        if data is None:
            raise WorkflowSnapshotError("Workflow snapshot is missing", "SNAPSHOT_MISSING")
        if not isinstance(data, dict):
            raise WorkflowSnapshotError("Workflow snapshot must be an object")

        nodes = data.get("nodes") or []
        edges = data.get("edges") or []
        if not isinstance(nodes, list) or not isinstance(edges, list):
            raise WorkflowSnapshotError("'nodes' and 'edges' must be lists")

        return cls(
            nodes=tuple(WorkflowNode.from_dict(n) for n in nodes),
            edges=tuple(WorkflowEdge.from_dict(e) for e in edges),
        )


@dataclass(frozen=True)
class WorkflowDefinition:
    """Workflow as handed to the engine by the definition store."""

    id: str
    name: str
    snapshot: WorkflowSnapshot
    active: bool = True

    def nodes_of_kind(
        self,
        kind: NodeKind,
        registry: "NodeRegistry | None" = None,
    ) -> list[WorkflowNode]:
        """Get the nodes whose type resolves to ``kind``.

        Args:
            kind: Canonical node kind
            registry: Registry resolving node types (default: built-in registry)
        """
        if registry is None:
            from flowhook.nodes.registry import get_node_registry

            registry = get_node_registry()
        return [
            node for node in self.snapshot.nodes if registry.resolve_kind(node.type) == kind
        ]

    def trigger_nodes(self, registry: "NodeRegistry | None" = None) -> list[WorkflowNode]:
        """Get the webhook trigger nodes of this workflow."""
        return self.nodes_of_kind(NodeKind.TRIGGER, registry)

    def schedule_nodes(self, registry: "NodeRegistry | None" = None) -> list[WorkflowNode]:
        """Get the schedule trigger nodes of this workflow."""
        return self.nodes_of_kind(NodeKind.SCHEDULE, registry)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WorkflowDefinition":
        """Create from dictionary."""
        return cls(
            id=str(data["id"]),
            name=data.get("name") or str(data["id"]),
            snapshot=WorkflowSnapshot.from_dict(
                {"nodes": data.get("nodes"), "edges": data.get("edges")}
            ),
            active=bool(data.get("active", True)),
        )
