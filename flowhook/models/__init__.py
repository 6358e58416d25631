"""Data models - workflow graph, execution records and credentials."""

from flowhook.models.credential import CredentialType, ResolvedCredential
from flowhook.models.execution import (
    ExecutionError,
    ExecutionEvent,
    ExecutionRecord,
    ExecutionStatus,
    NodeResult,
    TriggerEvent,
)
from flowhook.models.node import NodeCategory, NodeDefinition
from flowhook.models.workflow import (
    NodeKind,
    WorkflowDefinition,
    WorkflowEdge,
    WorkflowNode,
    WorkflowSnapshot,
    WorkflowSnapshotError,
)

__all__ = [
    "CredentialType",
    "ExecutionError",
    "ExecutionEvent",
    "ExecutionRecord",
    "ExecutionStatus",
    "NodeCategory",
    "NodeDefinition",
    "NodeKind",
    "NodeResult",
    "ResolvedCredential",
    "TriggerEvent",
    "WorkflowDefinition",
    "WorkflowEdge",
    "WorkflowNode",
    "WorkflowSnapshot",
    "WorkflowSnapshotError",
]
