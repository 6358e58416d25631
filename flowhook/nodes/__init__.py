"""Node kinds - one module per kind, dispatched through the registry."""

from flowhook.nodes.base import BaseNode, NodeContext, NodeExecutionError, NodeValidationError
from flowhook.nodes.registry import NodeRegistry, NodeRegistryError, get_node_registry

__all__ = [
    "BaseNode",
    "NodeContext",
    "NodeExecutionError",
    "NodeRegistry",
    "NodeRegistryError",
    "NodeValidationError",
    "get_node_registry",
]
