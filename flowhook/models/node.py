"""Node definition model.

Runtime model for node kinds (not persisted).
Defines the catalog metadata for each node implementation.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from flowhook.models.workflow import NodeKind


class NodeCategory(str, Enum):
    """Node category for organization and filtering."""

    TRIGGER = "trigger"  # Entry points fed by the triggering event
    LOGIC = "logic"  # Branching and data shaping, no external effects
    API = "api"  # External HTTP / LLM calls
    CODE = "code"  # Scripts run by the external runtime


@dataclass
class NodeDefinition:
    """Complete node definition with metadata.

    Loaded from node implementations and used by the registry and the
    node catalog endpoint.
    """

    name: str  # Registered type name (e.g., 'http', 'claude')
    display_name: str  # Human-readable name (e.g., 'HTTP Request')
    description: str
    category: NodeCategory
    kind: NodeKind | None = None  # Canonical kind when it differs from name
    aliases: list[str] = field(default_factory=list)  # Saved-workflow type strings
    credential_required: bool = False
    version: str = "1.0.0"
    tags: list[str] = field(default_factory=list)

    @property
    def node_kind(self) -> NodeKind:
        """Canonical kind the branch router and orchestrator see."""
        return self.kind or NodeKind(self.name)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "name": self.name,
            "display_name": self.display_name,
            "description": self.description,
            "category": self.category.value,
            "kind": self.node_kind.value,
            "aliases": list(self.aliases),
            "credential_required": self.credential_required,
            "version": self.version,
            "tags": list(self.tags),
        }
