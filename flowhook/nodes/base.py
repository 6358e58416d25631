"""Base node interface.

Defines the abstract base class for all workflow node kinds and the
context handed to them during execution.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, TypeVar

import httpx
import structlog

from flowhook.config import Settings, get_settings
from flowhook.core.router import NodeInputs
from flowhook.models.credential import ResolvedCredential
from flowhook.models.execution import TriggerEvent
from flowhook.models.node import NodeCategory, NodeDefinition

if TYPE_CHECKING:
    from flowhook.services.code_runner import CodeRunner
    from flowhook.services.credential_service import CredentialLookup

logger = structlog.get_logger()

# Type variable for the validated config of a node kind
ConfigT = TypeVar("ConfigT")


class NodeExecutionError(Exception):
    """Error during node execution."""

    def __init__(
        self,
        message: str,
        node_name: str,
        error_code: str = "NODE_ERROR",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.node_name = node_name
        self.error_code = error_code
        self.details = details or {}


class NodeValidationError(Exception):
    """Error validating node configuration."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


@dataclass
class NodeContext:
    """Context passed to a node during execution.

    Carries the triggering event, the collaborators nodes call into and
    execution metadata.
    """

    execution_id: str
    node_id: str | None = None
    trigger: TriggerEvent = field(default_factory=TriggerEvent)
    credentials: "CredentialLookup | None" = None
    code_runner: "CodeRunner | None" = None
    http_transport: httpx.AsyncBaseTransport | None = None
    settings: Settings = field(default_factory=get_settings)

    async def get_credential(self, credential_id: Any) -> ResolvedCredential | None:
        """Resolve a credential through the lookup collaborator.

        Returns:
            The credential, or None when no id is given, no lookup is
            configured or the credential does not exist
        """
        if credential_id in (None, ""):
            return None
        if self.credentials is None:
            logger.warning("credential_lookup_not_configured", node_id=self.node_id)
            return None
        return await self.credentials.resolve(str(credential_id))

    def http_client(self, timeout: httpx.Timeout | float) -> httpx.AsyncClient:
        """Create an HTTP client, using the injected transport when set."""
        return httpx.AsyncClient(timeout=timeout, transport=self.http_transport)


class BaseNode(ABC, Generic[ConfigT]):
    """Abstract base class for workflow nodes.

    All nodes must implement:
    - get_definition(): Returns node metadata
    - execute(): Produces the node's output

    ``run`` is the failure-isolation boundary: every exception raised
    while validating or executing becomes an ``{"error", "message"}``
    output. Nothing escapes it.

    Example implementation:
        class UpperNode(BaseNode[UpperConfig]):
            def get_definition(self) -> NodeDefinition:
                return NodeDefinition(
                    name="upper",
                    display_name="Upper",
                    category=NodeCategory.LOGIC,
                    ...
                )

            async def execute(self, config, inputs, context):
                return {"text": resolve(config.text, inputs).upper()}
    """

    # Error title of failure outputs; defaults to "<display name> failed"
    failure_title: str | None = None

    @abstractmethod
    def get_definition(self) -> NodeDefinition:
        """Get the node definition with metadata.

        Returns:
            NodeDefinition with name, category, aliases, etc.
        """

    @abstractmethod
    async def execute(
        self,
        config: ConfigT,
        inputs: NodeInputs,
        context: NodeContext,
    ) -> Any:
        """Execute the node's operation.

        Args:
            config: Validated node configuration
            inputs: Inputs visible to this node
            context: Execution context with collaborators and metadata

        Returns:
            Node output (any JSON-compatible value)

        Raises:
            NodeExecutionError: If execution fails
        """

    def validate_input(self, config: dict[str, Any]) -> ConfigT:
        """Validate and transform the raw node configuration.

        Override this method to implement custom validation.

        Args:
            config: Raw ``data.config`` mapping of the node

        Returns:
            Validated configuration (typed)

        Raises:
            NodeValidationError: If validation fails
        """
        return config  # type: ignore[return-value]

    def error_output(
        self,
        error: Exception,
        inputs: NodeInputs,
    ) -> dict[str, Any]:
        """Build the output recorded when the node fails.

        Override to add kind-specific fields to failure outputs.
        """
        output: dict[str, Any] = {
            "error": self.failure_title or f"{self.get_definition().display_name} failed",
            "message": str(error),
        }
        if isinstance(error, NodeExecutionError) and error.details:
            output.update(error.details)
        return output

    async def run(
        self,
        config: dict[str, Any],
        inputs: NodeInputs,
        context: NodeContext,
    ) -> Any:
        """Run the node with full lifecycle.

        This method handles:
        1. Config validation
        2. Execution
        3. Conversion of any failure into an error output

        Args:
            config: Raw node configuration
            inputs: Inputs visible to this node
            context: Execution context

        Returns:
            Node output, or an error record when the node failed
        """
        definition = self.get_definition()

        logger.debug(
            "node_execution_starting",
            node_name=definition.name,
            node_id=context.node_id,
            execution_id=context.execution_id,
        )

        try:
            validated = self.validate_input(config)
            output = await self.execute(validated, inputs, context)
        except NodeValidationError as e:
            logger.warning(
                "node_validation_failed",
                node_name=definition.name,
                node_id=context.node_id,
                field=e.field,
                error=str(e),
            )
            return self.error_output(e, inputs)
        except NodeExecutionError as e:
            logger.warning(
                "node_execution_failed",
                node_name=definition.name,
                node_id=context.node_id,
                error_code=e.error_code,
                error=str(e),
            )
            return self.error_output(e, inputs)
        except Exception as e:
            logger.exception(
                "node_execution_crashed",
                node_name=definition.name,
                node_id=context.node_id,
                execution_id=context.execution_id,
            )
            return self.error_output(e, inputs)

        logger.debug(
            "node_execution_completed",
            node_name=definition.name,
            node_id=context.node_id,
            execution_id=context.execution_id,
        )
        return output

    @property
    def name(self) -> str:
        """Get node name."""
        return self.get_definition().name

    @property
    def category(self) -> NodeCategory:
        """Get node category."""
        return self.get_definition().category
