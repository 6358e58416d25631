"""LLM call nodes.

Chat-completion style requests to third-party LLM APIs. One node
implementation serves every provider; presets carry the endpoint,
default model and request shape of each supported provider, and the
``claude``, ``perplexity``, ``openai`` and ``gemini`` node types are the
generic node pinned to a preset.
"""

from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog

from flowhook.core.conditions import is_numeric
from flowhook.core.router import NodeInputs
from flowhook.core.templates import resolve
from flowhook.models.credential import CredentialType, ResolvedCredential
from flowhook.models.node import NodeCategory, NodeDefinition
from flowhook.models.workflow import NodeKind
from flowhook.nodes.base import BaseNode, NodeContext, NodeExecutionError, NodeValidationError

logger = structlog.get_logger()


@dataclass(frozen=True)
class ProviderPreset:
    """Request shape of one LLM provider."""

    name: str
    label: str
    endpoint: str
    default_model: str
    # Claude takes the system prompt as a top-level field, not a message
    system_as_field: bool = False
    api_key_header: str | None = None
    # The key is sent as "Authorization: Bearer <key>" whatever prefix it is stored with
    bearer_key: bool = False
    supports_functions: bool = False
    extra_headers: dict[str, str] = field(default_factory=dict)
    defaults: dict[str, Any] = field(default_factory=dict)


PRESETS: dict[str, ProviderPreset] = {
    "openai": ProviderPreset(
        name="openai",
        label="OpenAI",
        endpoint="https://api.openai.com/v1/chat/completions",
        default_model="gpt-4o-mini",
    ),
    "perplexity": ProviderPreset(
        name="perplexity",
        label="Perplexity",
        endpoint="https://api.perplexity.ai/chat/completions",
        default_model="sonar",
    ),
    "claude": ProviderPreset(
        name="claude",
        label="Claude",
        endpoint="https://api.anthropic.com/v1/messages",
        default_model="claude-3-5-sonnet-20241022",
        system_as_field=True,
        api_key_header="x-api-key",
        extra_headers={"anthropic-version": "2023-06-01"},
        defaults={"max_tokens": 1024, "temperature": 0.7, "top_k": 40, "top_p": 0.9},
    ),
    "gemini": ProviderPreset(
        name="gemini",
        label="Gemini",
        endpoint="https://generativelanguage.googleapis.com/v1beta/openai/chat/completions",
        default_model="gemini-2.0-flash",
        bearer_key=True,
        supports_functions=True,
    ),
}


@dataclass
class LlmCallConfig:
    """Validated LLM node configuration (templates unresolved)."""

    preset: ProviderPreset
    endpoint: str
    model: str
    credential_id: str
    messages: list[dict[str, Any]] = field(default_factory=list)
    system_message: str | None = None
    parameters: dict[str, Any] = field(default_factory=dict)
    advanced_options: dict[str, Any] = field(default_factory=dict)
    functions: list[dict[str, Any]] = field(default_factory=list)
    function_call: str = "auto"
    timeout: int | None = None


def coerce_option(value: Any) -> Any:
    """Numeric strings become numbers: float when they contain '.', else int."""
    if isinstance(value, str) and is_numeric(value):
        text = value.strip()
        return float(text) if "." in text else int(float(text))
    return value


def _as_timeout(value: Any, field_name: str) -> int | None:
    if value in (None, ""):
        return None
    try:
        timeout = int(float(value))
    except (TypeError, ValueError) as e:
        raise NodeValidationError("Timeout must be a number", field=field_name) from e
    return timeout if timeout > 0 else None


def credential_auth_headers(
    credential: ResolvedCredential,
    preset: ProviderPreset,
) -> dict[str, str]:
    """Authentication headers for an LLM request.

    Raises:
        NodeExecutionError: If the credential holds no usable secret
    """
    data = credential.data
    if preset.bearer_key:
        secret = str(data.get("headerValue") or data.get("key") or data.get("token") or "")
        if secret.startswith("Bearer "):
            secret = secret[len("Bearer ") :]
        if secret:
            return {"Authorization": f"Bearer {secret}"}
    elif preset.api_key_header:
        secret = data.get("headerValue") or data.get("key") or data.get("token")
        if secret:
            return {preset.api_key_header: str(secret)}
    elif data.get("headerValue"):
        return {str(data.get("headerName") or "Authorization"): str(data["headerValue"])}
    elif credential.type == CredentialType.API_KEY and data.get("key"):
        return {str(data.get("headerName") or "Authorization"): str(data["key"])}
    elif data.get("token") or data.get("accessToken"):
        return {"Authorization": f"Bearer {data.get('token') or data.get('accessToken')}"}

    raise NodeExecutionError(
        f"Invalid {preset.label} credential configuration",
        node_name=preset.name,
        error_code="INVALID_CREDENTIAL",
    )


class LlmCallNode(BaseNode[LlmCallConfig]):
    """Send a chat request to an LLM provider and return its JSON response.

    Config:
        provider: Preset name (``openai``, ``perplexity``, ``claude``, ``gemini``)
        endpoint: Overrides the preset endpoint
        model, messages, systemMessageEnabled, systemMessage,
        credentialId, timeout, advancedOptions,
        functions and functionCall (presets with function calling)
    """

    # Fixed preset for the provider-specific node types
    provider: str | None = None
    failure_title = "LLM request failed"

    def get_definition(self) -> NodeDefinition:
        """Get node definition."""
        return NodeDefinition(
            name="llmCall",
            display_name="LLM Call",
            description=(
                "Calls a chat-completion API "
                "(OpenAI, Perplexity, Claude, Gemini or custom endpoint)"
            ),
            category=NodeCategory.API,
            kind=NodeKind.LLM_CALL,
            aliases=["llm"],
            credential_required=True,
            tags=["ai", "llm", "chat"],
        )

    def validate_input(self, config: dict[str, Any]) -> LlmCallConfig:
        """Validate provider, credential and message configuration."""
        provider = self.provider or str(config.get("provider") or "openai")
        preset = PRESETS.get(provider)
        endpoint = config.get("endpoint") or (preset.endpoint if preset else None)
        if preset is None:
            if not endpoint:
                raise NodeValidationError(
                    f"Unknown provider '{provider}' and no endpoint configured",
                    field="provider",
                )
            preset = ProviderPreset(
                name=provider, label=provider, endpoint=endpoint, default_model=""
            )

        credential_id = config.get("credentialId")
        if not credential_id:
            raise NodeValidationError(
                f"{preset.label} API credential is required", field="credentialId"
            )

        messages = config.get("messages") or []
        if not isinstance(messages, list):
            raise NodeValidationError("Messages must be a list", field="messages")

        advanced = config.get("advancedOptions") or {}
        if not isinstance(advanced, dict):
            raise NodeValidationError("Advanced options must be an object", field="advancedOptions")

        system_message = None
        if config.get("systemMessageEnabled") and config.get("systemMessage"):
            system_message = config["systemMessage"]

        parameters = {
            key: config[key] if key in config else default
            for key, default in preset.defaults.items()
        }

        functions: list[dict[str, Any]] = []
        if preset.supports_functions and isinstance(config.get("functions"), list):
            functions = [
                {
                    "name": function["name"],
                    "description": function.get("description") or "",
                    "parameters": function.get("parameters")
                    or {"type": "object", "properties": {}, "required": []},
                }
                for function in config["functions"]
                if isinstance(function, dict) and function.get("name")
            ]

        return LlmCallConfig(
            preset=preset,
            endpoint=str(endpoint),
            model=str(config.get("model") or preset.default_model),
            credential_id=str(credential_id),
            messages=[m for m in messages if isinstance(m, dict)],
            system_message=system_message,
            parameters=parameters,
            advanced_options=dict(advanced),
            functions=functions,
            function_call=str(config.get("functionCall") or "auto"),
            timeout=_as_timeout(advanced.get("timeout"), "advancedOptions")
            or _as_timeout(config.get("timeout"), "timeout"),
        )

    def build_request(self, config: LlmCallConfig, inputs: NodeInputs) -> dict[str, Any]:
        """Build the request body with resolved, non-empty turns."""
        messages: list[dict[str, Any]] = []
        system = resolve(config.system_message, inputs) if config.system_message else None
        if system and not config.preset.system_as_field:
            messages.append({"role": "system", "content": system})

        for message in config.messages:
            content = resolve(message.get("content") or "", inputs)
            if content:
                messages.append({"role": message.get("role") or "user", "content": content})

        body: dict[str, Any] = {"model": config.model, "messages": messages}
        body.update(config.parameters)
        if system and config.preset.system_as_field:
            body["system"] = system
        if config.functions:
            body["functions"] = config.functions
            if config.function_call in ("auto", "none"):
                body["function_call"] = config.function_call
            else:
                body["function_call"] = {"name": config.function_call}

        for key, value in config.advanced_options.items():
            if key == "timeout":
                continue
            body[key] = coerce_option(value)
        return body

    async def execute(
        self,
        config: LlmCallConfig,
        inputs: NodeInputs,
        context: NodeContext,
    ) -> Any:
        """Send the request and return the parsed JSON response."""
        credential = await context.get_credential(config.credential_id)
        if credential is None:
            raise NodeExecutionError(
                f"Invalid {config.preset.label} credential configuration",
                node_name=config.preset.name,
                error_code="CREDENTIAL_NOT_FOUND",
            )

        headers = {"Content-Type": "application/json", **config.preset.extra_headers}
        headers.update(credential_auth_headers(credential, config.preset))
        body = self.build_request(config, inputs)

        timeout = config.timeout or context.settings.llm_default_timeout
        logger.info(
            "llm_request_sending",
            provider=config.preset.name,
            model=config.model,
            messages_count=len(body["messages"]),
            has_system="system" in body,
            timeout=timeout,
        )

        try:
            async with context.http_client(
                timeout=httpx.Timeout(timeout, connect=context.settings.llm_connect_timeout)
            ) as client:
                response = await client.post(config.endpoint, json=body, headers=headers)
        except httpx.HTTPError as e:
            raise NodeExecutionError(
                str(e) or type(e).__name__,
                node_name=config.preset.name,
                error_code="LLM_TRANSPORT_ERROR",
            ) from e

        if not response.is_success:
            logger.warning(
                "llm_request_rejected",
                provider=config.preset.name,
                status=response.status_code,
            )
            raise NodeExecutionError(
                f"{config.preset.label} API error: {response.text}",
                node_name=config.preset.name,
                error_code="LLM_API_ERROR",
                details={"status": response.status_code},
            )

        try:
            return response.json()
        except ValueError as e:
            raise NodeExecutionError(
                f"{config.preset.label} API returned a non-JSON response",
                node_name=config.preset.name,
                error_code="LLM_INVALID_RESPONSE",
            ) from e


class OpenAINode(LlmCallNode):
    """LLM call pinned to the OpenAI preset."""

    provider = "openai"
    failure_title = "OpenAI request failed"

    def get_definition(self) -> NodeDefinition:
        """Get node definition."""
        return NodeDefinition(
            name="openai",
            display_name="OpenAI",
            description="Chat completion with OpenAI models",
            category=NodeCategory.API,
            kind=NodeKind.LLM_CALL,
            credential_required=True,
            tags=["ai", "llm", "openai"],
        )


class PerplexityNode(LlmCallNode):
    """LLM call pinned to the Perplexity preset."""

    provider = "perplexity"
    failure_title = "Perplexity request failed"

    def get_definition(self) -> NodeDefinition:
        """Get node definition."""
        return NodeDefinition(
            name="perplexity",
            display_name="Perplexity",
            description="Chat completion with Perplexity models",
            category=NodeCategory.API,
            kind=NodeKind.LLM_CALL,
            credential_required=True,
            tags=["ai", "llm", "perplexity", "search"],
        )


class ClaudeNode(LlmCallNode):
    """LLM call pinned to the Claude preset."""

    provider = "claude"
    failure_title = "Claude request failed"

    def get_definition(self) -> NodeDefinition:
        """Get node definition."""
        return NodeDefinition(
            name="claude",
            display_name="Claude",
            description="Messages API call to Anthropic Claude models",
            category=NodeCategory.API,
            kind=NodeKind.LLM_CALL,
            credential_required=True,
            tags=["ai", "llm", "anthropic", "claude"],
        )


class GeminiNode(LlmCallNode):
    """LLM call pinned to the Gemini preset (OpenAI-compatible endpoint)."""

    provider = "gemini"
    failure_title = "Gemini request failed"

    def get_definition(self) -> NodeDefinition:
        """Get node definition."""
        return NodeDefinition(
            name="gemini",
            display_name="Gemini",
            description="Chat completion with Google Gemini models, with function calling",
            category=NodeCategory.API,
            kind=NodeKind.LLM_CALL,
            credential_required=True,
            tags=["ai", "llm", "google", "gemini"],
        )
