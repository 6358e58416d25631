"""HTTP Request node.

Issues one HTTP request built from template-resolved configuration.

Authentication comes either from a stored credential (``credentialId``)
or from the legacy inline fields older workflows still carry.
"""

import base64
import json
from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog

from flowhook.core.router import NodeInputs
from flowhook.core.templates import resolve, resolve_in_json, resolve_in_structure, stringify
from flowhook.models.credential import CredentialType, ResolvedCredential
from flowhook.models.node import NodeCategory, NodeDefinition
from flowhook.nodes.base import BaseNode, NodeContext, NodeExecutionError, NodeValidationError

logger = structlog.get_logger()

BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})
ALLOWED_METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"})


@dataclass
class HttpConfig:
    """Configuration for the HTTP node (unresolved)."""

    url: str
    method: str = "GET"
    query_params: list[dict[str, Any]] = field(default_factory=list)
    headers: list[dict[str, Any]] = field(default_factory=list)
    auth: str | None = None
    credential_id: str | None = None
    body_type: str | None = None
    body_content: Any = None
    timeout: int | None = None
    # Remaining keys, used by the legacy inline auth fields
    raw: dict[str, Any] = field(default_factory=dict)


def _basic(username: str, password: str) -> str:
    token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def credential_headers(credential: ResolvedCredential, inputs: NodeInputs) -> dict[str, str]:
    """Authentication headers for a stored credential.

    Secret fields may themselves contain expressions and are resolved.
    """
    data = credential.data

    def value(key: str) -> str:
        return str(resolve(data.get(key) or "", inputs))

    if credential.type in (CredentialType.BEARER, CredentialType.OAUTH2):
        key = "token" if credential.type == CredentialType.BEARER else "accessToken"
        if data.get(key):
            return {"Authorization": f"Bearer {value(key)}"}
    elif credential.type == CredentialType.API_KEY:
        if data.get("key") and data.get("headerName"):
            return {str(data["headerName"]): value("key")}
    elif credential.type == CredentialType.BASIC:
        if data.get("username") and data.get("password"):
            return {"Authorization": _basic(value("username"), value("password"))}
    elif credential.type == CredentialType.CUSTOM:
        if data.get("headerName") and data.get("headerValue"):
            return {str(data["headerName"]): value("headerValue")}
    return {}


def inline_auth_headers(raw: dict[str, Any], inputs: NodeInputs) -> dict[str, str]:
    """Authentication headers from legacy inline configuration."""

    def value(key: str) -> str:
        return str(resolve(raw.get(key) or "", inputs))

    headers: dict[str, str] = {}
    auth_type = raw.get("authType") or "bearer"
    if auth_type in ("bearer", "oauth2"):
        if raw.get("apiKeyValue"):
            headers["Authorization"] = f"Bearer {value('apiKeyValue')}"
    elif auth_type == "basic":
        if raw.get("username") and raw.get("password"):
            headers["Authorization"] = _basic(value("username"), value("password"))
    elif auth_type == "digest":
        if raw.get("username") and raw.get("password"):
            headers["Authorization"] = (
                f'Digest username="{value("username")}", password="{value("password")}"'
            )
    elif auth_type == "apiKey":
        if raw.get("apiKeyName") and raw.get("apiKeyValue"):
            headers[value("apiKeyName")] = value("apiKeyValue")
    elif auth_type == "custom":
        if raw.get("customHeaderName") and raw.get("customHeaderValue"):
            headers[value("customHeaderName")] = value("customHeaderValue")

    # Oldest workflows kept a bare token in 'credential'
    if raw.get("credential") and raw.get("auth") == "header":
        headers["Authorization"] = f"Bearer {value('credential')}"
    return headers


def _text(value: Any) -> str:
    return "" if value is None else stringify(value)


def _named_pairs(pairs: list[dict[str, Any]], inputs: NodeInputs) -> dict[str, str]:
    """Resolve header or query pairs; unresolved values become empty strings."""
    resolved: dict[str, str] = {}
    for pair in pairs:
        if not isinstance(pair, dict):
            continue
        name = _text(resolve(pair.get("name") or "", inputs))
        if name:
            resolved[name] = _text(resolve(pair.get("value", ""), inputs))
    return resolved


def response_output(response: httpx.Response) -> dict[str, Any]:
    """Convert a response into the node's output record."""
    headers: dict[str, list[str]] = {}
    for name, value in response.headers.multi_items():
        headers.setdefault(name, []).append(value)
    try:
        body: Any = response.json()
    except ValueError:
        body = response.text
    return {"status": response.status_code, "headers": headers, "body": body}


class HttpNode(BaseNode[HttpConfig]):
    """Call an HTTP endpoint.

    Output:
        {"status": int, "headers": {name: [values]}, "body": <JSON or text>}
    """

    failure_title = "HTTP request failed"

    def get_definition(self) -> NodeDefinition:
        """Get node definition."""
        return NodeDefinition(
            name="http",
            display_name="HTTP Request",
            description="Sends an HTTP request and returns status, headers and body",
            category=NodeCategory.API,
            aliases=["httpRequest"],
            tags=["http", "api", "request"],
        )

    def validate_input(self, config: dict[str, Any]) -> HttpConfig:
        """Validate HTTP node configuration."""
        url = config.get("url")
        if not url or not isinstance(url, str):
            raise NodeValidationError("URL is required", field="url")

        method = str(config.get("method") or "GET").upper()
        if method not in ALLOWED_METHODS:
            raise NodeValidationError(f"Unsupported method '{method}'", field="method")

        timeout = config.get("timeout")
        if timeout not in (None, ""):
            try:
                timeout = int(timeout)
            except (TypeError, ValueError) as e:
                raise NodeValidationError("Timeout must be a number", field="timeout") from e
            if timeout < 1:
                raise NodeValidationError("Timeout must be positive", field="timeout")
        else:
            timeout = None

        return HttpConfig(
            url=url,
            method=method,
            query_params=list(config.get("queryParams") or []),
            headers=list(config.get("headers") or []),
            auth=config.get("auth"),
            credential_id=config.get("credentialId") or None,
            body_type=config.get("bodyType"),
            body_content=config.get("bodyContent"),
            timeout=timeout,
            raw=config,
        )

    async def _auth_headers(
        self,
        config: HttpConfig,
        inputs: NodeInputs,
        context: NodeContext,
    ) -> dict[str, str]:
        if config.auth == "none" or not (config.auth or config.credential_id):
            return {}
        if config.credential_id:
            credential = await context.get_credential(config.credential_id)
            if credential is None:
                raise NodeExecutionError(
                    f"Credential '{config.credential_id}' not found",
                    node_name="http",
                    error_code="CREDENTIAL_NOT_FOUND",
                )
            logger.debug(
                "http_using_credential",
                credential_id=credential.id,
                credential_type=credential.type.value,
            )
            return credential_headers(credential, inputs)
        return inline_auth_headers(config.raw, inputs)

    @staticmethod
    def _body(config: HttpConfig, inputs: NodeInputs) -> tuple[str | None, bool]:
        """Resolved body text and whether it is JSON."""
        if config.method not in BODY_METHODS or not config.body_content:
            return None, False
        is_json = config.body_type == "json"
        content = config.body_content
        if isinstance(content, (dict, list)):
            resolved = resolve_in_structure(content, inputs)
            return json.dumps(resolved, ensure_ascii=False, separators=(",", ":")), is_json
        if is_json:
            return resolve_in_json(content, inputs), True
        return str(resolve(content, inputs)), False

    async def execute(
        self,
        config: HttpConfig,
        inputs: NodeInputs,
        context: NodeContext,
    ) -> dict[str, Any]:
        """Send the request."""
        url = resolve(config.url, inputs)
        params = _named_pairs(config.query_params, inputs)
        headers = _named_pairs(config.headers, inputs)
        headers.update(await self._auth_headers(config, inputs, context))

        body, is_json = self._body(config, inputs)
        if is_json:
            headers["Content-Type"] = "application/json"

        timeout = config.timeout or context.settings.http_default_timeout
        if timeout > context.settings.http_platform_timeout:
            logger.info(
                "http_timeout_above_platform_default",
                timeout=timeout,
                platform_timeout=context.settings.http_platform_timeout,
            )

        logger.debug("http_request_sending", method=config.method, url=url)
        try:
            async with context.http_client(timeout=float(timeout)) as client:
                response = await client.request(
                    config.method,
                    url,
                    params=params or None,
                    headers=headers,
                    content=body.encode("utf-8") if body is not None else None,
                )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning("http_request_failed", url=url, error_type=type(e).__name__)
            raise NodeExecutionError(
                str(e) or type(e).__name__,
                node_name="http",
                error_code="HTTP_TRANSPORT_ERROR",
            ) from e

        logger.debug("http_request_completed", url=url, status=response.status_code)
        return response_output(response)
