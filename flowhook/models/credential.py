"""Credential model.

Read-only view of a credential as handed to nodes by the credential
lookup collaborator. Values are decrypted only for the duration of a
node's execution.

SECURITY NOTES:
- Never log decrypted credential values
- Use constant-time comparison for sensitive operations
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class CredentialType(str, Enum):
    """Supported credential types."""

    BEARER = "bearer"
    API_KEY = "api_key"
    BASIC = "basic"
    CUSTOM = "custom"
    OAUTH2 = "oauth2"


# Secret fields expected in each credential type's data
CREDENTIAL_FIELDS: dict[CredentialType, list[str]] = {
    CredentialType.BEARER: ["token"],
    CredentialType.API_KEY: ["key", "headerName"],
    CredentialType.BASIC: ["username", "password"],
    CredentialType.CUSTOM: ["headerName", "headerValue"],
    CredentialType.OAUTH2: ["accessToken"],
}


@dataclass(frozen=True)
class ResolvedCredential:
    """Decrypted credential returned by a credential lookup.

    SECURITY WARNING: exposes decrypted values. Never log or persist it.
    """

    id: str
    type: CredentialType
    data: dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a secret field."""
        return self.data.get(key, default)

    def __repr__(self) -> str:
        return f"ResolvedCredential(id={self.id!r}, type={self.type.value!r}, data=<hidden>)"
