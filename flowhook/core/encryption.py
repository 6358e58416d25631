"""Credential encryption.

Credential secrets handed to the engine's in-memory credential store are
kept as Fernet tokens and only decrypted for the node that asks for them.

SECURITY NOTES:
- Fernet is AES-128-CBC with an HMAC-SHA256 tag
- Keys are 32 url-safe base64-encoded bytes (see ``generate_key``)
- Never log decrypted credential values
"""

import hmac
import json
from typing import Any

import structlog
from cryptography.fernet import Fernet, InvalidToken

from flowhook.config import Settings, get_settings

logger = structlog.get_logger()


class EncryptionError(Exception):
    """Base exception for encryption operations."""

    def __init__(self, message: str, error_code: str = "ENCRYPTION_ERROR") -> None:
        super().__init__(message)
        self.error_code = error_code


class EncryptionKeyError(EncryptionError):
    """Invalid or missing encryption key."""

    def __init__(self, message: str) -> None:
        super().__init__(message, "ENCRYPTION_KEY_INVALID")


class DecryptionError(EncryptionError):
    """Failed to decrypt a credential token."""

    def __init__(self, message: str) -> None:
        super().__init__(message, "DECRYPTION_FAILED")


class CredentialEncryption:
    """Fernet encryption of credential secret fields.

    Stateless apart from the key; one instance can serve every run.

    Example usage:
        encryption = CredentialEncryption(CredentialEncryption.generate_key())
        token = encryption.encrypt({"token": "abc"})
        encryption.decrypt(token)  # {"token": "abc"}
    """

    def __init__(self, key: str) -> None:
        """Initialize with a Fernet key.

        Args:
            key: Fernet key (32 url-safe base64-encoded bytes)

        Raises:
            EncryptionKeyError: If the key is malformed
        """
        try:
            self._fernet = Fernet(key.encode())
        except (ValueError, TypeError) as e:
            logger.error("encryption_key_invalid", error_type=type(e).__name__)
            raise EncryptionKeyError(
                "Invalid encryption key format. Generate one with "
                "CredentialEncryption.generate_key()"
            ) from e

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "CredentialEncryption | None":
        """Build from the configured ``ENCRYPTION_KEY``.

        Returns:
            CredentialEncryption, or None when no key is configured
        """
        settings = settings or get_settings()
        if settings.encryption_key is None:
            logger.info("credential_encryption_disabled")
            return None
        return cls(settings.encryption_key.get_secret_value())

    def encrypt(self, data: dict[str, Any]) -> str:
        """Encrypt a credential's secret fields.

        Args:
            data: Secret fields (must be JSON-serialisable)

        Returns:
            Fernet token as text

        Raises:
            EncryptionError: If the data cannot be serialised
        """
        try:
            payload = json.dumps(data, separators=(",", ":")).encode("utf-8")
        except (TypeError, ValueError) as e:
            logger.error("encryption_failed", error_type=type(e).__name__)
            raise EncryptionError("Credential data is not JSON-serialisable") from e
        return self._fernet.encrypt(payload).decode("utf-8")

    def decrypt(self, token: str) -> dict[str, Any]:
        """Decrypt a credential token.

        Args:
            token: Fernet token produced by ``encrypt``

        Returns:
            Secret fields

        Raises:
            DecryptionError: Wrong key, tampered token or non-JSON payload
        """
        try:
            payload = self._fernet.decrypt(token.encode("utf-8"))
        except InvalidToken as e:
            logger.warning("decryption_invalid_token")
            raise DecryptionError(
                "Failed to decrypt: invalid token (wrong key or corrupted data)"
            ) from e
        try:
            data = json.loads(payload.decode("utf-8"))
        except ValueError as e:
            logger.error("decryption_invalid_json")
            raise DecryptionError("Decrypted data is not valid JSON") from e
        if not isinstance(data, dict):
            raise DecryptionError("Decrypted data is not an object")
        return data

    @staticmethod
    def generate_key() -> str:
        """Generate a new Fernet key."""
        return Fernet.generate_key().decode("utf-8")


def constant_time_compare(a: str | None, b: str | None) -> bool:
    """Compare two secrets in constant time.

    None never matches, not even another None.
    """
    if a is None or b is None:
        return False
    return hmac.compare_digest(str(a).encode("utf-8"), str(b).encode("utf-8"))


def mask_credential_value(value: str, visible_chars: int = 4) -> str:
    """Mask a credential value for safe logging.

    Args:
        value: Credential value to mask
        visible_chars: Number of leading characters left visible

    Returns:
        Masked string like "sk-a***"
    """
    if len(value) <= visible_chars:
        return "*" * len(value)
    return value[:visible_chars] + "*" * min(8, len(value) - visible_chars)
