"""Credential lookup.

The engine never owns credentials; it asks a lookup collaborator to
resolve the ``credentialId`` a node declares. ``InMemoryCredentialStore``
is the bundled implementation, with secrets Fernet-encrypted at rest when
an encryption key is configured.
"""

from typing import Any, Protocol

import structlog

from flowhook.core.encryption import CredentialEncryption, DecryptionError
from flowhook.models.credential import CredentialType, ResolvedCredential

logger = structlog.get_logger()


class CredentialServiceError(Exception):
    """Error in credential lookup operations."""

    def __init__(self, message: str, error_code: str = "CREDENTIAL_ERROR") -> None:
        super().__init__(message)
        self.error_code = error_code


class CredentialLookup(Protocol):
    """Read-only credential lookup used by nodes."""

    async def resolve(self, credential_id: str) -> ResolvedCredential | None:
        """Resolve a credential id, or None when it does not exist."""
        ...


class InMemoryCredentialStore:
    """Credential store kept in process memory.

    Example usage:
        store = InMemoryCredentialStore(CredentialEncryption.from_settings())
        store.add("cred-1", "bearer", {"token": "abc"})
        credential = await store.resolve("cred-1")
    """

    def __init__(self, encryption: CredentialEncryption | None = None) -> None:
        """Initialize an empty store.

        Args:
            encryption: Encrypts secrets at rest; plain storage when None
        """
        self._encryption = encryption
        self._items: dict[str, tuple[CredentialType, dict[str, Any] | str]] = {}

    def add(
        self,
        credential_id: str,
        credential_type: CredentialType | str,
        data: dict[str, Any],
    ) -> None:
        """Store (or replace) a credential.

        Raises:
            CredentialServiceError: If the credential type is unknown
        """
        try:
            kind = CredentialType(credential_type)
        except ValueError as e:
            raise CredentialServiceError(
                f"Unknown credential type '{credential_type}'", "INVALID_CREDENTIAL_TYPE"
            ) from e

        stored: dict[str, Any] | str = dict(data)
        if self._encryption is not None:
            stored = self._encryption.encrypt(dict(data))
        self._items[credential_id] = (kind, stored)
        logger.info("credential_stored", credential_id=credential_id, type=kind.value)

    def remove(self, credential_id: str) -> None:
        """Forget a credential."""
        self._items.pop(credential_id, None)

    async def resolve(self, credential_id: str) -> ResolvedCredential | None:
        """Resolve and decrypt a credential.

        Raises:
            CredentialServiceError: If the stored secret cannot be decrypted
        """
        item = self._items.get(str(credential_id))
        if item is None:
            logger.warning("credential_not_found", credential_id=credential_id)
            return None

        kind, stored = item
        if isinstance(stored, str):
            if self._encryption is None:
                raise CredentialServiceError(
                    "Credential is encrypted but no key is configured", "DECRYPTION_FAILED"
                )
            try:
                data = self._encryption.decrypt(stored)
            except DecryptionError as e:
                logger.error("credential_decryption_failed", credential_id=credential_id)
                raise CredentialServiceError(
                    "Failed to decrypt credential", "DECRYPTION_FAILED"
                ) from e
        else:
            data = dict(stored)
        return ResolvedCredential(id=str(credential_id), type=kind, data=data)

    def __len__(self) -> int:
        return len(self._items)
