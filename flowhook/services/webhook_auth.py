"""Webhook authentication.

Checks an inbound request against the authentication a trigger node
declares. ``auth`` selects where the secret travels (``header`` or
``query``); ``authType`` selects the scheme. All secret comparisons are
constant time.
"""

import base64
import binascii
from typing import Any

import structlog

from flowhook.core.encryption import constant_time_compare
from flowhook.models.execution import TriggerEvent
from flowhook.services.credential_service import CredentialLookup, CredentialServiceError

logger = structlog.get_logger()

# Auth types checked when a test-listen session is capturing
TEST_CHECKED_TYPES = frozenset({"bearer", "basic", "apiKey", "custom", "oauth2"})


def auth_required(config: dict[str, Any]) -> bool:
    """Whether a trigger configuration asks for authentication."""
    auth = config.get("auth")
    return bool(auth) and auth != "none"


def _strip_bearer(value: Any) -> str:
    return str(value or "").replace("Bearer ", "")


def _provided_token(event: TriggerEvent, location: str) -> str:
    if location == "header":
        return _strip_bearer(event.header("Authorization"))
    return str(event.query.get("token", event.query.get("access_token", "")) or "")


def _basic_pair(event: TriggerEvent, location: str) -> tuple[str, str] | None:
    if location != "header":
        return str(event.query.get("username", "")), str(event.query.get("password", ""))

    header = event.header("Authorization")
    if not header.startswith("Basic "):
        return None
    try:
        decoded = base64.b64decode(header[len("Basic "):], validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    username, _, password = decoded.partition(":")
    return username, password


async def _credential_token(
    credentials: CredentialLookup | None,
    credential_id: Any,
    keys: tuple[str, ...],
) -> str | None:
    """Expected token from a stored credential, or None when unusable."""
    if not credential_id:
        logger.warning("webhook_auth_credential_missing")
        return None
    if credentials is None:
        logger.warning("webhook_auth_no_credential_lookup", credential_id=credential_id)
        return None
    try:
        credential = await credentials.resolve(str(credential_id))
    except CredentialServiceError as e:
        logger.warning(
            "webhook_auth_credential_unreadable",
            credential_id=credential_id,
            error_code=e.error_code,
        )
        return None
    if credential is None:
        logger.warning("webhook_auth_credential_not_found", credential_id=credential_id)
        return None

    for key in keys:
        if credential.get(key):
            return _strip_bearer(credential.get(key))
    logger.warning("webhook_auth_token_missing", credential_id=credential_id)
    return None


async def validate_webhook_auth(
    event: TriggerEvent,
    config: dict[str, Any],
    credentials: CredentialLookup | None = None,
    *,
    test_mode: bool = False,
) -> bool:
    """Check a request against a trigger's authentication settings.

    Args:
        event: Inbound request
        config: Trigger configuration (``auth``, ``authType`` and the
            scheme's fields)
        credentials: Lookup for bearer and OAuth2 credentials
        test_mode: Test-listen rules: bearer may use the inline
            ``apiKeyValue`` and schemes without a test check pass

    Returns:
        True when the request is authenticated
    """
    auth_type = config.get("authType") or "bearer"
    location = config.get("auth") or "header"

    if test_mode and auth_type not in TEST_CHECKED_TYPES:
        return True

    if auth_type in ("bearer", "oauth2"):
        credential_id = config.get("credentialId")
        if auth_type == "bearer" and test_mode and not credential_id:
            expected: str | None = _strip_bearer(config.get("apiKeyValue"))
        else:
            keys = ("token", "headerValue") if auth_type == "bearer" else ("accessToken",)
            expected = await _credential_token(credentials, credential_id, keys)
        if not expected:
            return False
        return constant_time_compare(expected, _provided_token(event, location))

    if auth_type == "basic":
        expected_username = str(config.get("username") or "")
        expected_password = str(config.get("password") or "")
        pair = _basic_pair(event, location)
        if not expected_username or pair is None:
            return False
        return constant_time_compare(expected_username, pair[0]) & constant_time_compare(
            expected_password, pair[1]
        )

    if auth_type == "apiKey":
        key_name = str(config.get("apiKeyName") or "")
        expected_value = str(config.get("apiKeyValue") or "")
        if location == "header":
            provided = event.header(key_name) if key_name else ""
        else:
            provided = event.query.get(key_name, "")
        if not provided:
            provided = event.input(key_name, "")
        return bool(expected_value) and constant_time_compare(expected_value, str(provided))

    if auth_type == "custom":
        header_name = str(config.get("customHeaderName") or "")
        expected_value = str(config.get("customHeaderValue") or "")
        if location == "header":
            provided = event.header(header_name) if header_name else ""
        else:
            provided = event.query.get(header_name, "")
        return bool(expected_value) and constant_time_compare(expected_value, str(provided))

    if auth_type == "digest":
        # Only the query form is supported; header digests carry no plain secret
        if location == "header":
            return False
        expected_username = str(config.get("username") or "")
        expected_password = str(config.get("password") or "")
        if not expected_username or not expected_password:
            return False
        return constant_time_compare(
            expected_username, str(event.query.get("username", ""))
        ) & constant_time_compare(expected_password, str(event.query.get("password", "")))

    logger.warning("webhook_auth_type_unknown", auth_type=auth_type)
    return False
