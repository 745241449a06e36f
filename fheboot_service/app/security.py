"""
Input validation for the FHE boot attestation service.

Identities, handle ids and oracle callback fields arrive as untrusted
strings. Everything is checked here before it reaches the engine, so the
engine only ever sees well-formed tokens.
"""

import re
from typing import Any, Dict, Mapping, Optional

IDENTITY_RE = re.compile(r'^[A-Za-z0-9_.:-]{1,128}$')
HANDLE_ID_RE = re.compile(r'^[A-Za-z0-9_.:+/=-]{1,256}$')
REQUEST_ID_RE = re.compile(r'^[A-Za-z0-9_-]{1,128}$')
HEX_RE = re.compile(r'^(?:[0-9a-fA-F]{2})+$')

# callback fields that must not be logged in full
_SECRET_CALLBACK_FIELDS = ("cleartext", "proof")


class ValidationError(Exception):
    """A request field failed validation."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


def _token(value: Any, field: str, pattern: "re.Pattern", what: str) -> str:
    if not isinstance(value, str):
        raise ValidationError(field, "must be a string")
    value = value.strip()
    if not value:
        raise ValidationError(field, "must not be empty")
    if not pattern.match(value):
        raise ValidationError(field, f"is not a valid {what}")
    return value


def validate_identity(value: Any, field: str) -> str:
    """Caller or device identity: account address, serial or key id."""
    return _token(value, field, IDENTITY_RE, "identity")


def validate_handle_id(value: Optional[str], field: str) -> Optional[str]:
    """
    Wire form of a ciphertext handle.

    Absent or blank handles are passed through so that the engine reports
    them as InvalidCiphertext naming the missing component field.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return _token(value, field, HANDLE_ID_RE, "ciphertext handle")


def validate_request_id(value: Any) -> str:
    return _token(value, "request_id", REQUEST_ID_RE, "request id")


def parse_cleartext(value: Any) -> bytes:
    """
    Hex cleartext of an oracle callback.

    Only the encoding is checked here. A result of the wrong size is the
    engine's call (it is rejected as an invalid proof).
    """
    return bytes.fromhex(_token(value, "cleartext", HEX_RE, "hex byte string"))


def validate_threshold(value: Any) -> int:
    """Thresholds are non-negative integers (scores range 0..9)."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError("value", "must be an integer")
    if value < 0:
        raise ValidationError("value", "must not be negative")
    return value


def extract_client_id(headers: Mapping[str, str]) -> str:
    """
    Rate limiting key: the caller identity when present, otherwise the
    first forwarded address.
    """
    caller = headers.get("x-caller-identity", "").strip()
    if caller:
        return f"caller:{caller[:64]}"
    forwarded = headers.get("x-forwarded-for", "").split(",")[0].strip()
    if forwarded:
        return f"ip:{forwarded}"
    return "anonymous"


def redact_callback(body: Dict[str, Any]) -> Dict[str, Any]:
    """Callback body safe for logs: request id kept, result and proof shortened."""
    redacted = dict(body)
    for field in _SECRET_CALLBACK_FIELDS:
        value = redacted.get(field)
        if isinstance(value, str) and len(value) > 12:
            redacted[field] = f"{value[:6]}..{value[-4:]}"
        elif value is not None:
            redacted[field] = "[redacted]"
    return redacted
