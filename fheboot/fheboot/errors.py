"""
FHE Boot Attestation Errors

Every failure of an attestation operation is fatal to that call and leaves
the ledger untouched. Each error carries a stable code so that outer layers
(HTTP service, CLI) can map it without string matching.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Failure codes for attestation operations."""
    UNAUTHORIZED = "UNAUTHORIZED"
    NO_TRUSTED_REFERENCE = "NO_TRUSTED_REFERENCE"
    INVALID_CIPHERTEXT = "INVALID_CIPHERTEXT"
    INVALID_STAGE = "INVALID_STAGE"
    INVALID_PROOF = "INVALID_PROOF"
    UNKNOWN_REQUEST = "UNKNOWN_REQUEST"
    SERVICE_ERROR = "SERVICE_ERROR"


class AttestationError(Exception):
    """Base class for all attestation failures."""

    code: ErrorCode = ErrorCode.SERVICE_ERROR

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = details
        super().__init__(f"{self.code.value}: {message}")

    def to_dict(self) -> Dict[str, Any]:
        d = {"code": self.code.value, "message": self.message}
        if self.details:
            d["details"] = self.details
        return d


class Unauthorized(AttestationError):
    """Caller failed an authorization check."""
    code = ErrorCode.UNAUTHORIZED


class NoTrustedReference(AttestationError):
    """Scoring attempted for a device with no registered reference profile."""
    code = ErrorCode.NO_TRUSTED_REFERENCE


class InvalidCiphertext(AttestationError):
    """A required ciphertext handle is missing or malformed."""
    code = ErrorCode.INVALID_CIPHERTEXT

    def __init__(self, field: str, message: Optional[str] = None):
        self.field = field
        super().__init__(message or f"missing ciphertext handle for {field}", field=field)


class InvalidStage(AttestationError):
    """Stage index is out of range for the device's boot history."""
    code = ErrorCode.INVALID_STAGE

    def __init__(self, device: str, stage_index: int, stage_count: int):
        self.device = device
        self.stage_index = stage_index
        self.stage_count = stage_count
        super().__init__(
            f"stage {stage_index} out of range for device {device} ({stage_count} stages)",
            device=device,
            stage_index=stage_index,
            stage_count=stage_count,
        )


class InvalidProof(AttestationError):
    """Decryption callback proof did not authenticate the delivered result."""
    code = ErrorCode.INVALID_PROOF


class UnknownRequest(AttestationError):
    """Callback referenced a request id that is not pending."""
    code = ErrorCode.UNKNOWN_REQUEST

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"no pending decryption request {request_id}", request_id=request_id)


class EncryptedValueServiceError(AttestationError):
    """The Encrypted Value Service could not complete an operation."""
    code = ErrorCode.SERVICE_ERROR
