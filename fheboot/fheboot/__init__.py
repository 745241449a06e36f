"""
FHE Boot Attestation

Attests that a device's bootloader, kernel and root filesystem match a
trusted reference without revealing the checksums, sizes or versions being
compared. Comparisons run over ciphertexts in an external homomorphic
Encrypted Value Service; only an aggregate score is ever decrypted, and only
through an authenticated asynchronous oracle callback.

    stage passes  <=>  decrypted overall score > threshold at submission

Usage:
    from fheboot import (
        AttestationEngine,
        EngineConfig,
        InMemoryEncryptedValueService,
    )

    evs = InMemoryEncryptedValueService()
    engine = AttestationEngine(evs, EngineConfig(admin_identity="admin", initial_threshold=5))

    engine.register_trusted_firmware(
        "admin", "dev-1", evs.encrypt(42), evs.encrypt(1024), evs.encrypt(3)
    )

    component = {"checksum": evs.encrypt(42), "size": evs.encrypt(1024), "version": evs.encrypt(3)}
    index = engine.verify_boot_stage(
        "dev-1", "dev-1", {"bootloader": component, "kernel": component, "rootfs": component}
    )

    engine.request_boot_status_decryption("dev-1", "dev-1", index)
    evs.deliver_pending()

    engine.get_stage_status("dev-1", index).all_verified   # True
"""

__version__ = "1.0.0"

# Types
from .types import (
    CiphertextHandle,
    ComponentName,
    ComponentEvidence,
    BootEvidence,
    coerce_handle,
)

# Errors
from .errors import (
    ErrorCode,
    AttestationError,
    Unauthorized,
    NoTrustedReference,
    InvalidCiphertext,
    InvalidStage,
    InvalidProof,
    UnknownRequest,
    EncryptedValueServiceError,
)

# Canonicalization
from .canonicalization import canonicalize, canonicalize_str, sha256_hex

# Oracle proofs
from .proofs import (
    OracleKeyPair,
    OracleSigner,
    generate_oracle_key,
    verify_proof,
    encode_cleartext,
    decode_cleartext,
    key_fingerprint,
)

# Encrypted Value Service
from .evs import (
    EncryptedValueService,
    InMemoryEncryptedValueService,
    HttpEncryptedValueService,
    DeliveryOutcome,
)

# Events
from .events import (
    EventType,
    AttestationEvent,
    EventSink,
    InMemoryEventLog,
)

# Ledger
from .ledger import (
    StageDecision,
    ReferenceProfile,
    FirmwareComponent,
    BootStageRecord,
    StageStatus,
    DeviceSummary,
    ReferenceStore,
    BootHistory,
    PendingDecryptionRequest,
    PendingRequestTable,
)

# Engine
from .gate import AuthorizationGate
from .engine import (
    AttestationEngine,
    EngineConfig,
    CallbackResult,
    DEFAULT_THRESHOLD,
)


__all__ = [
    "__version__",

    # Types
    "CiphertextHandle",
    "ComponentName",
    "ComponentEvidence",
    "BootEvidence",
    "coerce_handle",

    # Errors
    "ErrorCode",
    "AttestationError",
    "Unauthorized",
    "NoTrustedReference",
    "InvalidCiphertext",
    "InvalidStage",
    "InvalidProof",
    "UnknownRequest",
    "EncryptedValueServiceError",

    # Canonicalization
    "canonicalize",
    "canonicalize_str",
    "sha256_hex",

    # Proofs
    "OracleKeyPair",
    "OracleSigner",
    "generate_oracle_key",
    "verify_proof",
    "encode_cleartext",
    "decode_cleartext",
    "key_fingerprint",

    # Encrypted Value Service
    "EncryptedValueService",
    "InMemoryEncryptedValueService",
    "HttpEncryptedValueService",
    "DeliveryOutcome",

    # Events
    "EventType",
    "AttestationEvent",
    "EventSink",
    "InMemoryEventLog",

    # Ledger
    "StageDecision",
    "ReferenceProfile",
    "FirmwareComponent",
    "BootStageRecord",
    "StageStatus",
    "DeviceSummary",
    "ReferenceStore",
    "BootHistory",
    "PendingDecryptionRequest",
    "PendingRequestTable",

    # Engine
    "AuthorizationGate",
    "AttestationEngine",
    "EngineConfig",
    "CallbackResult",
    "DEFAULT_THRESHOLD",
]
