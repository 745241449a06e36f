"""
FHE Boot Attestation Ledger

State owned by the attestation engine:

- ReferenceStore: at most one encrypted reference profile per device
- BootHistory: append-only, per-device, gapless sequence of boot stages
- PendingRequestTable: decryption requests awaiting an oracle callback

Stage records are immutable once appended except for one transition,
BootHistory.finalize(), which moves a PENDING stage to PASSED (flipping all
three verified flags) or FAILED. There is no deletion path.

None of these classes lock. The engine serializes every operation.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from .errors import InvalidStage, UnknownRequest
from .types import BootEvidence, CiphertextHandle, ComponentEvidence, ComponentName


class StageDecision(str, Enum):
    """Finalization state of a boot stage."""
    PENDING = "PENDING"
    PASSED = "PASSED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class ReferenceProfile:
    """Trusted encrypted checksum, size and version for a device."""
    checksum: CiphertextHandle
    size: CiphertextHandle
    version: CiphertextHandle
    registered_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class FirmwareComponent:
    """One submitted firmware component and its verification flag."""
    checksum: CiphertextHandle
    size: CiphertextHandle
    version: CiphertextHandle
    verified: bool = False

    @classmethod
    def from_evidence(cls, evidence: ComponentEvidence) -> "FirmwareComponent":
        return cls(checksum=evidence.checksum, size=evidence.size, version=evidence.version)


@dataclass
class BootStageRecord:
    """
    One boot attestation attempt.

    threshold is the verification threshold in effect when the stage was
    appended; the stage is eventually decided against this value.
    """
    stage_index: int
    bootloader: FirmwareComponent
    kernel: FirmwareComponent
    rootfs: FirmwareComponent
    encrypted_overall_score: CiphertextHandle
    threshold: int
    timestamp: datetime
    encrypted_pass_hint: Optional[CiphertextHandle] = None
    decision: StageDecision = StageDecision.PENDING

    def component(self, name: ComponentName) -> FirmwareComponent:
        return getattr(self, name.value)

    @property
    def components(self) -> List[FirmwareComponent]:
        return [self.component(name) for name in ComponentName]

    @property
    def is_decided(self) -> bool:
        return self.decision != StageDecision.PENDING


@dataclass(frozen=True)
class StageStatus:
    """Plaintext view of a stage. Never carries ciphertexts."""
    device: str
    stage_index: int
    bootloader_verified: bool
    kernel_verified: bool
    rootfs_verified: bool
    timestamp: datetime
    decision: StageDecision

    @classmethod
    def from_record(cls, device: str, record: BootStageRecord) -> "StageStatus":
        return cls(
            device=device,
            stage_index=record.stage_index,
            bootloader_verified=record.bootloader.verified,
            kernel_verified=record.kernel.verified,
            rootfs_verified=record.rootfs.verified,
            timestamp=record.timestamp,
            decision=record.decision,
        )

    @property
    def all_verified(self) -> bool:
        return self.bootloader_verified and self.kernel_verified and self.rootfs_verified

    def to_dict(self) -> Dict[str, Any]:
        return {
            "device": self.device,
            "stage_index": self.stage_index,
            "bootloader_verified": self.bootloader_verified,
            "kernel_verified": self.kernel_verified,
            "rootfs_verified": self.rootfs_verified,
            "timestamp": self.timestamp.isoformat().replace("+00:00", "Z"),
            "decision": self.decision.value,
        }


@dataclass(frozen=True)
class DeviceSummary:
    """Per-device stage statistics."""
    device: str
    has_reference: bool
    stage_count: int
    passed: int
    failed: int
    pending: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "device": self.device,
            "has_reference": self.has_reference,
            "stage_count": self.stage_count,
            "passed": self.passed,
            "failed": self.failed,
            "pending": self.pending,
        }


class ReferenceStore:
    """Device identity -> ReferenceProfile. Registration replaces the whole profile."""

    def __init__(self):
        self._profiles: Dict[str, ReferenceProfile] = {}

    def put(self, device: str, profile: ReferenceProfile):
        self._profiles[device] = profile

    def get(self, device: str) -> Optional[ReferenceProfile]:
        return self._profiles.get(device)

    def __contains__(self, device: str) -> bool:
        return device in self._profiles

    def __len__(self) -> int:
        return len(self._profiles)


class BootHistory:
    """Append-only per-device stage records."""

    def __init__(self):
        self._stages: Dict[str, List[BootStageRecord]] = {}

    def count(self, device: str) -> int:
        return len(self._stages.get(device, ()))

    def append(
        self,
        device: str,
        evidence: BootEvidence,
        encrypted_overall_score: CiphertextHandle,
        threshold: int,
        encrypted_pass_hint: Optional[CiphertextHandle] = None,
        timestamp: Optional[datetime] = None
    ) -> BootStageRecord:
        """Append a new PENDING stage at index count(device)."""
        stages = self._stages.setdefault(device, [])
        record = BootStageRecord(
            stage_index=len(stages),
            bootloader=FirmwareComponent.from_evidence(evidence.bootloader),
            kernel=FirmwareComponent.from_evidence(evidence.kernel),
            rootfs=FirmwareComponent.from_evidence(evidence.rootfs),
            encrypted_overall_score=encrypted_overall_score,
            threshold=threshold,
            encrypted_pass_hint=encrypted_pass_hint,
            timestamp=timestamp or datetime.now(timezone.utc),
        )
        stages.append(record)
        return record

    def get(self, device: str, stage_index: int) -> BootStageRecord:
        """
        Raises:
            InvalidStage: if stage_index is not in [0, count(device))
        """
        stages = self._stages.get(device, [])
        if not isinstance(stage_index, int) or isinstance(stage_index, bool) \
                or stage_index < 0 or stage_index >= len(stages):
            raise InvalidStage(device, stage_index, len(stages))
        return stages[stage_index]

    def records(self, device: str) -> Iterator[BootStageRecord]:
        return iter(list(self._stages.get(device, ())))

    def finalize(self, device: str, stage_index: int, passed: bool) -> bool:
        """
        Decide a stage. The only mutation allowed on an appended stage.

        Returns:
            True if the stage moved out of PENDING
            False if it was already decided (nothing changes)
        """
        record = self.get(device, stage_index)
        if record.is_decided:
            return False
        if passed:
            for component in record.components:
                component.verified = True
            record.decision = StageDecision.PASSED
        else:
            record.decision = StageDecision.FAILED
        return True


@dataclass(frozen=True)
class PendingDecryptionRequest:
    """A decryption request waiting for its oracle callback."""
    request_id: str
    device: str
    stage_index: int
    requested_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class PendingRequestTable:
    """request_id -> PendingDecryptionRequest, each resolved at most once."""

    def __init__(self):
        self._requests: Dict[str, PendingDecryptionRequest] = {}

    def add(self, request: PendingDecryptionRequest):
        if request.request_id in self._requests:
            raise ValueError(f"duplicate request id {request.request_id}")
        self._requests[request.request_id] = request

    def get(self, request_id: str) -> Optional[PendingDecryptionRequest]:
        return self._requests.get(request_id)

    def pop(self, request_id: str) -> PendingDecryptionRequest:
        """
        Raises:
            UnknownRequest: if no request with this id is pending
        """
        try:
            return self._requests.pop(request_id)
        except (KeyError, TypeError):
            raise UnknownRequest(request_id) from None

    def __contains__(self, request_id: str) -> bool:
        return request_id in self._requests

    def __len__(self) -> int:
        return len(self._requests)
