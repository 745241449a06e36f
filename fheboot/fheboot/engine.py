"""
FHE Boot Attestation Engine

Evaluates encrypted boot evidence against a device's encrypted reference
profile and records the outcome in the device's boot history.

Protocol (two-phase):

    1. verify_boot_stage()
       Score each component in the ciphertext domain:
           select(eq(checksum, ref.checksum), 1, 0)
         + select(eq(size, ref.size), 1, 0)
         + select(gt(version, 0), 1, 0)
       Sum the three component scores (0..9, still encrypted) and append a
       PENDING stage. The homomorphic threshold comparison is computed and
       kept as an opaque hint; nothing branches on it.

    2. request_boot_status_decryption() -> request_id
       deliver_decryption(request_id, cleartext, proof)
       The oracle callback is the only path that decides a stage. A stage
       passes when score > threshold, where threshold is the value in effect
       when the stage was appended.

Ledger reads and writes run under one re-entrant lock, so no two operations
interleave partial effects. Homomorphic scoring talks to the Encrypted Value
Service outside that lock; it only reads a snapshot of the reference profile
and threshold. Events reach the sink before the ledger changes, so a sink
failure leaves the ledger as it was.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import (
    EncryptedValueServiceError,
    InvalidProof,
    NoTrustedReference,
    UnknownRequest,
)
from .events import AttestationEvent, EventSink, EventType, InMemoryEventLog
from .evs import EncryptedValueService
from .gate import AuthorizationGate
from .ledger import (
    BootHistory,
    DeviceSummary,
    PendingDecryptionRequest,
    PendingRequestTable,
    ReferenceProfile,
    ReferenceStore,
    StageDecision,
    StageStatus,
)
from .proofs import decode_cleartext, key_fingerprint, verify_proof
from .types import BootEvidence, CiphertextHandle, ComponentEvidence, ComponentName, HandleLike, coerce_handle

log = logging.getLogger("fheboot.engine")

# score > 8 means all nine checks matched
DEFAULT_THRESHOLD = 8

EventSubscriber = Callable[[AttestationEvent], Any]


@dataclass
class EngineConfig:
    """
    Construction-time configuration of an attestation engine.

    oracle_verify_key_b64 defaults to the key advertised by the Encrypted
    Value Service when omitted. oracle_verify_key_source, when given, is
    called on every callback instead, so a rotated key takes effect without
    rebuilding the engine.
    """
    admin_identity: str
    initial_threshold: int = DEFAULT_THRESHOLD
    oracle_verify_key_b64: Optional[str] = None
    oracle_verify_key_source: Optional[Callable[[], Optional[str]]] = None

    def __post_init__(self):
        if not self.admin_identity or not isinstance(self.admin_identity, str):
            raise ValueError("admin_identity must be a non-empty string")
        _check_threshold(self.initial_threshold)


@dataclass(frozen=True)
class CallbackResult:
    """Outcome of an accepted oracle callback."""
    request_id: str
    device: str
    stage_index: int
    decision: StageDecision
    applied: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "device": self.device,
            "stage_index": self.stage_index,
            "decision": self.decision.value,
            "applied": self.applied,
        }


def _check_threshold(value: Any):
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise ValueError("threshold must be a non-negative integer")


def _fingerprint(verify_key_b64: Optional[str]) -> str:
    return key_fingerprint(verify_key_b64) if verify_key_b64 else "unset"


class AttestationEngine:
    """
    Encrypted boot attestation state machine.

    Usage:
        evs = InMemoryEncryptedValueService()
        engine = AttestationEngine(evs, EngineConfig(admin_identity="admin"))

        engine.register_trusted_firmware("admin", "dev-1", c, s, v)
        index = engine.verify_boot_stage("dev-1", "dev-1", evidence)
        request_id = engine.request_boot_status_decryption("dev-1", "dev-1", index)

        # later, driven by the Encrypted Value Service
        engine.deliver_decryption(request_id, cleartext, proof)
    """

    def __init__(
        self,
        evs: EncryptedValueService,
        config: EngineConfig,
        event_sink: Optional[EventSink] = None
    ):
        self.evs = evs
        self.config = config
        self.gate = AuthorizationGate(config.admin_identity)
        self.event_sink = event_sink if event_sink is not None else InMemoryEventLog()
        self._references = ReferenceStore()
        self._history = BootHistory()
        self._pending = PendingRequestTable()
        self._threshold = config.initial_threshold
        self._oracle_key_source = config.oracle_verify_key_source
        self._oracle_verify_key_b64 = None
        if self._oracle_key_source is None:
            self._oracle_verify_key_b64 = config.oracle_verify_key_b64 or evs.oracle_verify_key()
        self._subscribers: List[EventSubscriber] = []
        self._sequence = 0
        self._lock = threading.RLock()
        log.info(
            "attestation engine ready (threshold=%d, oracle key %s)",
            self._threshold, _fingerprint(self.oracle_verify_key_b64)
        )

    # -- events ---------------------------------------------------------

    def subscribe(self, subscriber: EventSubscriber):
        """Call subscriber(event) for every event emitted from now on."""
        with self._lock:
            self._subscribers.append(subscriber)

    def _record(
        self,
        event_type: EventType,
        device: Optional[str] = None,
        stage_index: Optional[int] = None,
        value: Optional[int] = None
    ) -> AttestationEvent:
        """
        Write the next event to the sink. Sink errors propagate and the
        sequence number is not consumed; callers change the ledger only
        after this returns.
        """
        event = AttestationEvent(
            event_type=event_type,
            device=device,
            stage_index=stage_index,
            value=value,
            sequence=self._sequence + 1,
        )
        self.event_sink.emit(event)
        self._sequence = event.sequence
        return event

    def _publish(self, event: AttestationEvent):
        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception:
                log.exception("event subscriber failed on %s", event.event_type.value)

    # -- administration ---------------------------------------------------

    def register_trusted_firmware(
        self,
        caller: str,
        device: str,
        checksum: HandleLike,
        size: HandleLike,
        version: HandleLike
    ) -> ReferenceProfile:
        """
        Register (or replace) the encrypted reference profile of a device.

        Raises:
            Unauthorized: caller is not the administrator
            InvalidCiphertext: any of the three handles is missing
        """
        with self._lock:
            self.gate.require_admin(caller)
            if not device:
                raise ValueError("device identity must not be empty")
            profile = ReferenceProfile(
                checksum=coerce_handle(checksum, "checksum"),
                size=coerce_handle(size, "size"),
                version=coerce_handle(version, "version"),
            )
            event = self._record(EventType.FIRMWARE_REGISTERED, device=device)
            self._references.put(device, profile)
            log.info("trusted firmware registered for %s", device)
            self._publish(event)
            return profile

    def update_verification_threshold(self, caller: str, new_value: int):
        """
        Replace the verification threshold. Stages already appended keep the
        threshold they were recorded with.

        Raises:
            Unauthorized: caller is not the administrator
        """
        with self._lock:
            self.gate.require_admin(caller)
            _check_threshold(new_value)
            event = self._record(EventType.THRESHOLD_UPDATED, value=new_value)
            previous = self._threshold
            self._threshold = new_value
            log.info("verification threshold changed %d -> %d", previous, new_value)
            self._publish(event)

    @property
    def threshold(self) -> int:
        with self._lock:
            return self._threshold

    @property
    def oracle_verify_key_b64(self) -> Optional[str]:
        """Key that authenticates oracle callbacks right now."""
        if self._oracle_key_source is not None:
            return self._oracle_key_source()
        return self._oracle_verify_key_b64

    # -- submission -------------------------------------------------------

    def _score_component(
        self,
        component: ComponentEvidence,
        profile: ReferenceProfile,
        one: CiphertextHandle,
        zero: CiphertextHandle
    ) -> CiphertextHandle:
        evs = self.evs
        checksum_match = evs.select(evs.eq(component.checksum, profile.checksum), one, zero)
        size_match = evs.select(evs.eq(component.size, profile.size), one, zero)
        # any supplied version counts; versions are not pinned
        version_present = evs.select(evs.gt(component.version, zero), one, zero)
        return evs.add(evs.add(checksum_match, size_match), version_present)

    def _score(
        self,
        evidence: BootEvidence,
        profile: ReferenceProfile,
        threshold: int
    ) -> Tuple[CiphertextHandle, CiphertextHandle]:
        """Encrypted overall score and encrypted (score > threshold) hint."""
        one = self.evs.encrypt(1)
        zero = self.evs.encrypt(0)
        scores = [self._score_component(evidence.component(name), profile, one, zero)
                  for name in ComponentName]
        overall = self.evs.add(self.evs.add(scores[0], scores[1]), scores[2])
        return overall, self.evs.gt(overall, self.evs.encrypt(threshold))

    def verify_boot_stage(self, caller: str, device: str, evidence: Any) -> int:
        """
        Score encrypted boot evidence and append it as a new stage.

        The Encrypted Value Service is called without holding the engine
        lock, against the profile and threshold current when the call began.
        The stage index is assigned at append time.

        Args:
            caller: identity of the submitting device
            device: device the evidence belongs to (must equal caller)
            evidence: BootEvidence, or a mapping of component name to
                      {"checksum", "size", "version"} handles

        Returns:
            The new stage index

        Raises:
            Unauthorized: caller is not the device
            InvalidCiphertext: any of the nine handles is missing
            NoTrustedReference: no reference profile registered for device
        """
        with self._lock:
            self.gate.require_self(caller, device)
            evidence = BootEvidence.coerce(evidence)
            profile = self._references.get(device)
            if profile is None:
                raise NoTrustedReference(f"no trusted firmware registered for {device}", device=device)
            threshold = self._threshold

        overall, pass_hint = self._score(evidence, profile, threshold)

        with self._lock:
            event = self._record(
                EventType.BOOT_ATTEMPT, device=device, stage_index=self._history.count(device)
            )
            record = self._history.append(
                device, evidence, overall, threshold, encrypted_pass_hint=pass_hint
            )
            log.info("boot stage %d appended for %s", record.stage_index, device)
            self._publish(event)
            return record.stage_index

    # -- asynchronous decryption -----------------------------------------

    def request_boot_status_decryption(self, caller: str, device: str, stage_index: int) -> str:
        """
        Ask the Encrypted Value Service to decrypt a stage's overall score.

        Returns immediately with the request id. The stage is decided when
        the matching deliver_decryption() call arrives. The lock is held
        across the request so a callback cannot overtake the pending entry.

        Raises:
            Unauthorized: caller is not the device
            InvalidStage: stage_index out of range
        """
        with self._lock:
            self.gate.require_self(caller, device)
            record = self._history.get(device, stage_index)
            request_id = self.evs.request_decryption(
                record.encrypted_overall_score, self.deliver_decryption
            )
            try:
                self._pending.add(PendingDecryptionRequest(
                    request_id=request_id, device=device, stage_index=stage_index
                ))
            except ValueError as e:
                raise EncryptedValueServiceError(str(e), request_id=request_id) from e
            log.info("decryption requested for %s stage %d (%s)", device, stage_index, request_id)
            return request_id

    def deliver_decryption(self, request_id: str, cleartext: bytes, proof: str) -> CallbackResult:
        """
        Oracle callback: finalize a stage from a signed decryption result.

        Nothing changes unless the whole callback succeeds: a rejected proof,
        an unknown request or a failing event sink leave the request pending
        and the stage as it was.

        Raises:
            InvalidProof: proof does not authenticate (request_id, cleartext),
                          or cleartext is malformed; the request stays pending
            UnknownRequest: no pending request with this id
        """
        with self._lock:
            if not verify_proof(request_id, cleartext, proof, self.oracle_verify_key_b64):
                log.warning("rejected decryption callback %s: bad proof", request_id)
                raise InvalidProof("proof does not authenticate decryption result", request_id=request_id)
            try:
                score = decode_cleartext(cleartext)
            except ValueError as e:
                log.warning("rejected decryption callback %s: %s", request_id, e)
                raise InvalidProof(str(e), request_id=request_id) from e

            pending = self._pending.get(request_id)
            if pending is None:
                raise UnknownRequest(request_id)
            record = self._history.get(pending.device, pending.stage_index)
            passed = score > record.threshold

            event = None
            if not record.is_decided:
                event_type = EventType.VERIFICATION_PASSED if passed else EventType.VERIFICATION_FAILED
                event = self._record(event_type, device=pending.device, stage_index=pending.stage_index)

            self._pending.pop(request_id)
            applied = self._history.finalize(pending.device, pending.stage_index, passed)

            if applied:
                log.info(
                    "stage %d of %s %s",
                    pending.stage_index, pending.device, record.decision.value.lower()
                )
                self._publish(event)
            else:
                log.info(
                    "stage %d of %s already %s; callback %s ignored",
                    pending.stage_index, pending.device, record.decision.value.lower(), request_id
                )

            return CallbackResult(
                request_id=request_id,
                device=pending.device,
                stage_index=pending.stage_index,
                decision=record.decision,
                applied=applied,
            )

    def pending_request_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def is_request_pending(self, request_id: str) -> bool:
        with self._lock:
            return request_id in self._pending

    # -- reads ------------------------------------------------------------

    def has_reference(self, device: str) -> bool:
        with self._lock:
            return device in self._references

    def get_stage_count(self, device: str) -> int:
        with self._lock:
            return self._history.count(device)

    def get_stage_status(self, device: str, stage_index: int) -> StageStatus:
        """
        Raises:
            InvalidStage: stage_index out of range
        """
        with self._lock:
            return StageStatus.from_record(device, self._history.get(device, stage_index))

    def list_stage_statuses(self, device: str) -> List[StageStatus]:
        with self._lock:
            return [StageStatus.from_record(device, r) for r in self._history.records(device)]

    def get_device_summary(self, device: str) -> DeviceSummary:
        with self._lock:
            decisions = [r.decision for r in self._history.records(device)]
            return DeviceSummary(
                device=device,
                has_reference=device in self._references,
                stage_count=len(decisions),
                passed=decisions.count(StageDecision.PASSED),
                failed=decisions.count(StageDecision.FAILED),
                pending=decisions.count(StageDecision.PENDING),
            )
