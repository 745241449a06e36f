"""
FHE Boot Attestation Events

Every state change of the attestation engine is published as an event:

    FirmwareRegistered(device)
    BootAttempt(device, stage_index)
    VerificationPassed(device, stage_index)
    VerificationFailed(device, stage_index)
    ThresholdUpdated(value)

Events carry identifiers and the plaintext threshold only, never ciphertext
handles or evidence values.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class EventType(str, Enum):
    """Kinds of attestation events."""
    FIRMWARE_REGISTERED = "FirmwareRegistered"
    BOOT_ATTEMPT = "BootAttempt"
    VERIFICATION_PASSED = "VerificationPassed"
    VERIFICATION_FAILED = "VerificationFailed"
    THRESHOLD_UPDATED = "ThresholdUpdated"


@dataclass(frozen=True)
class AttestationEvent:
    """Immutable record of one emitted event."""
    event_type: EventType
    device: Optional[str] = None
    stage_index: Optional[int] = None
    value: Optional[int] = None
    sequence: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "device": self.device,
            "stage_index": self.stage_index,
            "value": self.value,
            "sequence": self.sequence,
            "timestamp": self.timestamp.isoformat().replace("+00:00", "Z"),
        }


class EventSink(ABC):
    """
    Abstract destination for attestation events.

    Implementations must preserve emission order.
    """

    @abstractmethod
    def emit(self, event: AttestationEvent):
        """Record an event."""
        pass

    @abstractmethod
    def query(
        self,
        event_type: Optional[EventType] = None,
        device: Optional[str] = None
    ) -> List[AttestationEvent]:
        """Query recorded events in emission order."""
        pass


class InMemoryEventLog(EventSink):
    """
    In-memory event log for development/testing.

    WARNING: Not suitable for production.
    - Not persistent
    - Not tamper-evident
    """

    def __init__(self, max_events: int = 10000):
        self._events: List[AttestationEvent] = []
        self._lock = threading.Lock()
        self._max_events = max_events

    def emit(self, event: AttestationEvent):
        with self._lock:
            self._events.append(event)
            if len(self._events) > self._max_events:
                self._events = self._events[-self._max_events:]

    def query(
        self,
        event_type: Optional[EventType] = None,
        device: Optional[str] = None
    ) -> List[AttestationEvent]:
        with self._lock:
            events = self._events[:]

        if event_type:
            events = [e for e in events if e.event_type == event_type]
        if device is not None:
            events = [e for e in events if e.device == device]
        return events

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
