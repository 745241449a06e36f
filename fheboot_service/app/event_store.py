"""
Persistent, tamper-evident attestation event log.

Each event is stored as canonical JSON. Entries are linked by
entry_hash = sha256(prev_entry_hash || payload_hash), so editing or
dropping any row breaks every later link.
"""

import json
import logging
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional

from fheboot.events import AttestationEvent, EventSink, EventType

from . import db
from .util import canonicalize, chain_entry_hash, sha256_hex

log = logging.getLogger("fheboot.service.events")


def _event_from_row(row: Dict[str, Any]) -> AttestationEvent:
    data = json.loads(row["event_json"])
    return AttestationEvent(
        event_type=EventType(data["event_type"]),
        device=data.get("device"),
        stage_index=data.get("stage_index"),
        value=data.get("value"),
        sequence=data.get("sequence", 0),
        timestamp=datetime.fromisoformat(data["timestamp"].replace("Z", "+00:00")),
    )


class SqliteEventLog(EventSink):
    """Event sink backed by the event_log table."""

    def __init__(self):
        # chain link and insert must not interleave between threads
        self._lock = threading.Lock()

    def emit(self, event: AttestationEvent):
        body = event.to_dict()
        payload = canonicalize(body)
        payload_hash = sha256_hex(payload)
        with self._lock:
            prev = db.latest_entry_hash()
            entry_hash = chain_entry_hash(prev, payload_hash)
            db.append_event(
                event_type=event.event_type.value,
                device=event.device,
                stage_index=event.stage_index,
                value=event.value,
                event_sequence=event.sequence,
                emitted_at=body["timestamp"],
                payload_hash=payload_hash,
                prev_entry_hash=prev,
                entry_hash=entry_hash,
                event_json=payload.decode("utf-8"),
            )
        log.debug("event %s appended (%s)", event.event_type.value, entry_hash[:12])

    def query(
        self,
        event_type: Optional[EventType] = None,
        device: Optional[str] = None
    ) -> List[AttestationEvent]:
        rows = db.query_events(event_type.value if event_type else None, device)
        return [_event_from_row(row) for row in rows]

    def export(self) -> List[Dict[str, Any]]:
        return db.export_event_log()


def verify_chain(entries: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Recompute every link of an exported event log.

    Returns:
        {"valid": bool, "entries": n, "failed_at": seq or None, "reason": str or None}
    """
    prev = None
    for entry in entries:
        payload_hash = sha256_hex(entry["event_json"].encode("utf-8"))
        if payload_hash != entry["payload_hash"]:
            return {"valid": False, "entries": len(entries), "failed_at": entry["seq"],
                    "reason": "payload hash mismatch"}
        if entry["prev_entry_hash"] != prev:
            return {"valid": False, "entries": len(entries), "failed_at": entry["seq"],
                    "reason": "previous entry hash mismatch"}
        if entry["entry_hash"] != chain_entry_hash(prev, payload_hash):
            return {"valid": False, "entries": len(entries), "failed_at": entry["seq"],
                    "reason": "chain mismatch"}
        prev = entry["entry_hash"]
    return {"valid": True, "entries": len(entries), "failed_at": None, "reason": None}
