"""
Logging configuration for the FHE boot attestation service.

Every line is one JSON object (in prod) carrying the HTTP request id, so an
attestation can be followed from submission through the oracle callback.
"""

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional, TextIO

# HTTP request id of the request being served
request_id_var: ContextVar[str] = ContextVar('request_id', default='')

SEVERITY_LEVELS = {
    "low": logging.INFO,
    "medium": logging.WARNING,
    "high": logging.ERROR,
    "critical": logging.CRITICAL,
}

# chatty third-party loggers
_QUIET_LOGGERS = ("urllib3", "httpx")


class StructuredFormatter(logging.Formatter):
    """JSON line formatter. Audit fields attached by AuditLogger land at top level."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry = {
            "ts": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.levelno >= logging.WARNING:
            entry["where"] = f"{record.module}.{record.funcName}:{record.lineno}"

        request_id = request_id_var.get()
        if request_id:
            entry["request_id"] = request_id

        audit = getattr(record, "audit", None)
        if audit:
            entry.update(audit)

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class AuditLogger:
    """
    Audit trail of attestation operations.

    Records identifiers and decisions only. Ciphertext handles, cleartexts
    and proofs never reach the log.
    """

    def __init__(self, name: str = "fheboot.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, message: str, **fields) -> None:
        self._logger.log(level, "%s: %s", event_type, message,
                         extra={"audit": {"event_type": event_type, **fields}})

    def firmware_registered(self, device: str, caller: str) -> None:
        """Log a reference profile registration."""
        self._log(logging.INFO, "FIRMWARE_REGISTERED",
                  f"trusted firmware registered for {device}",
                  device=device, caller=caller)

    def threshold_updated(self, value: int, caller: str) -> None:
        self._log(logging.INFO, "THRESHOLD_UPDATED",
                  f"verification threshold set to {value}",
                  value=value, caller=caller)

    def boot_attempt(self, device: str, stage_index: int) -> None:
        """Log an encrypted boot stage submission."""
        self._log(logging.INFO, "BOOT_ATTEMPT",
                  f"boot stage {stage_index} submitted by {device}",
                  device=device, stage_index=stage_index)

    def decryption_requested(self, device: str, stage_index: int, decryption_request_id: str) -> None:
        self._log(logging.INFO, "DECRYPTION_REQUESTED",
                  f"decryption requested for {device} stage {stage_index}",
                  device=device, stage_index=stage_index,
                  decryption_request_id=decryption_request_id)

    def decision(self, device: str, stage_index: int, decision: str, applied: bool) -> None:
        """Log a finalized (or already final) stage decision."""
        level = logging.INFO if decision == "PASSED" else logging.WARNING
        self._log(level, "STAGE_DECISION",
                  f"stage {stage_index} of {device}: {decision}",
                  device=device, stage_index=stage_index,
                  decision=decision, applied=applied)

    def callback_rejected(self, decryption_request_id: str, reason: str) -> None:
        """Log an oracle callback that was refused."""
        self._log(logging.WARNING, "CALLBACK_REJECTED",
                  f"oracle callback rejected: {reason}",
                  decryption_request_id=decryption_request_id, reason=reason)

    def security_event(self, event: str, severity: str = "medium", **details) -> None:
        level = SEVERITY_LEVELS.get(severity, logging.WARNING)
        self._log(level, "SECURITY_EVENT", event,
                  security_event=event, severity=severity, **details)

    def rate_limit_exceeded(self, client_id: str, endpoint: str) -> None:
        self._log(logging.WARNING, "RATE_LIMIT_EXCEEDED",
                  f"{client_id} over limit on {endpoint}",
                  client_id=client_id, endpoint=endpoint)


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    stream: Optional[TextIO] = None
) -> None:
    """
    Install a single root handler.

    Args:
        level: Log level name
        json_format: JSON lines (prod) or plain text (dev)
        stream: Output stream (default stdout)
    """
    root = logging.getLogger()
    root.setLevel(logging.getLevelName(level.upper()))

    for handler in list(root.handlers):
        if getattr(handler, "_fheboot", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler._fheboot = True
    if json_format:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)-7s %(name)s: %(message)s'
        ))
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind a request id (generated when absent) to the current context."""
    request_id = request_id or uuid.uuid4().hex
    request_id_var.set(request_id)
    return request_id


audit_log = AuditLogger()
