"""
FHE Boot Attestation Authorization Gate

Two pure checks evaluated before any state mutation:

- require_admin: caller must be the configured administrator
- require_self:  caller must be the device whose data is touched

Identities are opaque strings supplied by the transport layer.
"""

from .errors import Unauthorized


class AuthorizationGate:
    """Caller checks for attestation operations."""

    def __init__(self, admin_identity: str):
        if not admin_identity:
            raise ValueError("admin_identity must not be empty")
        self.admin_identity = admin_identity

    def is_admin(self, caller: str) -> bool:
        return bool(caller) and caller == self.admin_identity

    def require_admin(self, caller: str):
        if not self.is_admin(caller):
            raise Unauthorized("administrator privileges required", caller=caller)

    def require_self(self, caller: str, device: str):
        # Devices only act for themselves; the admin gets no exemption.
        if not caller or not device or caller != device:
            raise Unauthorized("caller may only act for its own device", caller=caller, device=device)
