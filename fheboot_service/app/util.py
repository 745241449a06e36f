"""
Utility functions for the FHE boot attestation service.

Provides encoding and hashing utilities.
"""

import base64

from fheboot.canonicalization import canonicalize, sha256_hex

__all__ = ["canonicalize", "sha256_hex", "b64e", "chain_entry_hash"]


def b64e(b: bytes) -> str:
    """Base64 encode bytes to string."""
    return base64.b64encode(b).decode('ascii')


def chain_entry_hash(prev_entry_hash, payload_hash: str) -> str:
    """Hash-chain link: sha256(prev_entry_hash || payload_hash)."""
    return sha256_hex((prev_entry_hash or "").encode("utf-8") + payload_hash.encode("utf-8"))
