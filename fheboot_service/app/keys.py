"""
Key management module for the FHE boot attestation service.

The oracle signing key belongs to the Encrypted Value Service. This service
only needs it when it runs the in-process backend; otherwise it reads the
oracle verify key from the trust store.
"""

import json
import os
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from fheboot.proofs import OracleSigner, generate_oracle_key

from .util import b64e


class FileOracleKeyProvider:
    """
    File-based oracle keys.

    Trust store layout:
        {"trust_store_id": ..., "oracle_keys": {kid: public_key_b64}}

    Thread-safe with modification time caching of the trust store.
    """

    def __init__(self, signing_key_path: str, trust_store_path: str):
        self._signing_key_path = signing_key_path
        self._trust_store_path = trust_store_path
        self._lock = threading.RLock()
        self._trust_store_cache: Optional[Dict[str, Any]] = None
        self._trust_store_mtime: float = 0

    def get_trust_store(self) -> Dict[str, Any]:
        """
        Get trust store with file modification time caching.
        Reloads whenever the file modification time changes.
        """
        with self._lock:
            try:
                mtime = os.path.getmtime(self._trust_store_path)
                if self._trust_store_cache is None or mtime != self._trust_store_mtime:
                    with open(self._trust_store_path, "r", encoding="utf-8") as f:
                        self._trust_store_cache = json.load(f)
                    self._trust_store_mtime = mtime
            except FileNotFoundError:
                if self._trust_store_cache is None:
                    raise

            return self._trust_store_cache

    def oracle_verify_key(self, kid: Optional[str] = None) -> Optional[str]:
        """Public key for kid, or the only/first oracle key when kid is None."""
        keys = self.get_trust_store().get("oracle_keys", {})
        if kid is not None:
            return keys.get(kid)
        return keys[min(keys)] if keys else None

    def load_signer(self) -> OracleSigner:
        """Oracle signer for the in-process backend."""
        with open(self._signing_key_path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        return OracleSigner.from_private_key_b64(raw["private_key_b64"], key_id=raw["kid"])


def generate_oracle_key_files(
    key_path: str,
    trust_store_path: str,
    kid: str = "oracle-01"
) -> str:
    """
    Write a fresh oracle signing key and a trust store naming its public half.

    Returns:
        The public key (base64)
    """
    pair = generate_oracle_key(kid)
    Path(key_path).parent.mkdir(parents=True, exist_ok=True)
    Path(trust_store_path).parent.mkdir(parents=True, exist_ok=True)

    with open(key_path, "w", encoding="utf-8") as f:
        json.dump({"kid": kid, "private_key_b64": b64e(pair.signing_key)}, f, indent=2)

    trust = {
        "trust_store_id": "fheboot-trust-store-demo",
        "trust_store_version": "1.0.0",
        "oracle_keys": {kid: pair.verify_key_b64},
    }
    with open(trust_store_path, "w", encoding="utf-8") as f:
        json.dump(trust, f, indent=2)

    return pair.verify_key_b64
