"""
FHE Boot Attestation Oracle Proofs

A decryption result delivered by the Encrypted Value Service is accepted only
when it carries an Ed25519 (RFC 8032) signature by the service's oracle key
over the canonical encoding of the request id and cleartext.

Cleartext wire format: 32-byte big-endian unsigned integer.
"""

import base64
import binascii
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from nacl.exceptions import BadSignatureError, CryptoError
from nacl.signing import SigningKey, VerifyKey

from .canonicalization import canonicalize, sha256_hex

CLEARTEXT_LENGTH = 32


def encode_cleartext(value: int) -> bytes:
    """Encode a plaintext score as 32 big-endian bytes."""
    if value < 0:
        raise ValueError("cleartext value must be non-negative")
    return int(value).to_bytes(CLEARTEXT_LENGTH, "big")


def decode_cleartext(cleartext: bytes) -> int:
    """
    Decode a 32-byte big-endian cleartext into an integer score.

    Raises:
        ValueError: if the cleartext has the wrong length
    """
    if len(cleartext) != CLEARTEXT_LENGTH:
        raise ValueError(f"cleartext must be {CLEARTEXT_LENGTH} bytes, got {len(cleartext)}")
    return int.from_bytes(cleartext, "big")


def proof_message(request_id: str, cleartext: bytes) -> bytes:
    """Bytes covered by an oracle proof."""
    return canonicalize({"request_id": request_id, "cleartext": bytes(cleartext)})


@dataclass
class OracleKeyPair:
    """Ed25519 key pair used by the oracle to sign decryption results."""
    key_id: str
    signing_key: bytes
    verify_key: bytes
    created_at: datetime
    algorithm: str = "Ed25519"

    @property
    def verify_key_b64(self) -> str:
        return base64.b64encode(self.verify_key).decode('utf-8')

    def to_trust_store_entry(self) -> Dict[str, Any]:
        return {
            "key_id": self.key_id,
            "algorithm": self.algorithm,
            "public_key": self.verify_key_b64,
            "created_at": self.created_at.isoformat().replace("+00:00", "Z"),
            "key_usage": ["sign_decryption_results"],
        }


class OracleSigner:
    """
    Signs decryption results on behalf of the Encrypted Value Service.

    The attestation engine never holds one of these; it only holds the
    verify key.
    """

    def __init__(self, key_pair: Optional[OracleKeyPair] = None, key_id: str = "oracle-01"):
        self.key_pair = key_pair or generate_oracle_key(key_id)
        self._signing_key = SigningKey(self.key_pair.signing_key)

    @classmethod
    def from_private_key_b64(cls, private_key_b64: str, key_id: str = "oracle-01") -> "OracleSigner":
        sk = SigningKey(base64.b64decode(private_key_b64))
        key_pair = OracleKeyPair(
            key_id=key_id,
            signing_key=bytes(sk),
            verify_key=bytes(sk.verify_key),
            created_at=datetime.now(timezone.utc),
        )
        return cls(key_pair)

    @property
    def verify_key_b64(self) -> str:
        return self.key_pair.verify_key_b64

    def sign_result(self, request_id: str, cleartext: bytes) -> str:
        """Return the base64 proof for (request_id, cleartext)."""
        signature = self._signing_key.sign(proof_message(request_id, cleartext)).signature
        return base64.b64encode(signature).decode('utf-8')

    def sign_score(self, request_id: str, score: int) -> Tuple[bytes, str]:
        """Encode a score and sign it. Returns (cleartext, proof)."""
        cleartext = encode_cleartext(score)
        return cleartext, self.sign_result(request_id, cleartext)


def generate_oracle_key(key_id: str = "oracle-01") -> OracleKeyPair:
    """Generate a fresh oracle key pair."""
    signing_key = SigningKey.generate()
    return OracleKeyPair(
        key_id=key_id,
        signing_key=bytes(signing_key),
        verify_key=bytes(signing_key.verify_key),
        created_at=datetime.now(timezone.utc),
    )


def verify_proof(request_id: str, cleartext: bytes, proof_b64: str, verify_key_b64: str) -> bool:
    """
    Check an oracle proof.

    Returns:
        True if proof is a valid signature over (request_id, cleartext) by
        the given verify key, False for any malformed or forged input
    """
    if not request_id or not proof_b64 or not isinstance(cleartext, (bytes, bytearray)):
        return False
    try:
        signature = base64.b64decode(proof_b64, validate=True)
        verify_key = VerifyKey(base64.b64decode(verify_key_b64, validate=True))
        verify_key.verify(proof_message(request_id, bytes(cleartext)), signature)
        return True
    except (BadSignatureError, CryptoError, binascii.Error, ValueError, TypeError):
        return False


def key_fingerprint(verify_key_b64: str) -> str:
    """Short fingerprint of an oracle verify key for logs."""
    return sha256_hex(base64.b64decode(verify_key_b64))[:16]
