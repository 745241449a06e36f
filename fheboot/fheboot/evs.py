"""
FHE Boot Attestation Encrypted Value Service

The homomorphic evaluation service is an external collaborator. The engine
consumes it through the EncryptedValueService interface:

    encrypt(plaintext)            -> ciphertext
    eq(a, b) / gt(a, b)           -> ciphertext<bool>
    select(cond, a, b)            -> ciphertext
    add(a, b)                     -> ciphertext
    request_decryption(ct, cb)    -> request_id   (result delivered later to cb)

Backends:
- InMemoryEncryptedValueService: development/testing. Values are kept in
  process behind random handle ids and decryption results are queued until
  deliver_pending() is called.
- HttpEncryptedValueService: client for a remote evaluation service. Results
  are delivered by the remote side to the configured callback URL.
"""

import logging
import secrets
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from .errors import AttestationError, EncryptedValueServiceError
from .proofs import OracleSigner
from .types import CiphertextHandle

log = logging.getLogger("fheboot.evs")

# (request_id, cleartext, proof)
DecryptionCallback = Callable[[str, bytes, str], Any]

UINT32_MASK = 0xFFFFFFFF


class EncryptedValueService(ABC):
    """Abstract interface for the homomorphic evaluation service."""

    @abstractmethod
    def encrypt(self, plaintext: int) -> CiphertextHandle:
        """Encrypt a plaintext literal (trivial encryption of a constant)."""
        pass

    @abstractmethod
    def eq(self, lhs: CiphertextHandle, rhs: CiphertextHandle) -> CiphertextHandle:
        """Encrypted equality."""
        pass

    @abstractmethod
    def gt(self, lhs: CiphertextHandle, rhs: CiphertextHandle) -> CiphertextHandle:
        """Encrypted unsigned greater-than."""
        pass

    @abstractmethod
    def select(
        self,
        condition: CiphertextHandle,
        if_true: CiphertextHandle,
        if_false: CiphertextHandle
    ) -> CiphertextHandle:
        """Encrypted conditional select."""
        pass

    @abstractmethod
    def add(self, lhs: CiphertextHandle, rhs: CiphertextHandle) -> CiphertextHandle:
        """Encrypted addition."""
        pass

    @abstractmethod
    def request_decryption(self, ciphertext: CiphertextHandle, callback: DecryptionCallback) -> str:
        """
        Ask for asynchronous decryption.

        Returns immediately with a fresh request id. The signed result is
        delivered later, out of band, to the callback.
        """
        pass

    @abstractmethod
    def oracle_verify_key(self) -> str:
        """Base64 Ed25519 key that authenticates delivered decryption results."""
        pass

    def is_available(self) -> bool:
        return True


@dataclass
class DeliveryOutcome:
    """What happened when a queued decryption result was delivered."""
    request_id: str
    delivered: bool
    error: Optional[str] = None


class InMemoryEncryptedValueService(EncryptedValueService):
    """
    In-process evaluation backend for development/testing.

    WARNING: Not suitable for production.
    - Plaintexts live in process memory
    - No real homomorphic encryption
    """

    def __init__(self, signer: Optional[OracleSigner] = None):
        self.signer = signer or OracleSigner()
        self.available = True
        self._values: Dict[str, int] = {}
        self._queue: "OrderedDict[str, Tuple[str, DecryptionCallback]]" = OrderedDict()
        self._lock = threading.RLock()

    def _store(self, value: int) -> CiphertextHandle:
        handle_id = f"ct:{secrets.token_hex(16)}"
        with self._lock:
            self._values[handle_id] = int(value) & UINT32_MASK
        return CiphertextHandle(handle_id)

    def _load(self, handle: CiphertextHandle) -> int:
        with self._lock:
            try:
                return self._values[handle.handle_id]
            except KeyError:
                raise EncryptedValueServiceError(
                    "unknown ciphertext handle", handle=handle.handle_id[:16]
                ) from None

    def encrypt(self, plaintext: int) -> CiphertextHandle:
        if not isinstance(plaintext, int) or isinstance(plaintext, bool) or plaintext < 0:
            raise ValueError("plaintext must be a non-negative integer")
        return self._store(plaintext)

    def eq(self, lhs, rhs):
        return self._store(1 if self._load(lhs) == self._load(rhs) else 0)

    def gt(self, lhs, rhs):
        return self._store(1 if self._load(lhs) > self._load(rhs) else 0)

    def select(self, condition, if_true, if_false):
        chosen = if_true if self._load(condition) else if_false
        return self._store(self._load(chosen))

    def add(self, lhs, rhs):
        return self._store(self._load(lhs) + self._load(rhs))

    def request_decryption(self, ciphertext: CiphertextHandle, callback: DecryptionCallback) -> str:
        self._load(ciphertext)
        request_id = secrets.token_hex(16)
        with self._lock:
            self._queue[request_id] = (ciphertext.handle_id, callback)
        log.debug("queued decryption request %s", request_id)
        return request_id

    def oracle_verify_key(self) -> str:
        return self.signer.verify_key_b64

    def is_available(self) -> bool:
        return self.available

    def pending_request_ids(self) -> List[str]:
        with self._lock:
            return list(self._queue.keys())

    def reveal(self, handle: CiphertextHandle) -> int:
        """Plaintext behind a handle. Development/testing only."""
        return self._load(handle)

    def deliver_pending(self, request_id: Optional[str] = None) -> List[DeliveryOutcome]:
        """
        Deliver queued decryption results to their callbacks.

        Args:
            request_id: deliver only this request (default: all, in request order)

        Returns:
            One DeliveryOutcome per delivered request
        """
        with self._lock:
            if request_id is None:
                batch = list(self._queue.items())
                self._queue.clear()
            elif request_id in self._queue:
                batch = [(request_id, self._queue.pop(request_id))]
            else:
                batch = []

        outcomes = []
        remaining = list(batch)
        try:
            while remaining:
                rid, (handle_id, callback) = remaining[0]
                value = self._load(CiphertextHandle(handle_id))
                cleartext, proof = self.signer.sign_score(rid, value)
                try:
                    callback(rid, cleartext, proof)
                    outcomes.append(DeliveryOutcome(request_id=rid, delivered=True))
                except AttestationError as e:
                    log.warning("callback rejected decryption result %s: %s", rid, e)
                    outcomes.append(DeliveryOutcome(request_id=rid, delivered=False, error=e.code.value))
                remaining.pop(0)
        finally:
            # undelivered results go back to the front of the queue
            if remaining:
                with self._lock:
                    requeued = OrderedDict(remaining)
                    requeued.update(self._queue)
                    self._queue = requeued
        return outcomes


class HttpEncryptedValueService(EncryptedValueService):
    """
    Client for a remote evaluation service.

    Handles travel as their opaque string ids. Decryption results are posted
    by the remote service to callback_url, so the callback passed to
    request_decryption is not invoked in process.
    """

    def __init__(
        self,
        base_url: str,
        callback_url: str,
        verify_key_b64: Optional[str] = None,
        timeout: float = 5.0,
        session: Optional[requests.Session] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.callback_url = callback_url
        self.timeout = timeout
        self._verify_key_b64 = verify_key_b64
        self._session = session or requests.Session()

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            r = self._session.post(url, json=payload, timeout=self.timeout)
            r.raise_for_status()
            return r.json()
        except requests.RequestException as e:
            log.error("EVS call failed: %s %s", path, e)
            raise EncryptedValueServiceError(f"{path} failed: {e}") from e
        except ValueError as e:
            raise EncryptedValueServiceError(f"{path} returned invalid JSON") from e

    def _handle(self, path: str, payload: Dict[str, Any]) -> CiphertextHandle:
        body = self._post(path, payload)
        handle_id = body.get("handle")
        if not handle_id:
            raise EncryptedValueServiceError(f"{path} returned no handle")
        return CiphertextHandle(handle_id)

    def encrypt(self, plaintext: int) -> CiphertextHandle:
        return self._handle("/v1/encrypt", {"plaintext": int(plaintext)})

    def eq(self, lhs, rhs):
        return self._handle("/v1/eq", {"lhs": lhs.handle_id, "rhs": rhs.handle_id})

    def gt(self, lhs, rhs):
        return self._handle("/v1/gt", {"lhs": lhs.handle_id, "rhs": rhs.handle_id})

    def select(self, condition, if_true, if_false):
        return self._handle("/v1/select", {
            "condition": condition.handle_id,
            "if_true": if_true.handle_id,
            "if_false": if_false.handle_id,
        })

    def add(self, lhs, rhs):
        return self._handle("/v1/add", {"lhs": lhs.handle_id, "rhs": rhs.handle_id})

    def request_decryption(self, ciphertext: CiphertextHandle, callback: DecryptionCallback) -> str:
        body = self._post("/v1/decrypt", {
            "handle": ciphertext.handle_id,
            "callback_url": self.callback_url,
        })
        request_id = body.get("request_id")
        if not request_id:
            raise EncryptedValueServiceError("/v1/decrypt returned no request_id")
        return request_id

    def oracle_verify_key(self) -> str:
        if self._verify_key_b64 is None:
            try:
                r = self._session.get(f"{self.base_url}/v1/oracle-key", timeout=self.timeout)
                r.raise_for_status()
                self._verify_key_b64 = r.json()["public_key"]
            except (requests.RequestException, KeyError, ValueError) as e:
                raise EncryptedValueServiceError(f"oracle key unavailable: {e}") from e
        return self._verify_key_b64

    def is_available(self) -> bool:
        try:
            r = self._session.get(f"{self.base_url}/v1/health", timeout=self.timeout)
            return r.ok
        except requests.RequestException:
            return False
