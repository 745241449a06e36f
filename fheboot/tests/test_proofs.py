"""
FHE Boot Attestation Conformance Test Suite

Canonical JSON, cleartext encoding, oracle proofs and evidence parsing.
"""

import base64
import unittest

from fheboot import (
    BootEvidence,
    CiphertextHandle,
    ComponentName,
    InvalidCiphertext,
    OracleSigner,
    canonicalize,
    coerce_handle,
    decode_cleartext,
    encode_cleartext,
    generate_oracle_key,
    key_fingerprint,
    verify_proof,
)
from fheboot.proofs import proof_message


class TestCanonicalization(unittest.TestCase):

    def test_key_ordering(self):
        self.assertEqual(canonicalize({"b": 1, "a": 2}), b'{"a":2,"b":1}')

    def test_bytes_rendered_as_hex(self):
        self.assertEqual(canonicalize({"x": b"\x00\xff"}), b'{"x":"00ff"}')

    def test_unsupported_type(self):
        with self.assertRaises(ValueError):
            canonicalize({"x": object()})


class TestCleartext(unittest.TestCase):

    def test_encoding_is_32_byte_big_endian(self):
        encoded = encode_cleartext(9)
        self.assertEqual(len(encoded), 32)
        self.assertEqual(encoded[-1], 9)
        self.assertEqual(encoded[:-1], bytes(31))
        self.assertEqual(decode_cleartext(encoded), 9)

    def test_wrong_length_rejected(self):
        with self.assertRaises(ValueError):
            decode_cleartext(b"\x09")

    def test_negative_rejected(self):
        with self.assertRaises(ValueError):
            encode_cleartext(-1)


class TestOracleProofs(unittest.TestCase):

    def setUp(self):
        self.signer = OracleSigner()
        self.key = self.signer.verify_key_b64

    def test_message_binds_request_and_cleartext(self):
        message = proof_message("req-1", encode_cleartext(1))
        self.assertEqual(message, b'{"cleartext":"' + b"0" * 63 + b'1","request_id":"req-1"}')

    def test_valid_proof(self):
        cleartext, proof = self.signer.sign_score("req-1", 9)
        self.assertTrue(verify_proof("req-1", cleartext, proof, self.key))

    def test_wrong_key(self):
        cleartext, proof = self.signer.sign_score("req-1", 9)
        self.assertFalse(verify_proof("req-1", cleartext, proof, OracleSigner().verify_key_b64))

    def test_altered_fields(self):
        cleartext, proof = self.signer.sign_score("req-1", 9)
        self.assertFalse(verify_proof("req-2", cleartext, proof, self.key))
        self.assertFalse(verify_proof("req-1", encode_cleartext(8), proof, self.key))

    def test_flipped_signature_bit(self):
        cleartext, proof = self.signer.sign_score("req-1", 9)
        raw = bytearray(base64.b64decode(proof))
        raw[0] ^= 0x01
        self.assertFalse(verify_proof("req-1", cleartext, base64.b64encode(bytes(raw)).decode(), self.key))

    def test_garbage_inputs(self):
        cleartext = encode_cleartext(9)
        self.assertFalse(verify_proof("req-1", cleartext, "%%%", self.key))
        self.assertFalse(verify_proof("req-1", cleartext, "AAAA", self.key))
        self.assertFalse(verify_proof("req-1", cleartext, "AAAA", "not-a-key"))
        self.assertFalse(verify_proof("req-1", "00" * 32, "AAAA", self.key))

    def test_signer_round_trips_through_private_key(self):
        key_pair = generate_oracle_key("oracle-test")
        signer = OracleSigner.from_private_key_b64(
            base64.b64encode(key_pair.signing_key).decode(), "oracle-test"
        )
        self.assertEqual(signer.verify_key_b64, key_pair.verify_key_b64)

    def test_trust_store_entry(self):
        entry = self.signer.key_pair.to_trust_store_entry()
        self.assertEqual(entry["algorithm"], "Ed25519")
        self.assertEqual(entry["public_key"], self.key)
        self.assertTrue(entry["created_at"].endswith("Z"))

    def test_fingerprint_is_stable(self):
        self.assertEqual(key_fingerprint(self.key), key_fingerprint(self.key))
        self.assertEqual(len(key_fingerprint(self.key)), 16)


class TestEvidenceParsing(unittest.TestCase):

    def _component(self, prefix):
        return {"checksum": f"{prefix}-c", "size": f"{prefix}-s", "version": f"{prefix}-v"}

    def test_from_wire_ids(self):
        evidence = BootEvidence.from_dict({
            "bootloader": self._component("b"),
            "kernel": self._component("k"),
            "rootfs": self._component("r"),
        })
        self.assertEqual(evidence.component(ComponentName.KERNEL).size.handle_id, "k-s")
        self.assertEqual(evidence.to_dict()["rootfs"]["version"], "r-v")

    def test_blank_handle_rejected(self):
        data = {"bootloader": self._component("b"), "kernel": self._component("k"), "rootfs": self._component("r")}
        data["bootloader"]["checksum"] = "   "

        with self.assertRaises(InvalidCiphertext) as ctx:
            BootEvidence.from_dict(data)
        self.assertEqual(ctx.exception.field, "bootloader.checksum")

    def test_none_evidence_rejected(self):
        with self.assertRaises(InvalidCiphertext):
            BootEvidence.from_dict(None)

    def test_coerce_handle(self):
        handle = CiphertextHandle("ct:1")
        self.assertIs(coerce_handle(handle, "x"), handle)
        self.assertEqual(coerce_handle("ct:2", "x").handle_id, "ct:2")
        with self.assertRaises(InvalidCiphertext):
            coerce_handle(42, "x")
        with self.assertRaises(InvalidCiphertext):
            coerce_handle(CiphertextHandle(""), "x")

    def test_handle_equality_is_identity(self):
        self.assertNotEqual(CiphertextHandle("ct:1"), CiphertextHandle("ct:1"))


if __name__ == "__main__":
    unittest.main(verbosity=2)
