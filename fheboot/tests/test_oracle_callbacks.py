"""
FHE Boot Attestation Oracle Callback Test Suite

Adversarial and out-of-order delivery of decryption results.

Critical invariant tested:
    A STAGE IS DECIDED ONLY BY AN AUTHENTICATED CALLBACK, AT MOST ONCE
"""

import unittest

from fheboot import (
    AttestationEngine,
    EngineConfig,
    EventType,
    InMemoryEncryptedValueService,
    InvalidProof,
    InvalidStage,
    OracleSigner,
    StageDecision,
    Unauthorized,
    UnknownRequest,
    encode_cleartext,
)

ADMIN = "admin-0x01"
DEVICE = "device-D"


class CallbackTestCase(unittest.TestCase):

    def setUp(self):
        self.evs = InMemoryEncryptedValueService()
        self.engine = AttestationEngine(
            self.evs, EngineConfig(admin_identity=ADMIN, initial_threshold=5)
        )
        self.engine.register_trusted_firmware(
            ADMIN, DEVICE, self.evs.encrypt(42), self.evs.encrypt(1024), self.evs.encrypt(3)
        )

    def _submit(self, matching=True):
        """Submit a stage scoring 9 (matching) or 3 (checksum and size wrong)."""
        c, s = (42, 1024) if matching else (1, 1)
        component = lambda: {
            "checksum": self.evs.encrypt(c),
            "size": self.evs.encrypt(s),
            "version": self.evs.encrypt(3),
        }
        evidence = {"bootloader": component(), "kernel": component(), "rootfs": component()}
        return self.engine.verify_boot_stage(DEVICE, DEVICE, evidence)

    def _request(self, stage_index):
        return self.engine.request_boot_status_decryption(DEVICE, DEVICE, stage_index)

    def _decision_events(self):
        return [e for e in self.engine.event_sink.query(device=DEVICE)
                if e.event_type in (EventType.VERIFICATION_PASSED, EventType.VERIFICATION_FAILED)]


class TestReplay(CallbackTestCase):
    """Duplicate and unknown deliveries."""

    def test_duplicate_callback_rejected(self):
        index = self._submit()
        request_id = self._request(index)
        cleartext, proof = self.evs.signer.sign_score(request_id, 9)

        result = self.engine.deliver_decryption(request_id, cleartext, proof)
        self.assertTrue(result.applied)
        self.assertEqual(result.decision, StageDecision.PASSED)

        with self.assertRaises(UnknownRequest):
            self.engine.deliver_decryption(request_id, cleartext, proof)

        self.assertTrue(self.engine.get_stage_status(DEVICE, index).all_verified)
        self.assertEqual(len(self._decision_events()), 1)

    def test_duplicate_with_different_score_cannot_flip_flags(self):
        index = self._submit()
        request_id = self._request(index)
        self.engine.deliver_decryption(request_id, *self.evs.signer.sign_score(request_id, 9))

        with self.assertRaises(UnknownRequest):
            self.engine.deliver_decryption(request_id, *self.evs.signer.sign_score(request_id, 0))

        status = self.engine.get_stage_status(DEVICE, index)
        self.assertEqual(status.decision, StageDecision.PASSED)
        self.assertTrue(status.all_verified)

    def test_unknown_request_id(self):
        self._submit()
        cleartext, proof = self.evs.signer.sign_score("never-issued", 9)

        with self.assertRaises(UnknownRequest) as ctx:
            self.engine.deliver_decryption("never-issued", cleartext, proof)
        self.assertEqual(ctx.exception.request_id, "never-issued")

    def test_oracle_redelivery_reported_not_raised(self):
        index = self._submit()
        request_id = self._request(index)
        self.engine.deliver_decryption(request_id, *self.evs.signer.sign_score(request_id, 9))

        outcomes = self.evs.deliver_pending()

        self.assertEqual(len(outcomes), 1)
        self.assertFalse(outcomes[0].delivered)
        self.assertEqual(outcomes[0].error, "UNKNOWN_REQUEST")


class TestForgery(CallbackTestCase):
    """Callbacks whose proof does not authenticate the result."""

    def test_proof_from_other_key_rejected(self):
        index = self._submit(matching=False)
        request_id = self._request(index)
        impostor = OracleSigner()

        with self.assertRaises(InvalidProof):
            self.engine.deliver_decryption(request_id, *impostor.sign_score(request_id, 9))

        status = self.engine.get_stage_status(DEVICE, index)
        self.assertEqual(status.decision, StageDecision.PENDING)
        self.assertFalse(status.all_verified)
        self.assertEqual(self._decision_events(), [])

    def test_invalid_proof_does_not_consume_request(self):
        index = self._submit()
        request_id = self._request(index)

        with self.assertRaises(InvalidProof):
            self.engine.deliver_decryption(request_id, encode_cleartext(9), "AAAA")
        self.assertTrue(self.engine.is_request_pending(request_id))

        # the genuine delivery still succeeds
        outcomes = self.evs.deliver_pending()
        self.assertTrue(outcomes[0].delivered)
        self.assertFalse(self.engine.is_request_pending(request_id))
        self.assertEqual(self.engine.get_stage_status(DEVICE, index).decision, StageDecision.PASSED)

    def test_tampered_cleartext_rejected(self):
        index = self._submit(matching=False)
        request_id = self._request(index)
        _, proof = self.evs.signer.sign_score(request_id, 6)

        with self.assertRaises(InvalidProof):
            self.engine.deliver_decryption(request_id, encode_cleartext(9), proof)
        self.assertEqual(self.engine.get_stage_status(DEVICE, index).decision, StageDecision.PENDING)

    def test_proof_bound_to_request_id(self):
        first = self._request(self._submit())
        second = self._request(self._submit())
        cleartext, proof = self.evs.signer.sign_score(first, 9)

        with self.assertRaises(InvalidProof):
            self.engine.deliver_decryption(second, cleartext, proof)
        self.assertTrue(self.engine.is_request_pending(second))

    def test_malformed_proof_rejected(self):
        request_id = self._request(self._submit())

        for proof in ("", "not base64!!", None):
            with self.assertRaises(InvalidProof):
                self.engine.deliver_decryption(request_id, encode_cleartext(9), proof)
        self.assertTrue(self.engine.is_request_pending(request_id))

    def test_wrong_length_cleartext_rejected(self):
        request_id = self._request(self._submit())
        short = (9).to_bytes(4, "big")
        proof = self.evs.signer.sign_result(request_id, short)

        with self.assertRaises(InvalidProof):
            self.engine.deliver_decryption(request_id, short, proof)
        self.assertTrue(self.engine.is_request_pending(request_id))


class TestOrdering(CallbackTestCase):
    """Late and out-of-order callbacks."""

    def test_out_of_order_callbacks(self):
        first = self._submit()
        second = self._submit(matching=False)
        first_request = self._request(first)
        second_request = self._request(second)

        self.evs.deliver_pending(second_request)
        self.assertEqual(self.engine.get_stage_status(DEVICE, second).decision, StageDecision.FAILED)
        self.assertEqual(self.engine.get_stage_status(DEVICE, first).decision, StageDecision.PENDING)

        self.evs.deliver_pending(first_request)
        self.assertEqual(self.engine.get_stage_status(DEVICE, first).decision, StageDecision.PASSED)

    def test_callback_after_more_stages_appended(self):
        index = self._submit()
        request_id = self._request(index)
        for _ in range(3):
            self._submit(matching=False)

        self.evs.deliver_pending(request_id)

        statuses = self.engine.list_stage_statuses(DEVICE)
        self.assertEqual(statuses[0].decision, StageDecision.PASSED)
        self.assertTrue(all(s.decision == StageDecision.PENDING for s in statuses[1:]))

    def test_request_never_resolved_leaves_stage_pending(self):
        index = self._submit()
        self._request(index)

        self.assertEqual(self.engine.pending_request_count(), 1)
        self.assertEqual(self.engine.get_stage_status(DEVICE, index).decision, StageDecision.PENDING)

    def test_second_request_for_decided_stage_is_noop(self):
        index = self._submit()
        self._request(index)
        self.evs.deliver_pending()

        request_id = self._request(index)
        outcomes = self.evs.deliver_pending()

        self.assertTrue(outcomes[0].delivered)
        self.assertFalse(self.engine.is_request_pending(request_id))
        self.assertEqual(len(self._decision_events()), 1)
        self.assertTrue(self.engine.get_stage_status(DEVICE, index).all_verified)

    def test_failed_stage_is_terminal(self):
        index = self._submit(matching=False)
        self._request(index)
        self.evs.deliver_pending()
        self.assertEqual(self.engine.get_stage_status(DEVICE, index).decision, StageDecision.FAILED)

        request_id = self._request(index)
        result = self.engine.deliver_decryption(request_id, *self.evs.signer.sign_score(request_id, 9))

        self.assertFalse(result.applied)
        self.assertEqual(result.decision, StageDecision.FAILED)
        self.assertFalse(self.engine.get_stage_status(DEVICE, index).all_verified)
        self.assertEqual(len(self._decision_events()), 1)


class TestRequestGuards(CallbackTestCase):
    """Decryption request authorization and range checks."""

    def test_request_for_missing_stage(self):
        self._submit()
        with self.assertRaises(InvalidStage):
            self._request(1)
        self.assertEqual(self.engine.pending_request_count(), 0)

    def test_request_for_other_device(self):
        index = self._submit()
        with self.assertRaises(Unauthorized):
            self.engine.request_boot_status_decryption("device-E", DEVICE, index)
        self.assertEqual(self.evs.pending_request_ids(), [])

    def test_request_ids_unique(self):
        index = self._submit()
        ids = {self._request(index) for _ in range(10)}
        self.assertEqual(len(ids), 10)
        self.assertEqual(self.engine.pending_request_count(), 10)


class TestKeyRotation(unittest.TestCase):
    """Verify key read from a source on every callback."""

    def setUp(self):
        self.evs = InMemoryEncryptedValueService()
        self.trusted = {"key": self.evs.oracle_verify_key()}
        self.engine = AttestationEngine(self.evs, EngineConfig(
            admin_identity=ADMIN,
            initial_threshold=5,
            oracle_verify_key_source=lambda: self.trusted["key"],
        ))
        self.engine.register_trusted_firmware(
            ADMIN, DEVICE, self.evs.encrypt(42), self.evs.encrypt(1024), self.evs.encrypt(3)
        )
        evidence = {
            name: {"checksum": self.evs.encrypt(42), "size": self.evs.encrypt(1024), "version": self.evs.encrypt(3)}
            for name in ("bootloader", "kernel", "rootfs")
        }
        self.index = self.engine.verify_boot_stage(DEVICE, DEVICE, evidence)

    def test_rotated_key_takes_effect(self):
        request_id = self.engine.request_boot_status_decryption(DEVICE, DEVICE, self.index)
        retired = self.evs.signer
        current = OracleSigner(key_id="oracle-02")
        self.trusted["key"] = current.verify_key_b64

        cleartext, proof = retired.sign_score(request_id, 9)
        with self.assertRaises(InvalidProof):
            self.engine.deliver_decryption(request_id, cleartext, proof)
        self.assertTrue(self.engine.is_request_pending(request_id))

        cleartext, proof = current.sign_score(request_id, 9)
        result = self.engine.deliver_decryption(request_id, cleartext, proof)
        self.assertEqual(result.decision, StageDecision.PASSED)
        self.assertEqual(self.engine.oracle_verify_key_b64, current.verify_key_b64)

    def test_missing_key_rejects_every_callback(self):
        request_id = self.engine.request_boot_status_decryption(DEVICE, DEVICE, self.index)
        self.trusted["key"] = None

        cleartext, proof = self.evs.signer.sign_score(request_id, 9)
        with self.assertRaises(InvalidProof):
            self.engine.deliver_decryption(request_id, cleartext, proof)
        self.assertTrue(self.engine.is_request_pending(request_id))


if __name__ == "__main__":
    unittest.main(verbosity=2)
