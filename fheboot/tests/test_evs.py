"""
FHE Boot Attestation Encrypted Value Service Test Suite
"""

import unittest
from unittest import mock

import requests

from fheboot import (
    CiphertextHandle,
    EncryptedValueServiceError,
    HttpEncryptedValueService,
    InMemoryEncryptedValueService,
    decode_cleartext,
    verify_proof,
)


class TestInMemoryService(unittest.TestCase):

    def setUp(self):
        self.evs = InMemoryEncryptedValueService()

    def test_handles_are_opaque(self):
        a = self.evs.encrypt(42)
        b = self.evs.encrypt(42)

        self.assertNotEqual(a.handle_id, b.handle_id)
        self.assertNotEqual(a, b)
        self.assertNotIn("42", a.handle_id)

    def test_eq_and_gt(self):
        e = self.evs
        self.assertEqual(e.reveal(e.eq(e.encrypt(7), e.encrypt(7))), 1)
        self.assertEqual(e.reveal(e.eq(e.encrypt(7), e.encrypt(8))), 0)
        self.assertEqual(e.reveal(e.gt(e.encrypt(8), e.encrypt(7))), 1)
        self.assertEqual(e.reveal(e.gt(e.encrypt(7), e.encrypt(7))), 0)

    def test_select_and_add(self):
        e = self.evs
        one, zero = e.encrypt(1), e.encrypt(0)
        self.assertEqual(e.reveal(e.select(one, e.encrypt(5), e.encrypt(6))), 5)
        self.assertEqual(e.reveal(e.select(zero, e.encrypt(5), e.encrypt(6))), 6)
        self.assertEqual(e.reveal(e.add(e.encrypt(4), e.encrypt(5))), 9)

    def test_add_wraps_at_32_bits(self):
        e = self.evs
        self.assertEqual(e.reveal(e.add(e.encrypt(0xFFFFFFFF), e.encrypt(2))), 1)

    def test_negative_plaintext_rejected(self):
        with self.assertRaises(ValueError):
            self.evs.encrypt(-1)

    def test_foreign_handle_rejected(self):
        other = InMemoryEncryptedValueService()
        with self.assertRaises(EncryptedValueServiceError):
            self.evs.eq(other.encrypt(1), self.evs.encrypt(1))

    def test_decryption_is_deferred(self):
        delivered = []
        request_id = self.evs.request_decryption(
            self.evs.encrypt(9), lambda rid, ct, proof: delivered.append((rid, ct, proof))
        )

        self.assertEqual(delivered, [])
        self.assertEqual(self.evs.pending_request_ids(), [request_id])

        outcomes = self.evs.deliver_pending()

        self.assertEqual([o.request_id for o in outcomes], [request_id])
        self.assertTrue(outcomes[0].delivered)
        rid, cleartext, proof = delivered[0]
        self.assertEqual(rid, request_id)
        self.assertEqual(decode_cleartext(cleartext), 9)
        self.assertTrue(verify_proof(rid, cleartext, proof, self.evs.oracle_verify_key()))
        self.assertEqual(self.evs.pending_request_ids(), [])

    def test_deliver_single_request(self):
        seen = []
        callback = lambda rid, ct, proof: seen.append(rid)
        first = self.evs.request_decryption(self.evs.encrypt(1), callback)
        second = self.evs.request_decryption(self.evs.encrypt(2), callback)

        self.evs.deliver_pending(second)
        self.assertEqual(seen, [second])
        self.assertEqual(self.evs.pending_request_ids(), [first])

        self.assertEqual(self.evs.deliver_pending("missing"), [])

    def test_availability_flag(self):
        self.assertTrue(self.evs.is_available())
        self.evs.available = False
        self.assertFalse(self.evs.is_available())


def _response(payload, status=200):
    response = mock.Mock()
    response.ok = status < 400
    response.json.return_value = payload
    if status >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status} error")
    else:
        response.raise_for_status.return_value = None
    return response


class TestHttpService(unittest.TestCase):

    def setUp(self):
        self.session = mock.Mock(spec=requests.Session)
        self.evs = HttpEncryptedValueService(
            "https://evs.example/", "https://attest.example/oracle/callback",
            verify_key_b64="a2V5", session=self.session,
        )

    def test_encrypt_posts_plaintext(self):
        self.session.post.return_value = _response({"handle": "h-1"})

        handle = self.evs.encrypt(42)

        self.assertEqual(handle.handle_id, "h-1")
        self.session.post.assert_called_once_with(
            "https://evs.example/v1/encrypt", json={"plaintext": 42}, timeout=5.0
        )

    def test_select_sends_handle_ids(self):
        self.session.post.return_value = _response({"handle": "h-4"})

        self.evs.select(CiphertextHandle("h-1"), CiphertextHandle("h-2"), CiphertextHandle("h-3"))

        _, kwargs = self.session.post.call_args
        self.assertEqual(kwargs["json"], {"condition": "h-1", "if_true": "h-2", "if_false": "h-3"})

    def test_decrypt_registers_callback_url(self):
        self.session.post.return_value = _response({"request_id": "req-1"})

        request_id = self.evs.request_decryption(CiphertextHandle("h-9"), callback=None)

        self.assertEqual(request_id, "req-1")
        _, kwargs = self.session.post.call_args
        self.assertEqual(kwargs["json"]["callback_url"], "https://attest.example/oracle/callback")

    def test_transport_error_wrapped(self):
        self.session.post.side_effect = requests.ConnectionError("refused")

        with self.assertRaises(EncryptedValueServiceError):
            self.evs.encrypt(1)

    def test_http_error_wrapped(self):
        self.session.post.return_value = _response({}, status=500)

        with self.assertRaises(EncryptedValueServiceError):
            self.evs.eq(CiphertextHandle("a"), CiphertextHandle("b"))

    def test_missing_handle_in_response(self):
        self.session.post.return_value = _response({})

        with self.assertRaises(EncryptedValueServiceError):
            self.evs.add(CiphertextHandle("a"), CiphertextHandle("b"))

    def test_health(self):
        self.session.get.return_value = _response({"status": "ok"})
        self.assertTrue(self.evs.is_available())

        self.session.get.side_effect = requests.Timeout("slow")
        self.assertFalse(self.evs.is_available())

    def test_oracle_key_fetched_once(self):
        evs = HttpEncryptedValueService("https://evs.example", "cb", session=self.session)
        self.session.get.return_value = _response({"public_key": "b3JhY2xl"})

        self.assertEqual(evs.oracle_verify_key(), "b3JhY2xl")
        self.assertEqual(evs.oracle_verify_key(), "b3JhY2xl")
        self.assertEqual(self.session.get.call_count, 1)


if __name__ == "__main__":
    unittest.main(verbosity=2)
