"""
Hybrid decryption tests: round trip, padding fallback, certificate
mismatch diagnosis and the opt-in data signature check.
"""

import json
import os
import unittest

from transcript_bridge.decryption import EncryptedEnvelope, HybridDecryptor
from transcript_bridge.errors import CertificateMismatch, DecryptionFailed
from transcript_bridge.util import b64d, b64e

from factories import encrypt_payload, key_material, transcript_record


class TestEncryptedEnvelope(unittest.TestCase):

    def test_from_wire_decodes_fields(self):
        wire = encrypt_payload(b"hello")
        envelope = EncryptedEnvelope.from_wire(wire)
        self.assertEqual(envelope.cipher_data, b64d(wire["data"]))
        self.assertEqual(envelope.certificate_id, "webhook-cert")

    def test_missing_field_is_malformed(self):
        wire = encrypt_payload(b"hello")
        del wire["dataKey"]
        with self.assertRaises(DecryptionFailed) as ctx:
            EncryptedEnvelope.from_wire(wire)
        self.assertEqual(ctx.exception.reason, "MALFORMED_ENVELOPE")

    def test_invalid_base64_is_malformed(self):
        wire = encrypt_payload(b"hello")
        wire["data"] = "***not base64***"
        with self.assertRaises(DecryptionFailed) as ctx:
            EncryptedEnvelope.from_wire(wire)
        self.assertEqual(ctx.exception.reason, "MALFORMED_ENVELOPE")


class TestHybridDecryptor(unittest.TestCase):

    def setUp(self):
        self.key = key_material()
        self.decryptor = HybridDecryptor()

    def _decrypt(self, wire, decryptor=None):
        return (decryptor or self.decryptor).decrypt(EncryptedEnvelope.from_wire(wire), self.key)

    def test_round_trip_recovers_plaintext_exactly(self):
        for plaintext in (b"x", b"exactly sixteen!", json.dumps(transcript_record()).encode(), os.urandom(1000)):
            with self.subTest(length=len(plaintext)):
                self.assertEqual(self._decrypt(encrypt_payload(plaintext)), plaintext)

    def test_legacy_padding_fallback(self):
        plaintext = b'{"id": "legacy"}'
        self.assertEqual(self._decrypt(encrypt_payload(plaintext, wrap="pkcs1")), plaintext)

    def test_aes_128_content_key(self):
        plaintext = b"short key"
        self.assertEqual(self._decrypt(encrypt_payload(plaintext, aes_key=os.urandom(16))), plaintext)

    def test_corrupt_ciphertext_fails_without_mismatch(self):
        wire = encrypt_payload(b"payload that spans more than one block of ciphertext")
        data = bytearray(b64d(wire["data"]))
        data[-17] ^= 0xFF
        wire["data"] = b64e(bytes(data))

        with self.assertRaises(DecryptionFailed) as ctx:
            self._decrypt(wire)
        self.assertNotIsInstance(ctx.exception, CertificateMismatch)

    def test_truncated_ciphertext_is_malformed(self):
        wire = encrypt_payload(b"payload")
        wire["data"] = b64e(b64d(wire["data"])[:20])

        with self.assertRaises(DecryptionFailed) as ctx:
            self._decrypt(wire)
        self.assertEqual(ctx.exception.reason, "CONTENT_MALFORMED")

    def test_wrong_certificate_reports_mismatch(self):
        wire = encrypt_payload(b"for someone else", common_name="other-certificate")

        with self.assertRaises(CertificateMismatch) as ctx:
            self._decrypt(wire)
        self.assertEqual(ctx.exception.actual_thumbprint, self.key.thumbprint())
        self.assertIsInstance(ctx.exception, DecryptionFailed)

    def test_matching_thumbprint_in_other_format_is_not_a_mismatch(self):
        thumbprint = ":".join(self.key.thumbprint()[i:i + 2] for i in range(0, 40, 2)).lower()
        wire = encrypt_payload(b"payload", thumbprint=thumbprint)
        wire["dataKey"] = b64e(os.urandom(256))

        with self.assertRaises(DecryptionFailed) as ctx:
            self._decrypt(wire)
        self.assertNotIsInstance(ctx.exception, CertificateMismatch)

    def test_signature_not_checked_by_default(self):
        wire = encrypt_payload(b"unsigned", sign=False)
        self.assertEqual(self._decrypt(wire), b"unsigned")

    def test_signature_check_when_enabled(self):
        verifying = HybridDecryptor(verify_signature=True)
        self.assertEqual(self._decrypt(encrypt_payload(b"signed"), verifying), b"signed")

        wire = encrypt_payload(b"tampered")
        wire["dataSignature"] = b64e(os.urandom(32))
        with self.assertRaises(DecryptionFailed) as ctx:
            self._decrypt(wire, verifying)
        self.assertEqual(ctx.exception.reason, "SIGNATURE_MISMATCH")


if __name__ == "__main__":
    unittest.main()
