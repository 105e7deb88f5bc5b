"""
Hybrid decryption of encrypted notification content.

The sender wraps a per-notification AES key with our RSA public key and
encrypts the payload with that AES key in CBC mode:

    dataKey  = RSA(public_key, aes_key)
    data     = IV (16 bytes) || AES-CBC(aes_key, IV, PKCS7(payload))

The RSA padding the sender uses is not documented as stable, so OAEP is
tried first and PKCS#1 v1.5 only when OAEP fails. Content decryption is
never retried.
"""

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import padding as sym_padding
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from .errors import CertificateMismatch, DecryptionFailed
from .keys import KeyMaterial
from .logging_config import event_log
from .util import b64d, constant_time_compare, hmac_sha256, normalize_thumbprint

logger = logging.getLogger(__name__)

IV_LENGTH = 16
AES_BLOCK_BITS = 128
AES_KEY_LENGTHS = (16, 24, 32)


@dataclass(frozen=True)
class EncryptedEnvelope:
    """Decoded form of a notification's encryptedContent."""
    cipher_data: bytes
    cipher_symmetric_key: bytes
    signature: bytes
    certificate_id: str
    certificate_thumbprint: str

    @classmethod
    def from_wire(cls, payload: Mapping[str, Any]) -> "EncryptedEnvelope":
        """
        Build from the wire shape
        {data, dataSignature, dataKey, encryptionCertificateId, encryptionCertificateThumbprint}.

        Raises:
            DecryptionFailed: If a required field is missing or not base64
        """
        try:
            data = payload["data"]
            data_key = payload["dataKey"]
        except KeyError as e:
            raise DecryptionFailed(f"Envelope missing {e.args[0]}", reason="MALFORMED_ENVELOPE") from e

        try:
            cipher_data = b64d(data)
            cipher_key = b64d(data_key)
            signature = b64d(payload["dataSignature"]) if payload.get("dataSignature") else b""
        except (ValueError, TypeError, AttributeError) as e:
            raise DecryptionFailed("Envelope field is not valid base64", reason="MALFORMED_ENVELOPE") from e

        return cls(
            cipher_data=cipher_data,
            cipher_symmetric_key=cipher_key,
            signature=signature,
            certificate_id=str(payload.get("encryptionCertificateId") or ""),
            certificate_thumbprint=str(payload.get("encryptionCertificateThumbprint") or ""),
        )


class HybridDecryptor:
    """
    Unwraps the content key with RSA and decrypts the body with AES-CBC.

    Args:
        verify_signature: When True, the HMAC-SHA256 of the ciphertext under
            the unwrapped key must equal the envelope signature. Off by
            default; the sender's signature is not otherwise enforced.
    """

    def __init__(self, verify_signature: bool = False):
        self._verify_signature = verify_signature

    def decrypt(self, envelope: EncryptedEnvelope, key: KeyMaterial) -> bytes:
        """
        Decrypt one envelope.

        Returns:
            Raw decrypted bytes (UTF-8 text, not necessarily JSON)

        Raises:
            CertificateMismatch: Decryption failed and the envelope names a
                certificate other than ours
            DecryptionFailed: Any other decryption failure
        """
        try:
            symmetric_key = self.unwrap_key(envelope.cipher_symmetric_key, key.private_key)
            if self._verify_signature:
                self._check_signature(envelope, symmetric_key)
            return self.decrypt_content(envelope.cipher_data, symmetric_key)
        except DecryptionFailed as failure:
            diagnosed = self._diagnose(failure, envelope, key)
            if diagnosed is failure:
                raise
            raise diagnosed from failure

    def unwrap_key(self, wrapped: bytes, private_key: rsa.RSAPrivateKey) -> bytes:
        """Recover the AES key. OAEP first, PKCS#1 v1.5 as the legacy fallback."""
        oaep = padding.OAEP(
            mgf=padding.MGF1(algorithm=hashes.SHA1()),
            algorithm=hashes.SHA1(),
            label=None,
        )
        try:
            symmetric_key = private_key.decrypt(wrapped, oaep)
        except ValueError:
            logger.debug("OAEP unwrap failed, falling back to PKCS#1 v1.5")
            try:
                symmetric_key = private_key.decrypt(wrapped, padding.PKCS1v15())
            except ValueError as e:
                raise DecryptionFailed("Content key unwrap failed", reason="KEY_UNWRAP_FAILED") from e

        if len(symmetric_key) not in AES_KEY_LENGTHS:
            raise DecryptionFailed(
                "Unwrapped content key has an invalid length",
                reason="KEY_UNWRAP_FAILED",
                detail=f"length={len(symmetric_key)}",
            )
        return symmetric_key

    def decrypt_content(self, cipher_data: bytes, symmetric_key: bytes) -> bytes:
        """AES-CBC decrypt; the first 16 bytes of cipher_data are the IV."""
        body_length = len(cipher_data) - IV_LENGTH
        if body_length <= 0 or body_length % (AES_BLOCK_BITS // 8):
            raise DecryptionFailed(
                "Ciphertext is not a whole number of blocks",
                reason="CONTENT_MALFORMED",
                detail=f"length={len(cipher_data)}",
            )

        iv, ciphertext = cipher_data[:IV_LENGTH], cipher_data[IV_LENGTH:]
        try:
            decryptor = Cipher(algorithms.AES(symmetric_key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = sym_padding.PKCS7(AES_BLOCK_BITS).unpadder()
            return unpadder.update(padded) + unpadder.finalize()
        except ValueError as e:
            raise DecryptionFailed("Content decryption failed", reason="CONTENT_DECRYPT_FAILED") from e

    def _check_signature(self, envelope: EncryptedEnvelope, symmetric_key: bytes) -> None:
        expected = hmac_sha256(symmetric_key, envelope.cipher_data)
        if not envelope.signature or not constant_time_compare(expected, envelope.signature):
            raise DecryptionFailed("Data signature does not match", reason="SIGNATURE_MISMATCH")

    def _diagnose(self, failure: DecryptionFailed, envelope: EncryptedEnvelope, key: KeyMaterial) -> DecryptionFailed:
        """Tell 'wrong certificate' apart from 'corrupt ciphertext'."""
        local = normalize_thumbprint(key.thumbprint())
        remote = normalize_thumbprint(envelope.certificate_thumbprint)

        event_log.decryption_failed(
            reason=failure.reason,
            certificate_id=envelope.certificate_id or None,
            envelope_thumbprint=remote or None,
            local_thumbprint=local or None,
        )

        if local and remote and local != remote:
            return CertificateMismatch(expected_thumbprint=remote, actual_thumbprint=local)
        return failure
