"""
Shared test material: certificates, containers, envelopes and fake
collaborators. Nothing here touches the network.
"""

import json
import os
import threading
import time
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Dict, List, Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives import padding as sym_padding
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

from transcript_bridge.errors import EnrichmentFailed, IssueFilingFailed
from transcript_bridge.keys import KeyMaterial
from transcript_bridge.summaries import IssueRef
from transcript_bridge.util import b64e, hmac_sha256, sha1_thumbprint

CONTAINER_PASSWORD = "correct-horse"

TRANSCRIPT_ID = "MSMjMCMjMDAwMDAwMDAtMDAwMC0wMDAw"
MEETING_ID = "MSo1ZjAwMDAwMC1tZWV0aW5n"
ORGANIZER_ID = "5f000000-0000-0000-0000-000000000001"
CONTENT_URL = f"users/{ORGANIZER_ID}/onlineMeetings/{MEETING_ID}/transcripts/{TRANSCRIPT_ID}/content"


@lru_cache(maxsize=4)
def make_certificate(common_name: str = "transcript-bridge-test"):
    """Self-signed RSA-2048 certificate and its private key."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.now(timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=365))
        .sign(key, hashes.SHA256())
    )
    return key, certificate


def certificate_thumbprint(certificate: x509.Certificate) -> str:
    return sha1_thumbprint(certificate.public_bytes(serialization.Encoding.DER))


def key_material(common_name: str = "transcript-bridge-test") -> KeyMaterial:
    key, certificate = make_certificate(common_name)
    return KeyMaterial(private_key=key, certificate=certificate, source="test")


def write_container(path: str, password: Optional[str] = CONTAINER_PASSWORD, common_name: str = "transcript-bridge-test") -> str:
    """Write a PKCS#12 container protected by `password` (None for none)."""
    key, certificate = make_certificate(common_name)
    encryption = (
        serialization.BestAvailableEncryption(password.encode("utf-8"))
        if password
        else serialization.NoEncryption()
    )
    data = pkcs12.serialize_key_and_certificates(b"webhook", key, certificate, None, encryption)
    with open(path, "wb") as f:
        f.write(data)
    return path


def encrypt_payload(
    plaintext: bytes,
    common_name: str = "transcript-bridge-test",
    wrap: str = "oaep",
    aes_key: Optional[bytes] = None,
    thumbprint: Optional[str] = None,
    sign: bool = True,
) -> Dict[str, Any]:
    """
    Encrypt like the notification sender: wrap a fresh AES-256 key with the
    certificate's public key and AES-CBC the payload with a random IV.
    """
    key, certificate = make_certificate(common_name)
    aes_key = aes_key or os.urandom(32)
    iv = os.urandom(16)

    padder = sym_padding.PKCS7(128).padder()
    padded = padder.update(plaintext) + padder.finalize()
    encryptor = Cipher(algorithms.AES(aes_key), modes.CBC(iv)).encryptor()
    data = iv + encryptor.update(padded) + encryptor.finalize()

    if wrap == "oaep":
        scheme = padding.OAEP(mgf=padding.MGF1(algorithm=hashes.SHA1()), algorithm=hashes.SHA1(), label=None)
    else:
        scheme = padding.PKCS1v15()
    wrapped = key.public_key().encrypt(aes_key, scheme)

    return {
        "data": b64e(data),
        "dataKey": b64e(wrapped),
        "dataSignature": b64e(hmac_sha256(aes_key, data)) if sign else "",
        "encryptionCertificateId": "webhook-cert",
        "encryptionCertificateThumbprint": thumbprint or certificate_thumbprint(certificate),
    }


def transcript_record(**overrides) -> Dict[str, Any]:
    record = {
        "@odata.context": "https://graph.microsoft.com/$metadata#users('x')/onlineMeetings('y')/transcripts/$entity",
        "id": TRANSCRIPT_ID,
        "meetingId": MEETING_ID,
        "callId": "call-0001",
        "contentCorrelationId": "corr-0001",
        "transcriptContentUrl": CONTENT_URL,
        "createdDateTime": "2024-03-01T10:00:00.0000000Z",
        "endDateTime": "2024-03-01T10:45:00.0000000Z",
        "meetingOrganizer": {
            "application": None,
            "device": None,
            "user": {
                "id": ORGANIZER_ID,
                "displayName": "Alice Smith",
                "userIdentityType": "aadUser",
                "tenantId": "tenant-0001",
            },
        },
    }
    record.update(overrides)
    return record


def notification_body(*entries: Dict[str, Any]) -> Dict[str, Any]:
    return {"value": list(entries)}


def encrypted_entry(record: Optional[Dict[str, Any]] = None, raw: Optional[bytes] = None, **kwargs) -> Dict[str, Any]:
    plaintext = raw if raw is not None else json.dumps(record or transcript_record()).encode("utf-8")
    return {
        "subscriptionId": "sub-0001",
        "changeType": "created",
        "resource": "communications/onlineMeetings/getAllTranscripts",
        "encryptedContent": encrypt_payload(plaintext, **kwargs),
    }


SAMPLE_CAPTIONS = """WEBVTT

1
00:00:01.000 --> 00:00:04.000
<v Alice Smith>Good morning everyone.</v>

2
00:00:04.500 --> 00:00:09.000
<v Bob Jones>Morning. We agreed to ship the release on Friday.</v>

3
00:00:09.500 --> 00:00:12.000
Bob will follow up with the vendor.
"""

SAMPLE_INSIGHTS = {
    "id": "insight-0002",
    "callId": "call-0001",
    "contentCorrelationId": "corr-0001",
    "createdDateTime": "2024-03-01T10:00:00Z",
    "endDateTime": "2024-03-01T10:45:00Z",
    "meetingNotes": [
        {
            "title": "Release planning",
            "text": "The team reviewed the release checklist.",
            "subpoints": [{"title": "Date", "text": "Release moves to Friday."}],
        }
    ],
    "actionItems": [
        {"title": "Vendor", "text": "Follow up with the vendor.", "ownerDisplayName": "Bob Jones"}
    ],
    "viewpoint": {
        "mentionEvents": [
            {
                "speaker": {"user": {"displayName": "Alice Smith"}},
                "eventDateTime": "2024-03-01T10:05:00Z",
                "transcriptUtterance": "Let's ship on Friday.",
            }
        ]
    },
}


# ============================================================
# Fake collaborators
# ============================================================

class FakeGraph:
    """In-process stand-in for GraphClient."""

    def __init__(
        self,
        insights: Optional[Dict[str, Any]] = None,
        transcript: Optional[str] = None,
        insights_error: Optional[Exception] = None,
        transcript_error: Optional[Exception] = None,
        meeting_id: Optional[str] = MEETING_ID,
        delay: float = 0.0,
    ):
        self.insights = insights
        self.transcript = transcript
        self.insights_error = insights_error
        self.transcript_error = transcript_error
        self.meeting_id = meeting_id
        self.delay = delay
        self.calls: List[tuple] = []
        self.configured = True

    def fetch_meeting_insights(self, user_id, meeting_id):
        self.calls.append(("insights", user_id, meeting_id))
        if self.delay:
            time.sleep(self.delay)
        if self.insights_error:
            raise self.insights_error
        return self.insights

    def fetch_transcript_content(self, content_reference):
        self.calls.append(("transcript", content_reference))
        if self.delay:
            time.sleep(self.delay)
        if self.transcript_error:
            raise self.transcript_error
        return self.transcript

    def find_meeting_id(self, join_web_url):
        self.calls.append(("lookup", join_web_url))
        return self.meeting_id


class FakeIssueTracker:
    """In-process stand-in for IssueTracker."""

    def __init__(self, configured: bool = True, fail: bool = False, delay: float = 0.0):
        self.configured = configured
        self.fail = fail
        self.delay = delay
        self.filed: List[Any] = []
        self._lock = threading.Lock()

    def file_issue(self, summary) -> IssueRef:
        if self.delay:
            time.sleep(self.delay)
        if self.fail:
            raise IssueFilingFailed("Issue tracker rejected the issue", detail="status=500")
        with self._lock:
            self.filed.append(summary)
            number = len(self.filed)
        return IssueRef(url=f"https://github.com/acme/meetings/issues/{number}", number=number)


def timeout_error() -> EnrichmentFailed:
    return EnrichmentFailed("Request to meeting API failed", detail="ReadTimeout")
