"""
Transcript Bridge

Receives encrypted meeting-transcript change notifications, decrypts
them, recovers a structured record even from damaged payloads, and
publishes a meeting summary that is enriched in the background with
generated insights or transcript text and optionally filed as an issue.

Pipeline:
    envelope -> KeyMaterialResolver -> HybridDecryptor -> PayloadReconstructor
             -> EnrichmentOrchestrator -> SummaryStore

Usage:
    from transcript_bridge import (
        Settings,
        KeyMaterialResolver,
        HybridDecryptor,
        EncryptedEnvelope,
        PayloadReconstructor,
    )

    settings = Settings.from_env()
    key = KeyMaterialResolver.from_settings(settings).resolve()

    envelope = EncryptedEnvelope.from_wire(entry["encryptedContent"])
    plaintext = HybridDecryptor().decrypt(envelope, key)

    record = PayloadReconstructor().reconstruct_bytes(plaintext)
    if record is not None:
        print(record.strategy, record.content_url)

The HTTP service lives in transcript_bridge.main (`transcript-bridge serve`).
"""

__version__ = "1.0.0"

from .config import Settings, validate_config
from .errors import (
    PipelineError,
    KeyUnavailable,
    DecryptionFailed,
    CertificateMismatch,
    PayloadUnparseable,
    EnrichmentFailed,
    IssueFilingFailed,
)
from .keys import KeyMaterial, KeyMaterialResolver, PasswordCandidates
from .decryption import EncryptedEnvelope, HybridDecryptor
from .reconstruction import DecryptedRecord, DefaultIdentity, PayloadReconstructor
from .captions import captions_to_text, is_caption_format, normalize_transcript
from .summaries import IssueRef, Summary, SummaryUpdate
from .store import SummaryStore
from .orchestrator import EnrichmentOrchestrator, NotificationStage, PipelineStats
from .pipeline import NotificationPipeline

__all__ = [
    "Settings",
    "validate_config",
    "PipelineError",
    "KeyUnavailable",
    "DecryptionFailed",
    "CertificateMismatch",
    "PayloadUnparseable",
    "EnrichmentFailed",
    "IssueFilingFailed",
    "KeyMaterial",
    "KeyMaterialResolver",
    "PasswordCandidates",
    "EncryptedEnvelope",
    "HybridDecryptor",
    "DecryptedRecord",
    "DefaultIdentity",
    "PayloadReconstructor",
    "captions_to_text",
    "is_caption_format",
    "normalize_transcript",
    "IssueRef",
    "Summary",
    "SummaryUpdate",
    "SummaryStore",
    "EnrichmentOrchestrator",
    "NotificationStage",
    "PipelineStats",
    "NotificationPipeline",
]
