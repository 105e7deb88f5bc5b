"""
Inbound notification handling.

Each entry of a notification body is processed independently:

    encryptedContent -> key -> decrypt -> reconstruct -> orchestrator
    resourceData     -> plain record or plain summary -> orchestrator

A failure in one entry never affects the others, and process_notification
never raises.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

from .config import Settings
from .decryption import EncryptedEnvelope, HybridDecryptor
from .errors import DecryptionFailed, KeyUnavailable, PayloadUnparseable, PipelineError
from .keys import KeyMaterialResolver
from .logging_config import event_log, sanitize_for_logging, set_notification_id
from .orchestrator import EnrichmentOrchestrator, NotificationStage
from .reconstruction import CONTENT_URL_FIELD, DecryptedRecord, DefaultIdentity, PayloadReconstructor
from .summaries import build_plain_summary

logger = logging.getLogger(__name__)


class NotificationPipeline:
    """Turns inbound notification entries into published summaries."""

    def __init__(
        self,
        resolver: KeyMaterialResolver,
        decryptor: HybridDecryptor,
        reconstructor: PayloadReconstructor,
        orchestrator: EnrichmentOrchestrator,
    ):
        self.resolver = resolver
        self.decryptor = decryptor
        self.reconstructor = reconstructor
        self.orchestrator = orchestrator
        self.stats = orchestrator.stats

    @classmethod
    def from_settings(cls, settings: Settings, orchestrator: EnrichmentOrchestrator) -> "NotificationPipeline":
        return cls(
            resolver=KeyMaterialResolver.from_settings(settings),
            decryptor=HybridDecryptor(verify_signature=settings.verify_data_signature),
            reconstructor=PayloadReconstructor(
                DefaultIdentity(settings.tenant_id, settings.default_user_object_id)
            ),
            orchestrator=orchestrator,
        )

    def process_notification(self, body: Any) -> List[Dict[str, Any]]:
        """
        Process every entry of a notification body.

        Returns:
            One {index, outcome, code} dict per entry
        """
        entries = body.get("value") if isinstance(body, Mapping) else None
        if not isinstance(entries, list):
            logger.warning("Notification body has no entry list; ignored")
            return []

        results = []
        for index, entry in enumerate(entries):
            set_notification_id(self._entry_id(entry))
            try:
                outcome = self.process_entry(entry)
                results.append({"index": index, "outcome": outcome, "code": None})
            except PipelineError as e:
                logger.warning("Entry %d dropped: %s (%s)", index, e.code, e.message)
                results.append({"index": index, "outcome": "dropped", "code": e.code})
            except Exception as e:
                logger.exception("Unexpected error processing entry %d", index)
                results.append({"index": index, "outcome": "error", "code": type(e).__name__})
        return results

    def process_entry(self, entry: Any) -> str:
        """
        Process one entry.

        Raises:
            PipelineError: The entry was dropped
        """
        self.stats.increment("received")
        self.stats.record_stage(NotificationStage.RECEIVED)

        if not isinstance(entry, Mapping):
            self.stats.increment("unparseable")
            raise PayloadUnparseable("Notification entry is not an object")

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Notification entry: %s", sanitize_for_logging(dict(entry)))

        encrypted = entry.get("encryptedContent")
        if isinstance(encrypted, Mapping):
            record = self.decrypt_envelope(encrypted)
            self.orchestrator.handle_record(record)
            return "published"

        resource = entry.get("resourceData")
        if isinstance(resource, Mapping):
            return self._handle_plain(dict(resource))

        self.stats.increment("unparseable")
        raise PayloadUnparseable("Entry carries neither encryptedContent nor resourceData")

    def decrypt_envelope(self, encrypted: Mapping[str, Any]) -> DecryptedRecord:
        """
        Decrypt and reconstruct one encryptedContent object.

        Raises:
            KeyUnavailable, DecryptionFailed, PayloadUnparseable
        """
        try:
            envelope = EncryptedEnvelope.from_wire(encrypted)
            key = self.resolver.resolve()
            plaintext = self.decryptor.decrypt(envelope, key)
        except (KeyUnavailable, DecryptionFailed):
            self.stats.increment("decryption_failed")
            raise

        self.stats.increment("decrypted")
        self.stats.record_stage(NotificationStage.DECRYPTED)

        record = self.reconstructor.reconstruct_bytes(plaintext)
        if record is None:
            self.stats.increment("unparseable")
            raise PayloadUnparseable("Decrypted content holds no recognizable record", detail=f"length={len(plaintext)}")
        return record

    def _handle_plain(self, resource: Dict[str, Any]) -> str:
        if resource.get(CONTENT_URL_FIELD):
            record = DecryptedRecord(fields=resource, strategy="plain")
            event_log.reconstructed("plain", len(resource))
            self.orchestrator.handle_record(record)
            return "published"

        summary = build_plain_summary(resource)
        if summary is None:
            self.stats.increment("unparseable")
            event_log.payload_unparseable(len(resource))
            raise PayloadUnparseable("resourceData holds nothing to summarise")

        self.orchestrator.publish(summary)
        return "published"

    @staticmethod
    def _entry_id(entry: Any) -> Optional[str]:
        if isinstance(entry, Mapping):
            for name in ("id", "subscriptionId"):
                if entry.get(name):
                    return str(entry[name])
        return None
