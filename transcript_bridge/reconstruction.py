"""
Tolerant reconstruction of records from decrypted notification text.

Decrypted payloads are frequently not clean JSON: they may be truncated,
wrapped in non-JSON framing, or missing the outer envelope. Recovery runs
an ordered list of strategies of decreasing completeness; the first one
that yields a record wins. No strategy matching is a normal outcome and
is reported as None, not raised.

Strategies:
    1. anchor_at_context    parse from the '{"@odata.context"' marker to the end
    2. enclosing_object     walk back from "transcriptContentUrl" to its '{'
    3. field_extraction     regex out known scalar fields and the organizer
    4. minimal_identity     id + content URL + configured default identity
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .logging_config import event_log

logger = logging.getLogger(__name__)

CONTEXT_MARKER = '{"@odata.context"'
CONTENT_URL_FIELD = "transcriptContentUrl"

SCALAR_FIELDS: Tuple[str, ...] = (
    "@odata.context",
    "id",
    "meetingId",
    "callId",
    "contentCorrelationId",
    "transcriptContentUrl",
    "createdDateTime",
    "endDateTime",
)
ORGANIZER_FIELDS: Tuple[str, ...] = ("id", "displayName", "userPrincipalName")

# a field extraction is only trusted when it recovers more than this many fields
MIN_EXTRACTED_FIELDS = 3

_ORGANIZER_OBJECT = re.compile(r'"meetingOrganizer"\s*:\s*(\{[^{}]*(?:\{[^{}]*\}[^{}]*)*\})')


def _scalar_pattern(name: str) -> "re.Pattern[str]":
    return re.compile(r'"' + re.escape(name) + r'"\s*:\s*"([^"]+)"')


_SCALAR_PATTERNS = {name: _scalar_pattern(name) for name in SCALAR_FIELDS}
_ORGANIZER_SUBFIELD_PATTERNS = {
    name: re.compile(r'"meetingOrganizer"[^}]*"' + re.escape(name) + r'"\s*:\s*"([^"]+)"')
    for name in ORGANIZER_FIELDS
}


@dataclass
class DecryptedRecord:
    """
    A recovered notification record.

    Partial records are valid: any field may be absent. `strategy` names
    the strategy that produced it.
    """
    fields: Dict[str, Any]
    strategy: str = "unknown"

    @property
    def id(self) -> Optional[str]:
        return self._str("id")

    @property
    def meeting_id(self) -> Optional[str]:
        return self._str("meetingId")

    @property
    def call_id(self) -> Optional[str]:
        return self._str("callId")

    @property
    def content_correlation_id(self) -> Optional[str]:
        return self._str("contentCorrelationId")

    @property
    def content_url(self) -> Optional[str]:
        return self._str(CONTENT_URL_FIELD)

    @property
    def created(self) -> Optional[str]:
        return self._str("createdDateTime")

    @property
    def ended(self) -> Optional[str]:
        return self._str("endDateTime")

    @property
    def organizer(self) -> Dict[str, Any]:
        value = self.fields.get("meetingOrganizer")
        return value if isinstance(value, dict) else {}

    @property
    def organizer_user_id(self) -> Optional[str]:
        """Organizer object id, from organizer.user.id or a flat organizer.id."""
        user = self.organizer.get("user")
        if isinstance(user, dict) and user.get("id"):
            return str(user["id"])
        value = self.organizer.get("id")
        return str(value) if value else None

    @property
    def organizer_name(self) -> Optional[str]:
        user = self.organizer.get("user")
        if isinstance(user, dict) and user.get("displayName"):
            return str(user["displayName"])
        value = self.organizer.get("displayName")
        return str(value) if value else None

    @property
    def identity(self) -> Optional[str]:
        """Key that identifies the transcript this record refers to."""
        return self.id or self.content_url

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.fields)

    def _str(self, name: str) -> Optional[str]:
        value = self.fields.get(name)
        return str(value) if value not in (None, "") else None


Strategy = Callable[[str], Optional[Dict[str, Any]]]


@dataclass(frozen=True)
class DefaultIdentity:
    """Identity context used when only the bare minimum could be recovered."""
    tenant_id: Optional[str] = None
    user_object_id: Optional[str] = None

    def organizer(self) -> Dict[str, Any]:
        return {
            "user": {
                "userIdentityType": "aadUser",
                "tenantId": self.tenant_id or None,
                "id": self.user_object_id or None,
                "displayName": None,
            }
        }


# ============================================================
# Strategies
# ============================================================

def anchor_at_context(text: str) -> Optional[Dict[str, Any]]:
    """Parse from the schema-context marker to end of text as one document."""
    start = text.find(CONTEXT_MARKER)
    if start == -1:
        return None
    try:
        parsed = json.loads(text[start:])
    except json.JSONDecodeError:
        logger.debug("Context-anchored parse failed at offset %d", start)
        return None
    return parsed if isinstance(parsed, dict) else None


def enclosing_object(text: str) -> Optional[Dict[str, Any]]:
    """
    Find the innermost object that encloses the content-reference field:
    scan backwards from the field and decode one object at each opening
    brace until one parses and extends past the field. Braces inside
    string values are skipped because decoding from them fails or ends
    before the field.
    """
    marker = text.find(f'"{CONTENT_URL_FIELD}"')
    if marker == -1:
        return None

    decoder = json.JSONDecoder()
    index = text.rfind("{", 0, marker)
    while index != -1:
        try:
            parsed, end = decoder.raw_decode(text, index)
        except json.JSONDecodeError:
            parsed, end = None, index
        if isinstance(parsed, dict) and end > marker:
            return parsed
        index = text.rfind("{", 0, index)

    logger.debug("No object enclosing offset %d parsed", marker)
    return None


def extract_organizer(text: str) -> Optional[Dict[str, Any]]:
    """The meetingOrganizer object, or its known scalar sub-fields if it does not parse."""
    match = _ORGANIZER_OBJECT.search(text)
    if match:
        try:
            parsed = json.loads(match.group(1))
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError:
            logger.debug("meetingOrganizer object did not parse; extracting sub-fields")

    if '"meetingOrganizer"' not in text:
        return None

    organizer = {}
    for name, pattern in _ORGANIZER_SUBFIELD_PATTERNS.items():
        sub = pattern.search(text)
        if sub:
            organizer[name] = sub.group(1)
    return organizer or None


def extract_scalars(text: str, names: Sequence[str] = SCALAR_FIELDS) -> Dict[str, str]:
    found = {}
    for name in names:
        pattern = _SCALAR_PATTERNS.get(name) or _scalar_pattern(name)
        match = pattern.search(text)
        if match:
            found[name] = match.group(1)
    return found


def field_extraction(text: str, min_fields: int = MIN_EXTRACTED_FIELDS) -> Optional[Dict[str, Any]]:
    """Rebuild a record field by field; only trusted above the threshold."""
    extracted: Dict[str, Any] = extract_scalars(text)
    organizer = extract_organizer(text)
    if organizer:
        extracted["meetingOrganizer"] = organizer

    if len(extracted) > min_fields:
        return extracted
    return None


def minimal_identity(text: str, identity: DefaultIdentity) -> Optional[Dict[str, Any]]:
    """id + content URL, with the configured identity standing in for the organizer."""
    basic = extract_scalars(text, ("id", CONTENT_URL_FIELD))
    if "id" not in basic or CONTENT_URL_FIELD not in basic:
        return None
    return {
        "id": basic["id"],
        CONTENT_URL_FIELD: basic[CONTENT_URL_FIELD],
        "meetingOrganizer": identity.organizer(),
    }


# ============================================================
# Reconstructor
# ============================================================

class PayloadReconstructor:
    """
    Runs the strategy chain over decrypted text.

    Usage:
        reconstructor = PayloadReconstructor(DefaultIdentity(tenant_id, user_id))
        record = reconstructor.reconstruct(text)
        if record is None:
            ...  # nothing recoverable
    """

    def __init__(
        self,
        identity: Optional[DefaultIdentity] = None,
        min_fields: int = MIN_EXTRACTED_FIELDS,
        strategies: Optional[List[Tuple[str, Strategy]]] = None,
    ):
        self.identity = identity or DefaultIdentity()
        self.min_fields = min_fields
        self.strategies: List[Tuple[str, Strategy]] = strategies or [
            ("anchor_at_context", anchor_at_context),
            ("enclosing_object", enclosing_object),
            ("field_extraction", lambda text: field_extraction(text, self.min_fields)),
            ("minimal_identity", lambda text: minimal_identity(text, self.identity)),
        ]

    def reconstruct(self, text: str) -> Optional[DecryptedRecord]:
        if not text:
            event_log.payload_unparseable(0)
            return None

        for name, strategy in self.strategies:
            fields = strategy(text)
            if fields:
                event_log.reconstructed(name, len(fields))
                return DecryptedRecord(fields=fields, strategy=name)

        event_log.payload_unparseable(len(text))
        return None

    def reconstruct_bytes(self, raw: bytes) -> Optional[DecryptedRecord]:
        """Decode as UTF-8 (lenient) and reconstruct."""
        return self.reconstruct(raw.decode("utf-8", errors="replace"))
